"""Failed-login rate limiting."""

import pytest

from fire_safety.core.exceptions import RateLimitedError
from fire_safety.core.rate_limit import LoginRateLimiter

IP = "10.0.0.7"


def test_blocks_after_max_failures_until_window_passes():
    limiter = LoginRateLimiter(max_attempts=3, window_seconds=60)
    for t in (0, 10, 20):
        limiter.check(IP, "alice", now=t)
        limiter.record_failure(IP, "alice", now=t)

    with pytest.raises(RateLimitedError) as exc:
        limiter.check(IP, "alice", now=30)
    assert exc.value.status_code == 429
    assert exc.value.retry_after == 31

    # The first failure has left the window.
    limiter.check(IP, "alice", now=61)


def test_keys_are_per_ip_and_username():
    limiter = LoginRateLimiter(max_attempts=1, window_seconds=60)
    limiter.record_failure(IP, "Alice", now=0)

    with pytest.raises(RateLimitedError):
        limiter.check(IP, "alice", now=1)
    limiter.check(IP, "bob", now=1)
    limiter.check("10.0.0.8", "alice", now=1)


def test_zero_attempts_disables_the_limit():
    limiter = LoginRateLimiter(max_attempts=0)
    for t in range(10):
        limiter.record_failure(IP, "alice", now=t)
    limiter.check(IP, "alice", now=10)
