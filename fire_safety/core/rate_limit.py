"""
Login rate limiting.

Failed logins are counted per (client IP, username) in a sliding window
held in process memory.  Successful logins are not counted.  Once a key
reaches the limit, further attempts are refused with 429 until the
oldest failure leaves the window.

State is per process: behind several workers each one keeps its own
window.
"""

import logging
import time
from collections import defaultdict

from fire_safety.core.exceptions import RateLimitedError

logger = logging.getLogger(__name__)


class LoginRateLimiter:
    def __init__(self, max_attempts: int = 5, window_seconds: int = 15 * 60):
        # max_attempts <= 0 disables the limiter.
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._failures: dict[str, list[float]] = defaultdict(list)

    @staticmethod
    def _key(ip_address: str | None, username: str) -> str:
        return f"{ip_address or 'unknown'}:{username.lower()}"

    def _recent(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        recent = [t for t in self._failures.get(key, []) if t > cutoff]
        if recent:
            self._failures[key] = recent
        else:
            self._failures.pop(key, None)
        return recent

    def check(self, ip_address: str | None, username: str, now: float | None = None) -> None:
        """Raise RateLimitedError when the key has used up its attempts."""
        if self.max_attempts <= 0:
            return
        now = time.monotonic() if now is None else now
        recent = self._recent(self._key(ip_address, username), now)
        if len(recent) >= self.max_attempts:
            retry_after = int(recent[0] + self.window_seconds - now) + 1
            logger.warning(
                "Login rate limit hit for %s from %s (retry in %ds)", username, ip_address, retry_after,
            )
            raise RateLimitedError("Too many login attempts, try again later", retry_after=retry_after)

    def record_failure(self, ip_address: str | None, username: str, now: float | None = None) -> None:
        if self.max_attempts <= 0:
            return
        now = time.monotonic() if now is None else now
        self._failures[self._key(ip_address, username)].append(now)
