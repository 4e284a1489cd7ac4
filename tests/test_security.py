"""Password hashing, password policy and token hashing."""

import pytest

from fire_safety.core.security import (
    hash_password,
    hash_token,
    password_policy_errors,
    verify_password,
)


def test_hash_and_verify():
    hashed = hash_password("Passw0rd!", rounds=4)

    assert hashed != "Passw0rd!"
    assert verify_password("Passw0rd!", hashed)
    assert not verify_password("passw0rd!", hashed)


@pytest.mark.parametrize("stored", ["", "plain-text", "$2b$not-a-hash"])
def test_verify_against_unusable_hash(stored):
    assert verify_password("Passw0rd!", stored) is False


def test_strong_password_passes_policy():
    assert password_policy_errors("Str0ng-Enough") == []


def test_policy_reports_every_violation():
    errors = password_policy_errors("abc")

    assert "must be at least 8 characters long" in errors
    assert "must contain an uppercase letter" in errors
    assert "must contain a digit" in errors
    assert any(e.startswith("must contain one of") for e in errors)
    assert len(errors) == 4


def test_policy_upper_bound():
    errors = password_policy_errors("Aa1!" * 40)
    assert errors == ["must be at most 128 characters long"]


def test_hash_token_is_stable_sha256():
    assert hash_token("abc") == hash_token("abc")
    assert hash_token("abc") != hash_token("abd")
    assert len(hash_token("abc")) == 64
