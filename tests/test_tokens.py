"""JWT issuing and verification."""

from datetime import timedelta

import pytest
from jose import jwt

from fire_safety.core.config import Settings
from fire_safety.core.exceptions import (
    InvalidTokenError,
    TokenExpiredError,
    TokenMalformedError,
    TokenTypeError,
)
from fire_safety.core.tokens import TokenService

CLAIMS = {
    "userId": "8b0f3f9e-6a7e-4b55-9d2e-3f1f2d9c1a10",
    "username": "alice",
    "role": "INSPECTOR",
    "factoryId": None,
    "permissions": ["equipment:read", "issue:create"],
}


def test_access_token_round_trip(tokens):
    payload = tokens.verify(tokens.issue_access_token(CLAIMS), "access")

    for key, value in CLAIMS.items():
        assert payload[key] == value
    assert payload["type"] == "access"
    assert payload["iss"] == "fire-safety-system"
    assert payload["aud"] == "fire-safety-client"
    assert len(payload["jti"]) == 32


def test_every_token_gets_a_fresh_jti(tokens):
    first = tokens.verify(tokens.issue_access_token(CLAIMS))
    second = tokens.verify(tokens.issue_access_token(CLAIMS))
    assert first["jti"] != second["jti"]


def test_caller_cannot_override_reserved_claims(tokens):
    token = tokens.issue_access_token({**CLAIMS, "type": "refresh", "exp": 0, "iss": "evil"})
    payload = tokens.verify(token, "access")

    assert payload["type"] == "access"
    assert payload["iss"] == "fire-safety-system"


def test_refresh_token_carries_only_user_id(tokens):
    payload = tokens.verify(tokens.issue_refresh_token(CLAIMS["userId"]), "refresh")

    assert payload["userId"] == CLAIMS["userId"]
    assert payload["type"] == "refresh"
    assert "permissions" not in payload


def test_remember_me_extends_refresh_lifetime(tokens, test_settings):
    short = tokens.verify(tokens.issue_refresh_token("u1"), "refresh")
    long = tokens.verify(tokens.issue_refresh_token("u1", remember_me=True), "refresh")

    day = 24 * 3600
    assert abs((short["exp"] - short["iat"]) - test_settings.REFRESH_TOKEN_EXPIRE_DAYS * day) <= 1
    assert abs((long["exp"] - long["iat"]) - test_settings.LONG_REFRESH_TOKEN_EXPIRE_DAYS * day) <= 1


def test_access_expires_in_matches_settings(tokens, test_settings):
    assert tokens.access_expires_in == test_settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


# ── Failures ─────────────────────────────────────────────────────────

def test_expired_token(tokens):
    token = tokens.issue_access_token(CLAIMS, expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenExpiredError):
        tokens.verify(token)


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c"])
def test_malformed_token(tokens, garbage):
    with pytest.raises(TokenMalformedError):
        tokens.verify(garbage)


def test_tampered_signature(tokens):
    token = tokens.issue_access_token(CLAIMS)
    head, body, sig = token.split(".")
    tampered = ".".join([head, body, sig[::-1]])
    with pytest.raises(TokenMalformedError):
        tokens.verify(tampered)


def test_foreign_issuer_is_rejected(tokens, test_settings):
    forged = jwt.encode(
        {**CLAIMS, "type": "access", "iss": "someone-else", "aud": test_settings.JWT_AUDIENCE},
        test_settings.JWT_SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenMalformedError):
        tokens.verify(forged)


def test_refresh_token_is_not_an_access_token(tokens):
    # Separate secrets: the signature check fails first.
    refresh = tokens.issue_refresh_token("u1")
    with pytest.raises(InvalidTokenError):
        tokens.verify(refresh, "access")


def test_type_claim_checked_when_secrets_coincide():
    shared = Settings(_env_file=None, JWT_SECRET="same", JWT_REFRESH_SECRET="same")
    service = TokenService(shared)

    with pytest.raises(TokenTypeError):
        service.verify(service.issue_refresh_token("u1"), "access")
    with pytest.raises(TokenTypeError):
        service.verify(service.issue_access_token(CLAIMS), "refresh")


# ── Unverified reads ─────────────────────────────────────────────────

def test_decode_unverified_reads_expired_tokens(tokens):
    token = tokens.issue_refresh_token("u1", expires_delta=timedelta(days=-1))
    claims = tokens.decode_unverified(token)

    assert claims["userId"] == "u1"
    assert TokenService.expires_at(claims) is not None


def test_decode_unverified_garbage(tokens):
    assert tokens.decode_unverified("garbage") is None


def test_expires_at_without_exp():
    assert TokenService.expires_at({}) is None
