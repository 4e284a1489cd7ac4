"""
JWT issuing & verification.

- Access and refresh tokens are signed with SEPARATE secrets.
- Every token carries `type`, `iat` and a random `jti`; issuer and
  audience are checked on verification.
- Verification failures raise a precise `InvalidTokenError` subclass
  (expired / malformed / wrong type).  Callers decide how much of that
  to reveal; the HTTP layer reveals none of it.

Access-token claim shape:
    {userId, username, role, factoryId, permissions, type, iat, jti,
     exp, iss, aud}
"""

import secrets
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from jose import ExpiredSignatureError, JWTError, jwt

from fire_safety.core.config import Settings
from fire_safety.core.exceptions import (
    TokenExpiredError,
    TokenMalformedError,
    TokenTypeError,
)

TokenType = Literal["access", "refresh"]

# Claims added by the issuer; never accepted from the caller.
RESERVED_CLAIMS = frozenset({"type", "iat", "jti", "exp", "iss", "aud", "nbf"})


def generate_token_id() -> str:
    return secrets.token_hex(16)


class TokenService:
    def __init__(self, settings: Settings):
        self.settings = settings

    # ── Issuing ──────────────────────────────────────────────────────

    @property
    def access_expires_in(self) -> int:
        """Access-token lifetime in seconds."""
        return self.settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    def issue_access_token(
        self,
        claims: Mapping[str, Any],
        expires_delta: timedelta | None = None,
    ) -> str:
        lifetime = expires_delta or timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        return self._sign(claims, "access", lifetime)

    def issue_refresh_token(
        self,
        user_id: str,
        *,
        remember_me: bool = False,
        expires_delta: timedelta | None = None,
    ) -> str:
        if expires_delta is None:
            days = (
                self.settings.LONG_REFRESH_TOKEN_EXPIRE_DAYS
                if remember_me
                else self.settings.REFRESH_TOKEN_EXPIRE_DAYS
            )
            expires_delta = timedelta(days=days)
        return self._sign({"userId": str(user_id)}, "refresh", expires_delta)

    def _sign(self, claims: Mapping[str, Any], token_type: TokenType, lifetime: timedelta) -> str:
        now = datetime.now(timezone.utc)
        to_encode = {k: v for k, v in claims.items() if k not in RESERVED_CLAIMS}
        to_encode.update(
            {
                "type": token_type,
                "iat": int(now.timestamp()),
                "jti": generate_token_id(),
                "exp": now + lifetime,
                "iss": self.settings.JWT_ISSUER,
                "aud": self.settings.JWT_AUDIENCE,
            }
        )
        return jwt.encode(to_encode, self._secret_for(token_type), algorithm=self.settings.JWT_ALGORITHM)

    def _secret_for(self, token_type: TokenType) -> str:
        if token_type == "refresh":
            return self.settings.JWT_REFRESH_SECRET
        return self.settings.JWT_SECRET

    # ── Verification ─────────────────────────────────────────────────

    def verify(self, token: str, expected_type: TokenType = "access") -> dict[str, Any]:
        """Decode & validate a token.  Raises `InvalidTokenError` subclasses."""
        try:
            payload = jwt.decode(
                token,
                self._secret_for(expected_type),
                algorithms=[self.settings.JWT_ALGORITHM],
                audience=self.settings.JWT_AUDIENCE,
                issuer=self.settings.JWT_ISSUER,
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("Token has expired") from exc
        except JWTError as exc:
            raise TokenMalformedError(f"Token could not be verified: {exc}") from exc

        actual = payload.get("type")
        if actual != expected_type:
            raise TokenTypeError(f"Invalid token type. Expected: {expected_type}, got: {actual}")
        return payload

    def decode_unverified(self, token: str) -> dict[str, Any] | None:
        """Read claims WITHOUT checking signature or expiry (logout only)."""
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            return None

    @staticmethod
    def expires_at(claims: Mapping[str, Any]) -> datetime | None:
        exp = claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(int(exp), tz=timezone.utc)
