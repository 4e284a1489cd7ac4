"""
Password hashing, password policy & token hashing helpers.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).
- Raw tokens are never stored: the revocation store keeps their
  SHA-256 digest.
"""

import hashlib
import re

import bcrypt

from fire_safety.core.config import settings

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

_SYMBOL_RE = re.compile("[" + re.escape(PASSWORD_SYMBOLS) + "]")

# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str, rounds: int | None = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


# ── Password policy ─────────────────────────────────────────────────


def password_policy_errors(password: str) -> list[str]:
    """Return every rule the password violates (empty list = acceptable)."""
    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"must be at most {PASSWORD_MAX_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("must contain an uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("must contain a lowercase letter")
    if not re.search(r"\d", password):
        errors.append("must contain a digit")
    if not _SYMBOL_RE.search(password):
        errors.append(f"must contain one of {PASSWORD_SYMBOLS}")
    return errors


# ── Token hashing ───────────────────────────────────────────────────


def hash_token(token: str) -> str:
    """SHA-256 hash, suitable for high-entropy tokens like JWTs."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
