"""
Revoked token model — the token blacklist.

Stores the SHA-256 of the raw token (never the token itself) plus its
`jti`.  `expires_at` is copied from the original token: once it has
passed, the token fails expiry checks anyway and the row can be purged.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fire_safety.models.base import Base, UUIDPrimaryKeyMixin, utcnow


class RevokedTokenType(str, enum.Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"


class RevocationReason(str, enum.Enum):
    LOGOUT = "LOGOUT"
    ROTATION = "ROTATION"
    ADMIN = "ADMIN"
    FORCED_LOGOUT = "FORCED_LOGOUT"


class RevokedToken(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "token_blacklist"

    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    jti: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    token_type: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False,
    )

    def __repr__(self) -> str:
        return f"<RevokedToken {self.token_type} user={self.user_id} reason={self.reason}>"
