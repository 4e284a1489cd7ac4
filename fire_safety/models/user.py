"""
User model.

Design decisions:
- `role` is the BASELINE role stored on the user record.  The
  permission system (roles, assignments, overrides) refines it; when
  the user holds no assignment the baseline is what tokens carry.
- Accounts are soft-disabled through `is_active`, never deleted by
  the auth flows.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fire_safety.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from fire_safety.models.factory import Factory


class BaseRole(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    FACTORY_ADMIN = "FACTORY_ADMIN"
    INSPECTOR = "INSPECTOR"


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(512), nullable=False)
    full_name: Mapped[str] = mapped_column(String(256), nullable=False)
    role: Mapped[BaseRole] = mapped_column(
        Enum(BaseRole, name="base_role"),
        default=BaseRole.INSPECTOR,
        nullable=False,
    )
    factory_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("factories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # ── Relationships ────────────────────────────────────────────────
    factory: Mapped["Factory | None"] = relationship(  # noqa: F821
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<User {self.username}>"
