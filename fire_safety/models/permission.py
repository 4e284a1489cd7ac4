"""
Permission model.

Permissions are *immutable codes* of the form `module:action`
(e.g. `equipment:read`, `inspection:read:own`).  They are seeded at
deploy time and referenced by roles and per-user overrides, and never
checked by role name in endpoint logic.  A permission that is in use
is deactivated, not deleted.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fire_safety.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Permission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "permissions"

    code: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    module: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    scope: Mapped[str] = mapped_column(String(32), default="factory", nullable=False)
    category: Mapped[str] = mapped_column(String(32), default="MODULE", nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        Index("ix_permissions_module_action", "module", "action"),
    )

    def __repr__(self) -> str:
        return f"<Permission {self.code}>"
