"""
User ↔ role assignments and direct per-user permission overrides.

Both tables are scoped by an optional factory (NULL = applies in every
factory) and are soft-revoked through `is_active` so history survives.

Uniqueness is (user, role|permission, factory).  SQL unique indexes do
not treat two NULL factory ids as equal, so the services re-check the
triple before inserting.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fire_safety.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from fire_safety.models.permission import Permission
from fire_safety.models.role import Role


class UserRoleAssignment(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "user_roles"

    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    role_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("roles.id"), nullable=False, index=True)
    factory_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("factories.id", ondelete="SET NULL"), nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    granted_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # ── Relationships ────────────────────────────────────────────────
    role: Mapped[Role] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("user_id", "role_id", "factory_id", name="uq_user_roles_user_role_factory"),
        Index("ix_user_roles_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<UserRoleAssignment user={self.user_id} role={self.role_id} factory={self.factory_id}>"


class UserPermissionOverride(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "user_permissions"

    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    permission_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("permissions.id"), nullable=False, index=True,
    )
    factory_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("factories.id", ondelete="SET NULL"), nullable=True,
    )
    # False = explicit denial, which beats any role-derived grant.
    granted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    granted_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # ── Relationships ────────────────────────────────────────────────
    permission: Mapped[Permission] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "permission_id", "factory_id", name="uq_user_permissions_user_permission_factory",
        ),
        Index("ix_user_permissions_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        state = "grant" if self.granted else "deny"
        return f"<UserPermissionOverride user={self.user_id} permission={self.permission_id} {state}>"
