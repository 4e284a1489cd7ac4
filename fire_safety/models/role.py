"""
Role model & role ↔ permission link.

Roles are named, ordered (`level`) groups of permissions.  The link
table is an explicit model rather than a plain `secondary` table: each
link row is individually (de)activatable and timestamped for audit.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fire_safety.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from fire_safety.models.permission import Permission


class Role(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "roles"

    code: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # ── Relationships ────────────────────────────────────────────────
    permission_links: Mapped[list["RolePermission"]] = relationship(  # noqa: F821
        back_populates="role",
        lazy="selectin",
        order_by="RolePermission.created_at",
    )

    @property
    def permission_codes(self) -> list[str]:
        """Codes of active links to active permissions."""
        return sorted(
            link.permission.code
            for link in self.permission_links
            if link.is_active and link.permission.is_active
        )

    def __repr__(self) -> str:
        return f"<Role {self.code}>"


class RolePermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "role_permissions"

    role_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("roles.id"), nullable=False)
    permission_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("permissions.id"), nullable=False, index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # ── Relationships ────────────────────────────────────────────────
    role: Mapped[Role] = relationship(back_populates="permission_links", lazy="raise")
    permission: Mapped[Permission] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
        Index("ix_role_permissions_role_active", "role_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<RolePermission role={self.role_id} permission={self.permission_id}>"
