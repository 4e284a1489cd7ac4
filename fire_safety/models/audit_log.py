"""
Audit trail models — APPEND-ONLY.

`PermissionChangeLog` records every grant / revoke / role-assignment /
catalog change; `AuthEventLog` records authentication events.  Rows
are never updated.  The only delete path is the age-based retention
job (`AuditTrail.prune_older_than`).
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fire_safety.models.base import Base, UUIDPrimaryKeyMixin, utcnow


class ChangeAction(str, enum.Enum):
    CREATE_PERMISSION = "CREATE_PERMISSION"
    UPDATE_PERMISSION = "UPDATE_PERMISSION"
    DEACTIVATE_PERMISSION = "DEACTIVATE_PERMISSION"
    DELETE_PERMISSION = "DELETE_PERMISSION"
    CREATE_ROLE = "CREATE_ROLE"
    UPDATE_ROLE = "UPDATE_ROLE"
    DEACTIVATE_ROLE = "DEACTIVATE_ROLE"
    DELETE_ROLE = "DELETE_ROLE"
    UPDATE_ROLE_PERMISSIONS = "UPDATE_ROLE_PERMISSIONS"
    GRANT_ROLE = "GRANT_ROLE"
    REVOKE_ROLE = "REVOKE_ROLE"
    GRANT_PERMISSION = "GRANT_PERMISSION"
    DENY_PERMISSION = "DENY_PERMISSION"
    REVOKE_OVERRIDE = "REVOKE_OVERRIDE"
    EXPIRE_OVERRIDE = "EXPIRE_OVERRIDE"


class AuthEvent(str, enum.Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"


class PermissionChangeLog(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "permission_logs"

    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    # NULL for role- or catalog-level changes that target no single user.
    target_user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    operator_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    role_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    permission_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    factory_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True,
    )

    __table_args__ = (
        Index("ix_permission_logs_target_user_ts", "target_user_id", "timestamp"),
        Index("ix_permission_logs_operator_ts", "operator_id", "timestamp"),
        Index("ix_permission_logs_action_ts", "action_type", "timestamp"),
        Index("ix_permission_logs_factory_ts", "factory_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<PermissionChangeLog {self.action_type} target={self.target_user_id}>"


class AuthEventLog(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "auth_events"

    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    detail: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True,
    )

    def __repr__(self) -> str:
        return f"<AuthEventLog {self.event_type} user={self.username} success={self.success}>"
