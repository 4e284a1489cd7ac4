"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for `create_all` / Alembic).
"""

from fire_safety.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from fire_safety.models.factory import Factory
from fire_safety.models.user import BaseRole, User
from fire_safety.models.permission import Permission
from fire_safety.models.role import Role, RolePermission
from fire_safety.models.assignment import UserPermissionOverride, UserRoleAssignment
from fire_safety.models.audit_log import AuthEvent, AuthEventLog, ChangeAction, PermissionChangeLog
from fire_safety.models.revoked_token import RevocationReason, RevokedToken, RevokedTokenType

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "Factory",
    "BaseRole",
    "User",
    "Permission",
    "Role",
    "RolePermission",
    "UserRoleAssignment",
    "UserPermissionOverride",
    "PermissionChangeLog",
    "AuthEventLog",
    "ChangeAction",
    "AuthEvent",
    "RevokedToken",
    "RevokedTokenType",
    "RevocationReason",
]
