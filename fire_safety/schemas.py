"""
Pydantic schemas for request / response serialization.

Kept in a single file for now — split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.
"""

import json
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from fire_safety.models.user import BaseRole


# ── Auth ─────────────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)
    remember_me: bool = False


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str
    access_token: str | None = None


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    password: str
    full_name: str = Field(min_length=1, max_length=256)
    role: BaseRole = BaseRole.INSPECTOR
    factory_id: uuid.UUID | None = None


# ── User ─────────────────────────────────────────────────────────────
class FactoryOut(BaseModel):
    id: uuid.UUID
    name: str

    model_config = {"from_attributes": True}


class UserOut(BaseModel):
    id: uuid.UUID
    username: str
    full_name: str
    role: str
    factory_id: uuid.UUID | None = None
    is_active: bool
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class RoleBrief(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    level: int

    model_config = {"from_attributes": True}


class LoginResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut
    role: str
    permissions: list[str]
    factory: FactoryOut | None = None


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut
    role: str
    permissions: list[str]


class SuccessResponse(BaseModel):
    success: bool
    message: str


class ProfileResponse(BaseModel):
    user: UserOut
    role: str
    roles: list[RoleBrief]
    permissions: list[str]
    factory: FactoryOut | None = None


class MyPermissionsResponse(BaseModel):
    role: str
    roles: list[str]
    permissions: list[str]


# ── Permission catalog ───────────────────────────────────────────────
class PermissionOut(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    description: str | None = None
    module: str
    action: str
    scope: str
    category: str
    sort_order: int
    is_active: bool

    model_config = {"from_attributes": True}


class PermissionCreate(BaseModel):
    code: str = Field(min_length=3, max_length=128, pattern=r"^[a-z_]+:[a-z_]+(:[a-z_]+)?$")
    name: str = Field(min_length=1, max_length=128)
    description: str | None = None
    scope: str = "factory"
    category: str = "MODULE"
    sort_order: int = 0
    reason: str | None = None


class PermissionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None
    scope: str | None = None
    category: str | None = None
    sort_order: int | None = None
    reason: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"reason"})


# ── Roles ────────────────────────────────────────────────────────────
class RoleOut(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    description: str | None = None
    level: int
    is_system: bool
    is_default: bool
    is_active: bool
    permission_codes: list[str] = []

    model_config = {"from_attributes": True}


class RoleCreate(BaseModel):
    code: str = Field(min_length=2, max_length=64, pattern=r"^[A-Z][A-Z0-9_]*$")
    name: str = Field(min_length=1, max_length=128)
    description: str | None = None
    level: int = Field(default=1, ge=1, le=3)
    is_default: bool = False
    reason: str | None = None


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None
    level: int | None = Field(default=None, ge=1, le=3)
    is_default: bool | None = None
    reason: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"reason"})


class RolePermissionsUpdate(BaseModel):
    """Either explicit permission ids or patterns (`*`, `module:*`, codes)."""

    permission_ids: list[uuid.UUID] | None = None
    patterns: list[str] | None = None
    reason: str | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "RolePermissionsUpdate":
        if (self.permission_ids is None) == (self.patterns is None):
            raise ValueError("Provide exactly one of permission_ids or patterns")
        return self


class RolePermissionsResponse(BaseModel):
    role: RoleOut
    unmatched: list[str] = []
    unmatched_count: int = 0


# ── User assignments & overrides ─────────────────────────────────────
class AssignRoleRequest(BaseModel):
    role_id: uuid.UUID
    factory_id: uuid.UUID | None = None
    reason: str | None = None


class OverrideRequest(BaseModel):
    permission_id: uuid.UUID
    granted: bool = True
    factory_id: uuid.UUID | None = None
    expires_at: datetime | None = None
    reason: str | None = None


class AssignmentOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    role_id: uuid.UUID
    factory_id: uuid.UUID | None = None
    is_active: bool
    granted_by: uuid.UUID | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class OverrideOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    permission_id: uuid.UUID
    factory_id: uuid.UUID | None = None
    granted: bool
    expires_at: datetime | None = None
    is_active: bool
    reason: str | None = None

    model_config = {"from_attributes": True}


class OverrideDetail(BaseModel):
    permission_id: uuid.UUID
    code: str
    granted: bool
    factory_id: uuid.UUID | None = None
    expires_at: datetime | None = None
    expired: bool
    reason: str | None = None


class UserPermissionsResponse(BaseModel):
    user_id: uuid.UUID
    role: str
    roles: list[RoleBrief]
    permissions: list[str]
    role_permissions: dict[str, list[str]]
    overrides: list[OverrideDetail]


# ── Batch ────────────────────────────────────────────────────────────
class BatchItem(BaseModel):
    type: Literal["ASSIGN_ROLE", "REVOKE_ROLE", "GRANT_PERMISSION", "DENY_PERMISSION"]
    user_id: uuid.UUID
    role_id: uuid.UUID | None = None
    permission_id: uuid.UUID | None = None
    factory_id: uuid.UUID | None = None
    expires_at: datetime | None = None
    reason: str | None = None

    @model_validator(mode="after")
    def _target_present(self) -> "BatchItem":
        if self.type.endswith("_ROLE") and self.role_id is None:
            raise ValueError(f"{self.type} requires role_id")
        if self.type.endswith("_PERMISSION") and self.permission_id is None:
            raise ValueError(f"{self.type} requires permission_id")
        return self


class BatchRequest(BaseModel):
    operations: list[BatchItem] = Field(min_length=1, max_length=100)


class BatchResponse(BaseModel):
    results: list[dict[str, Any]]
    succeeded: int
    failed: int


# ── Audit ────────────────────────────────────────────────────────────
class ChangeLogOut(BaseModel):
    id: uuid.UUID
    action_type: str
    target_user_id: uuid.UUID | None = None
    operator_id: uuid.UUID | None = None
    role_id: uuid.UUID | None = None
    permission_id: uuid.UUID | None = None
    factory_id: uuid.UUID | None = None
    old_value: Any = None
    new_value: Any = None
    reason: str | None = None
    ip_address: str | None = None
    timestamp: datetime

    model_config = {"from_attributes": True}

    @field_validator("old_value", "new_value", mode="before")
    @classmethod
    def _parse_json(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value


class ChangeLogPage(BaseModel):
    items: list[ChangeLogOut]
    total: int
    limit: int
    offset: int


class AuthEventOut(BaseModel):
    id: uuid.UUID
    event_type: str
    user_id: uuid.UUID | None = None
    username: str | None = None
    success: bool
    detail: str | None = None
    ip_address: str | None = None
    timestamp: datetime

    model_config = {"from_attributes": True}


class AuthEventPage(BaseModel):
    items: list[AuthEventOut]
    total: int
    limit: int
    offset: int


class RevokedTokenStats(BaseModel):
    total: int
    expired: int
    active: int
    by_type: dict[str, int]
    by_reason: dict[str, int]


class CleanupRequest(BaseModel):
    retention_days: int | None = Field(default=None, ge=1)


class CleanupResponse(BaseModel):
    retention_days: int
    permission_logs: int
    auth_events: int
    revoked_tokens: int


# ── Generic ──────────────────────────────────────────────────────────
class MessageResponse(BaseModel):
    detail: str
