"""
Permission controller — catalog, roles, user assignments & overrides.

Every route uses `Depends(require_permission(...))` for enforcement:
- `permission:read`   — read the catalog, roles, logs & stats
- `permission:manage` — change the catalog and roles
- `permission:assign` — grant / revoke roles and overrides

Controllers are THIN — they delegate to `PermissionService` and
return schemas.  The authorized principal's id is the audit operator.
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.core.exceptions import NotFoundError, PermissionDeniedError
from fire_safety.models.role import Role
from fire_safety.models.user import User
from fire_safety.rbac.dependencies import (
    Principal,
    get_db,
    get_request_meta,
    require_permission,
)
from fire_safety.schemas import (
    AssignmentOut,
    AssignRoleRequest,
    BatchRequest,
    BatchResponse,
    ChangeLogPage,
    MessageResponse,
    OverrideOut,
    OverrideRequest,
    PermissionCreate,
    PermissionOut,
    PermissionUpdate,
    RoleCreate,
    RoleOut,
    RolePermissionsResponse,
    RolePermissionsUpdate,
    RoleUpdate,
    UserPermissionsResponse,
)
from fire_safety.services.audit_service import AuditTrail, ChangeLogFilters, RequestMeta
from fire_safety.services.permission_resolver import PermissionResolver
from fire_safety.services.permission_service import BatchOperation, PermissionService

router = APIRouter(prefix="/api/permissions", tags=["Permissions"])


async def _user_in_scope(user_id: uuid.UUID, principal: Principal, db: AsyncSession) -> User:
    """Load a target user, refusing users outside the caller's factory."""
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    scope = principal.scope
    if not scope.is_global and user.factory_id != scope.factory_id:
        raise PermissionDeniedError("Insufficient permissions")
    return user


def _factory_param(principal: Principal, factory_id: uuid.UUID | None) -> uuid.UUID | None:
    """An explicit factory id must be inside the caller's scope; None stays unscoped."""
    return principal.scope.factory_filter(factory_id) if factory_id else None


async def _assignable_role(role_id: uuid.UUID, principal: Principal, db: AsyncSession) -> None:
    """Nobody but a super admin hands out a role ranked above their own."""
    if principal.is_super_admin:
        return
    role = await db.get(Role, role_id)
    if role is not None and role.level > principal.effective.role_level:
        raise PermissionDeniedError("Insufficient permissions")


async def _guard_batch_item(op: BatchOperation, principal: Principal, db: AsyncSession) -> None:
    """The checks the single-item routes make, applied to one batch item."""
    await _user_in_scope(op.user_id, principal, db)
    op.factory_id = _factory_param(principal, op.factory_id)
    if op.type == "ASSIGN_ROLE" and op.role_id is not None:
        await _assignable_role(op.role_id, principal, db)


# ── Catalog ──────────────────────────────────────────────────────────
@router.get("", response_model=list[PermissionOut])
async def list_permissions(
    module: str | None = Query(None),
    is_active: bool | None = Query(None),
    principal: Principal = Depends(require_permission("permission:read")),
    db: AsyncSession = Depends(get_db),
):
    return await PermissionService(db).list_permissions(module=module, is_active=is_active)


@router.get("/modules", response_model=dict[str, list[str]])
async def list_modules(
    principal: Principal = Depends(require_permission("permission:read")),
    db: AsyncSession = Depends(get_db),
):
    """Active modules → permission categories."""
    return await PermissionService(db).list_modules()


@router.post("", response_model=PermissionOut, status_code=201)
async def create_permission(
    body: PermissionCreate,
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await PermissionService(db).create_permission(
        code=body.code,
        name=body.name,
        description=body.description,
        scope=body.scope,
        category=body.category,
        sort_order=body.sort_order,
        operator_id=principal.id,
        reason=body.reason,
        meta=meta,
    )


@router.put("/{permission_id}", response_model=PermissionOut)
async def update_permission(
    permission_id: uuid.UUID,
    body: PermissionUpdate,
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await PermissionService(db).update_permission(
        permission_id, body.changes(), operator_id=principal.id, reason=body.reason, meta=meta,
    )


@router.post("/{permission_id}/deactivate", response_model=PermissionOut)
async def deactivate_permission(
    permission_id: uuid.UUID,
    reason: str | None = Query(None),
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await PermissionService(db).deactivate_permission(
        permission_id, operator_id=principal.id, reason=reason, meta=meta,
    )


@router.delete("/{permission_id}", response_model=MessageResponse)
async def delete_permission(
    permission_id: uuid.UUID,
    reason: str | None = Query(None),
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    await PermissionService(db).delete_permission(
        permission_id, operator_id=principal.id, reason=reason, meta=meta,
    )
    return MessageResponse(detail="Permission deleted")


# ── Roles ────────────────────────────────────────────────────────────
@router.get("/roles", response_model=list[RoleOut])
async def list_roles(
    is_active: bool | None = Query(None),
    is_system: bool | None = Query(None),
    principal: Principal = Depends(require_permission("permission:read")),
    db: AsyncSession = Depends(get_db),
):
    return await PermissionService(db).list_roles(is_active=is_active, is_system=is_system)


@router.get("/roles/{role_id}", response_model=RoleOut)
async def get_role(
    role_id: uuid.UUID,
    principal: Principal = Depends(require_permission("permission:read")),
    db: AsyncSession = Depends(get_db),
):
    return await PermissionService(db).get_role(role_id)


@router.post("/roles", response_model=RoleOut, status_code=201)
async def create_role(
    body: RoleCreate,
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await PermissionService(db).create_role(
        code=body.code,
        name=body.name,
        description=body.description,
        level=body.level,
        is_default=body.is_default,
        operator_id=principal.id,
        reason=body.reason,
        meta=meta,
    )


@router.put("/roles/{role_id}", response_model=RoleOut)
async def update_role(
    role_id: uuid.UUID,
    body: RoleUpdate,
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await PermissionService(db).update_role(
        role_id, body.changes(), operator_id=principal.id, reason=body.reason, meta=meta,
    )


@router.post("/roles/{role_id}/deactivate", response_model=RoleOut)
async def deactivate_role(
    role_id: uuid.UUID,
    reason: str | None = Query(None),
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await PermissionService(db).deactivate_role(
        role_id, operator_id=principal.id, reason=reason, meta=meta,
    )


@router.delete("/roles/{role_id}", response_model=MessageResponse)
async def delete_role(
    role_id: uuid.UUID,
    reason: str | None = Query(None),
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    await PermissionService(db).delete_role(
        role_id, operator_id=principal.id, reason=reason, meta=meta,
    )
    return MessageResponse(detail="Role deleted")


@router.put("/roles/{role_id}/permissions", response_model=RolePermissionsResponse)
async def set_role_permissions(
    role_id: uuid.UUID,
    body: RolePermissionsUpdate,
    principal: Principal = Depends(require_permission("permission:manage")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Replace a role's permissions by ids, or by patterns (`*`, `module:*`, codes)."""
    service = PermissionService(db)
    if body.patterns is not None:
        update = await service.set_role_permission_patterns(
            role_id, body.patterns, operator_id=principal.id, reason=body.reason, meta=meta,
        )
        return RolePermissionsResponse(
            role=RoleOut.model_validate(update.role),
            unmatched=update.resolution.unmatched,
            unmatched_count=update.resolution.unmatched_count,
        )
    role = await service.set_role_permissions(
        role_id, body.permission_ids, operator_id=principal.id, reason=body.reason, meta=meta,
    )
    return RolePermissionsResponse(role=RoleOut.model_validate(role))


# ── Users ────────────────────────────────────────────────────────────
@router.get("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
async def user_permissions(
    user_id: uuid.UUID,
    factory_id: uuid.UUID | None = Query(None),
    principal: Principal = Depends(require_permission("permission:read")),
    db: AsyncSession = Depends(get_db),
):
    """Effective permissions of a user, broken down by source."""
    user = await _user_in_scope(user_id, principal, db)
    breakdown = await PermissionResolver(db).describe(
        user.id, _factory_param(principal, factory_id) or user.factory_id,
    )
    effective = breakdown.effective
    return UserPermissionsResponse(
        user_id=user.id,
        role=effective.effective_role(user),
        roles=effective.roles,
        permissions=effective.all_permissions,
        role_permissions=breakdown.role_permissions,
        overrides=breakdown.overrides,
    )


@router.post("/users/{user_id}/roles", response_model=AssignmentOut, status_code=201)
async def assign_role(
    user_id: uuid.UUID,
    body: AssignRoleRequest,
    principal: Principal = Depends(require_permission("permission:assign")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    await _user_in_scope(user_id, principal, db)
    await _assignable_role(body.role_id, principal, db)
    return await PermissionService(db).assign_role(
        user_id,
        body.role_id,
        operator_id=principal.id,
        factory_id=_factory_param(principal, body.factory_id),
        reason=body.reason,
        meta=meta,
    )


@router.delete("/users/{user_id}/roles/{role_id}", response_model=AssignmentOut)
async def revoke_role(
    user_id: uuid.UUID,
    role_id: uuid.UUID,
    factory_id: uuid.UUID | None = Query(None),
    reason: str | None = Query(None),
    principal: Principal = Depends(require_permission("permission:assign")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    await _user_in_scope(user_id, principal, db)
    return await PermissionService(db).revoke_role(
        user_id,
        role_id,
        operator_id=principal.id,
        factory_id=_factory_param(principal, factory_id),
        reason=reason,
        meta=meta,
    )


@router.post("/users/{user_id}/permissions", response_model=OverrideOut, status_code=201)
async def set_override(
    user_id: uuid.UUID,
    body: OverrideRequest,
    principal: Principal = Depends(require_permission("permission:assign")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Grant (`granted=true`) or explicitly deny (`granted=false`) one permission."""
    await _user_in_scope(user_id, principal, db)
    service = PermissionService(db)
    method = service.grant_permission if body.granted else service.deny_permission
    return await method(
        user_id,
        body.permission_id,
        operator_id=principal.id,
        factory_id=_factory_param(principal, body.factory_id),
        expires_at=body.expires_at,
        reason=body.reason,
        meta=meta,
    )


@router.delete("/users/{user_id}/permissions/{permission_id}", response_model=OverrideOut)
async def remove_override(
    user_id: uuid.UUID,
    permission_id: uuid.UUID,
    factory_id: uuid.UUID | None = Query(None),
    reason: str | None = Query(None),
    principal: Principal = Depends(require_permission("permission:assign")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    await _user_in_scope(user_id, principal, db)
    return await PermissionService(db).remove_override(
        user_id,
        permission_id,
        operator_id=principal.id,
        factory_id=_factory_param(principal, factory_id),
        reason=reason,
        meta=meta,
    )


@router.post("/users/{user_id}/permissions/{permission_id}/expire", response_model=OverrideOut)
async def expire_override(
    user_id: uuid.UUID,
    permission_id: uuid.UUID,
    factory_id: uuid.UUID | None = Query(None),
    reason: str | None = Query(None),
    principal: Principal = Depends(require_permission("permission:assign")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    await _user_in_scope(user_id, principal, db)
    return await PermissionService(db).expire_override(
        user_id,
        permission_id,
        operator_id=principal.id,
        factory_id=_factory_param(principal, factory_id),
        reason=reason,
        meta=meta,
    )


# ── Logs, stats, batch ───────────────────────────────────────────────
@router.get("/logs", response_model=ChangeLogPage)
async def change_logs(
    target_user_id: uuid.UUID | None = Query(None),
    operator_id: uuid.UUID | None = Query(None),
    action_type: str | None = Query(None),
    factory_id: uuid.UUID | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_permission("permission:read")),
    db: AsyncSession = Depends(get_db),
):
    filters = ChangeLogFilters(
        target_user_id=target_user_id,
        operator_id=operator_id,
        action_type=action_type,
        factory_id=principal.scope.factory_filter(factory_id),
        start=start,
        end=end,
    )
    rows, total = await AuditTrail(db).query_changes(filters, limit=limit, offset=offset)
    return ChangeLogPage(items=rows, total=total, limit=limit, offset=offset)


@router.get("/stats")
async def stats(
    principal: Principal = Depends(require_permission("permission:read")),
    db: AsyncSession = Depends(get_db),
):
    return await PermissionService(db).stats()


@router.post("/batch", response_model=BatchResponse)
async def batch(
    body: BatchRequest,
    principal: Principal = Depends(require_permission("permission:assign")),
    db: AsyncSession = Depends(get_db),
    meta: RequestMeta = Depends(get_request_meta),
):
    """
    Apply several assignments at once; each one succeeds or fails on its own.

    Every item passes the same factory-scope and role-level checks as the
    single-item routes; an item that fails them is reported as `forbidden`.
    """
    operations = [BatchOperation(**item.model_dump()) for item in body.operations]
    results = await PermissionService(db).batch(
        operations,
        operator_id=principal.id,
        meta=meta,
        guard=lambda op: _guard_batch_item(op, principal, db),
    )
    succeeded = sum(1 for r in results if r.ok)
    return BatchResponse(
        results=[r.to_dict() for r in results],
        succeeded=succeeded,
        failed=len(results) - succeeded,
    )
