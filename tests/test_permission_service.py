"""Catalog, role, assignment and override management with its audit trail."""

import json
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from fire_safety.core.exceptions import ConflictError, NotFoundError, ValidationError
from fire_safety.models.assignment import UserRoleAssignment
from fire_safety.models.audit_log import ChangeAction, PermissionChangeLog
from fire_safety.models.base import as_utc, utcnow
from fire_safety.models.role import Role
from fire_safety.rbac.permission_seed import PERMISSIONS, ROLES
from fire_safety.services.audit_service import RequestMeta
from fire_safety.services.permission_resolver import PermissionResolver
from fire_safety.services.permission_service import BatchOperation, PermissionService
from tests.helpers import create_factory, create_user, perm_by_code, role_by_code


async def _log_count(session, action: ChangeAction | None = None) -> int:
    stmt = select(func.count()).select_from(PermissionChangeLog)
    if action is not None:
        stmt = stmt.where(PermissionChangeLog.action_type == action.value)
    return (await session.execute(stmt)).scalar_one()


async def _last_log(session) -> PermissionChangeLog:
    stmt = select(PermissionChangeLog).order_by(PermissionChangeLog.timestamp.desc()).limit(1)
    return (await session.execute(stmt)).scalar_one()


# ── Catalog ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_permission_writes_one_log(session):
    service = PermissionService(session)
    operator = await create_user(session, "operator")
    meta = RequestMeta(ip_address="10.0.0.9", user_agent="pytest")

    perm = await service.create_permission(
        code="extinguisher:refill", name="Refill extinguishers", operator_id=operator.id, meta=meta,
    )

    assert (perm.module, perm.action) == ("extinguisher", "refill")
    assert await _log_count(session) == 1
    log = await _last_log(session)
    assert log.action_type == ChangeAction.CREATE_PERMISSION.value
    assert log.operator_id == operator.id
    assert log.permission_id == perm.id
    assert log.ip_address == "10.0.0.9"
    assert json.loads(log.new_value)["code"] == "extinguisher:refill"


@pytest.mark.asyncio
async def test_create_permission_rejects_duplicates_and_bad_codes(session):
    service = PermissionService(session)

    with pytest.raises(ConflictError):
        await service.create_permission(code="equipment:read", name="dup", operator_id=None)
    with pytest.raises(ValidationError):
        await service.create_permission(code="nocolon", name="bad", operator_id=None)
    assert await _log_count(session) == 0


@pytest.mark.asyncio
async def test_permission_code_is_immutable(session):
    service = PermissionService(session)
    perm = await perm_by_code(session, "equipment:read")

    with pytest.raises(ValidationError) as exc:
        await service.update_permission(perm.id, {"code": "equipment:view"}, operator_id=None)
    assert exc.value.errors == ["'code' is immutable"]

    updated = await service.update_permission(perm.id, {"name": "See equipment"}, operator_id=None)
    assert updated.name == "See equipment"
    assert await _log_count(session, ChangeAction.UPDATE_PERMISSION) == 1


@pytest.mark.asyncio
async def test_referenced_permission_cannot_be_deleted(session):
    service = PermissionService(session)
    perm = await perm_by_code(session, "equipment:read")

    with pytest.raises(ConflictError):
        await service.delete_permission(perm.id, operator_id=None)


@pytest.mark.asyncio
async def test_unreferenced_permission_is_deleted_with_its_overrides(session):
    service = PermissionService(session)
    user = await create_user(session, "holder")
    perm = await service.create_permission(code="drill:run", name="Run drills", operator_id=None)
    await service.grant_permission(user.id, perm.id, operator_id=None)

    await service.delete_permission(perm.id, operator_id=None)

    with pytest.raises(NotFoundError):
        await service.get_permission(perm.id)
    assert (await PermissionResolver(session).resolve(user.id)).all_permissions == []
    assert await _log_count(session, ChangeAction.DELETE_PERMISSION) == 1


@pytest.mark.asyncio
async def test_list_permissions_and_modules(session):
    service = PermissionService(session)

    equipment = await service.list_permissions(module="equipment")
    modules = await service.list_modules()

    assert {p.code for p in equipment} == {p["code"] for p in PERMISSIONS if p["module"] == "equipment"}
    assert set(modules) == {p["module"] for p in PERMISSIONS}
    assert modules["equipment"] == ["DATA", "MODULE"]


# ── Roles ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_role_patterns_report_unmatched(session):
    service = PermissionService(session)
    role = await service.create_role(code="FIRE_WARDEN", name="Fire warden", operator_id=None)

    update = await service.set_role_permission_patterns(
        role.id, ["equipment:*", "bogus:thing"], operator_id=None,
    )

    assert update.resolution.unmatched == ["bogus:thing"]
    assert update.resolution.unmatched_count == 1
    assert update.role.permission_codes == sorted(
        p["code"] for p in PERMISSIONS if p["module"] == "equipment"
    )


@pytest.mark.asyncio
async def test_set_role_permissions_replaces_the_set_with_one_log(session):
    service = PermissionService(session)
    role = await role_by_code(session, "REPORT_VIEWER")
    dashboard = await perm_by_code(session, "report:dashboard")
    logs = await perm_by_code(session, "system:logs")
    before = await _log_count(session)

    updated = await service.set_role_permissions(
        role.id, [dashboard.id, logs.id, dashboard.id], operator_id=None,
    )

    assert updated.permission_codes == ["report:dashboard", "system:logs"]
    assert await _log_count(session) == before + 1
    log = await _last_log(session)
    assert log.action_type == ChangeAction.UPDATE_ROLE_PERMISSIONS.value
    assert log.role_id == role.id
    assert log.target_user_id is None
    assert json.loads(log.new_value) == ["report:dashboard", "system:logs"]
    assert "report:monthly" in json.loads(log.old_value)


@pytest.mark.asyncio
async def test_set_role_permissions_unknown_id(session):
    role = await role_by_code(session, "INSPECTOR")
    with pytest.raises(NotFoundError):
        await PermissionService(session).set_role_permissions(role.id, [uuid.uuid4()], operator_id=None)
    assert len(role.permission_codes) == 5


@pytest.mark.asyncio
async def test_role_change_reaches_assigned_users(session):
    factory = await create_factory(session)
    user = await create_user(session, "viewer", factory=factory)
    service = PermissionService(session)
    role = await role_by_code(session, "REPORT_VIEWER")
    await service.assign_role(user.id, role.id, operator_id=None, factory_id=factory.id)

    await service.set_role_permission_patterns(role.id, ["report:*"], operator_id=None)

    effective = await PermissionResolver(session).resolve(user.id, factory.id)
    assert effective.all_permissions == ["report:dashboard", "report:export", "report:monthly"]


@pytest.mark.asyncio
async def test_system_roles_cannot_be_deleted(session):
    role = await role_by_code(session, "INSPECTOR")
    with pytest.raises(ConflictError):
        await PermissionService(session).delete_role(role.id, operator_id=None)


@pytest.mark.asyncio
async def test_assigned_role_cannot_be_deleted_until_revoked(session):
    service = PermissionService(session)
    user = await create_user(session, "warden")
    role = await service.create_role(code="FIRE_WARDEN", name="Fire warden", operator_id=None)
    await service.set_role_permission_patterns(role.id, ["issue:*"], operator_id=None)
    await service.assign_role(user.id, role.id, operator_id=None)

    with pytest.raises(ConflictError):
        await service.delete_role(role.id, operator_id=None)

    await service.revoke_role(user.id, role.id, operator_id=None)
    await service.delete_role(role.id, operator_id=None)

    assert await service.get_role_by_code("FIRE_WARDEN") is None
    remaining = (
        await session.execute(
            select(func.count()).select_from(UserRoleAssignment).where(UserRoleAssignment.role_id == role.id)
        )
    ).scalar_one()
    assert remaining == 0
    assert await _log_count(session, ChangeAction.DELETE_ROLE) == 1


@pytest.mark.asyncio
async def test_role_update_rejects_code_change(session):
    service = PermissionService(session)
    role = await role_by_code(session, "INSPECTOR")

    with pytest.raises(ValidationError):
        await service.update_role(role.id, {"code": "X"}, operator_id=None)
    updated = await service.update_role(role.id, {"description": "Field staff"}, operator_id=None)
    assert updated.description == "Field staff"


# ── Assignments ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assign_twice_conflicts_and_revoked_rows_are_reused(session):
    service = PermissionService(session)
    user = await create_user(session, "reassigned")
    role = await role_by_code(session, "INSPECTOR")

    first = await service.assign_role(user.id, role.id, operator_id=None)
    with pytest.raises(ConflictError):
        await service.assign_role(user.id, role.id, operator_id=None)

    revoked = await service.revoke_role(user.id, role.id, operator_id=None)
    assert revoked.is_active is False
    again = await service.assign_role(user.id, role.id, operator_id=None)

    assert again.id == first.id
    assert again.is_active is True
    assert await _log_count(session, ChangeAction.GRANT_ROLE) == 2
    assert await _log_count(session, ChangeAction.REVOKE_ROLE) == 1


@pytest.mark.asyncio
async def test_revoke_missing_assignment(session):
    user = await create_user(session, "unassigned")
    role = await role_by_code(session, "INSPECTOR")
    with pytest.raises(NotFoundError):
        await PermissionService(session).revoke_role(user.id, role.id, operator_id=None)


@pytest.mark.asyncio
async def test_inactive_role_cannot_be_assigned(session):
    service = PermissionService(session)
    user = await create_user(session, "late")
    role = await role_by_code(session, "REPORT_VIEWER")
    await service.deactivate_role(role.id, operator_id=None)

    with pytest.raises(ConflictError):
        await service.assign_role(user.id, role.id, operator_id=None)


@pytest.mark.asyncio
async def test_assignment_audit_row_targets_the_user(session):
    factory = await create_factory(session)
    operator = await create_user(session, "boss")
    user = await create_user(session, "target", factory=factory)
    role = await role_by_code(session, "INSPECTOR")

    await PermissionService(session).assign_role(
        user.id, role.id, operator_id=operator.id, factory_id=factory.id, reason="onboarding",
    )

    log = await _last_log(session)
    assert log.target_user_id == user.id
    assert log.operator_id == operator.id
    assert log.role_id == role.id
    assert log.factory_id == factory.id
    assert log.reason == "onboarding"
    assert json.loads(log.new_value)["role_code"] == "INSPECTOR"


# ── Overrides ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_grant_then_deny_updates_the_same_override(session):
    service = PermissionService(session)
    user = await create_user(session, "flipper")
    perm = await perm_by_code(session, "report:dashboard")

    granted = await service.grant_permission(user.id, perm.id, operator_id=None)
    denied = await service.deny_permission(user.id, perm.id, operator_id=None)

    assert denied.id == granted.id
    assert denied.granted is False
    log = await _last_log(session)
    assert log.action_type == ChangeAction.DENY_PERMISSION.value
    assert json.loads(log.old_value)["granted"] is True


@pytest.mark.asyncio
async def test_remove_and_expire_override(session):
    service = PermissionService(session)
    user = await create_user(session, "temporary")
    dashboard = await perm_by_code(session, "report:dashboard")
    monthly = await perm_by_code(session, "report:monthly")
    await service.grant_permission(user.id, dashboard.id, operator_id=None)
    await service.grant_permission(
        user.id, monthly.id, operator_id=None, expires_at=utcnow() + timedelta(days=1),
    )

    await service.remove_override(user.id, dashboard.id, operator_id=None)
    expired = await service.expire_override(user.id, monthly.id, operator_id=None)

    assert as_utc(expired.expires_at) <= utcnow()
    assert (await PermissionResolver(session).resolve(user.id)).all_permissions == []
    with pytest.raises(NotFoundError):
        await service.remove_override(user.id, dashboard.id, operator_id=None)


# ── Batch ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_batch_isolates_failures(session):
    service = PermissionService(session)
    factory = await create_factory(session)
    user = await create_user(session, "batched", factory=factory)
    inspector = await role_by_code(session, "INSPECTOR")
    dashboard = await perm_by_code(session, "report:dashboard")

    results = await service.batch(
        [
            BatchOperation(type="ASSIGN_ROLE", user_id=user.id, role_id=inspector.id, factory_id=factory.id),
            BatchOperation(type="ASSIGN_ROLE", user_id=user.id, role_id=inspector.id, factory_id=factory.id),
            BatchOperation(type="GRANT_PERMISSION", user_id=user.id, permission_id=dashboard.id),
            BatchOperation(type="EXPLODE", user_id=user.id),
            BatchOperation(type="DENY_PERMISSION", user_id=user.id, permission_id=uuid.uuid4()),
        ],
        operator_id=None,
    )

    assert [r.ok for r in results] == [True, False, True, False, False]
    assert results[1].kind == "ConflictError"
    assert results[3].kind == "validation"
    assert results[4].kind == "NotFoundError"
    assert results[0].to_dict()["data"]["type"] == "ASSIGN_ROLE"
    assert await _log_count(session) == 2

    effective = await PermissionResolver(session).resolve(user.id, factory.id)
    assert "report:dashboard" in effective.all_permissions
    assert "inspection:create" in effective.all_permissions


# ── Stats ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stats(session):
    stats = await PermissionService(session).stats()

    assert stats["total_permissions"] == len(PERMISSIONS)
    assert stats["total_roles"] == len(ROLES)
    assert stats["active_roles"] == len(ROLES)
    assert stats["permissions_by_module"]["equipment"] == 7
    assert stats["roles_by_level"] == {"level3": 1, "level2": 3, "level1": 2}


@pytest.mark.asyncio
async def test_list_roles_orders_by_level(session):
    roles = await PermissionService(session).list_roles()

    assert roles[0].code == "SUPER_ADMIN"
    assert all(isinstance(r, Role) for r in roles)
    assert [r.level for r in roles] == sorted((r.level for r in roles), reverse=True)
