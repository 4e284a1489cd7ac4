"""
Permission service — catalog, roles, assignments & overrides.

Every mutating method takes the operator's id, an optional reason and
optional request metadata, and writes EXACTLY ONE PermissionChangeLog
row through the same session.  Nothing here commits: the request
dependency commits the mutation and its audit row together, or rolls
both back.

Cascades are explicit.  Deleting a role or a permission removes its
dependent rows here, in the same transaction, in a visible order,
instead of relying on ON DELETE CASCADE.

Concurrent `set_role_permissions` calls on one role are not serialized
beyond the database's isolation level: last commit wins.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.core.exceptions import (
    ConflictError,
    FireSafetyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from fire_safety.core.result import Err, Ok, Result
from fire_safety.models.assignment import UserPermissionOverride, UserRoleAssignment
from fire_safety.models.audit_log import ChangeAction
from fire_safety.models.base import utcnow
from fire_safety.models.permission import Permission
from fire_safety.models.role import Role, RolePermission
from fire_safety.models.user import User
from fire_safety.rbac.matching import PatternResolution, resolve_permission_patterns
from fire_safety.services.audit_service import AuditTrail, RequestMeta

logger = logging.getLogger(__name__)

PERMISSION_UPDATABLE = {"name", "description", "scope", "category", "sort_order"}
ROLE_UPDATABLE = {"name", "description", "level", "is_default"}


def _permission_snapshot(p: Permission) -> dict[str, Any]:
    return {
        "id": p.id,
        "code": p.code,
        "name": p.name,
        "module": p.module,
        "action": p.action,
        "scope": p.scope,
        "is_active": p.is_active,
    }


def _role_snapshot(r: Role) -> dict[str, Any]:
    return {
        "id": r.id,
        "code": r.code,
        "name": r.name,
        "level": r.level,
        "is_system": r.is_system,
        "is_default": r.is_default,
        "is_active": r.is_active,
    }


def _split_code(code: str) -> tuple[str, str]:
    module, sep, action = code.partition(":")
    if not sep or not module or not action:
        raise ValidationError("Invalid permission code", [f"'{code}' is not of the form module:action"])
    return module, action


def _factory_match(column, factory_id: uuid.UUID | None):
    return column.is_(None) if factory_id is None else column == factory_id


@dataclass
class BatchOperation:
    type: str
    user_id: uuid.UUID
    role_id: uuid.UUID | None = None
    permission_id: uuid.UUID | None = None
    factory_id: uuid.UUID | None = None
    expires_at: datetime | None = None
    reason: str | None = None


@dataclass
class RolePatternUpdate:
    role: Role
    resolution: PatternResolution = field(default_factory=PatternResolution)


class PermissionService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditTrail(db)

    # ── Lookups ──────────────────────────────────────────────────────

    async def get_permission(self, permission_id: uuid.UUID) -> Permission:
        perm = await self.db.get(Permission, permission_id)
        if perm is None:
            raise NotFoundError("Permission not found")
        return perm

    async def get_role(self, role_id: uuid.UUID) -> Role:
        role = await self.db.get(Role, role_id)
        if role is None:
            raise NotFoundError("Role not found")
        return role

    async def get_role_by_code(self, code: str) -> Role | None:
        stmt = select(Role).where(Role.code == code)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _get_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def list_permissions(
        self, module: str | None = None, is_active: bool | None = None,
    ) -> list[Permission]:
        stmt = select(Permission)
        if module:
            stmt = stmt.where(Permission.module == module)
        if is_active is not None:
            stmt = stmt.where(Permission.is_active == is_active)
        stmt = stmt.order_by(
            Permission.module, Permission.category, Permission.sort_order, Permission.code,
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_modules(self) -> dict[str, list[str]]:
        """Active modules with their permission categories."""
        stmt = (
            select(Permission.module, Permission.category)
            .where(Permission.is_active == True)  # noqa: E712
            .distinct()
            .order_by(Permission.module, Permission.category)
        )
        modules: dict[str, list[str]] = {}
        for module, category in (await self.db.execute(stmt)).all():
            modules.setdefault(module, []).append(category)
        return modules

    async def list_roles(
        self, is_active: bool | None = None, is_system: bool | None = None,
    ) -> list[Role]:
        stmt = select(Role)
        if is_active is not None:
            stmt = stmt.where(Role.is_active == is_active)
        if is_system is not None:
            stmt = stmt.where(Role.is_system == is_system)
        stmt = stmt.order_by(Role.level.desc(), Role.name)
        return list((await self.db.execute(stmt)).scalars().all())

    # ── Permission catalog ───────────────────────────────────────────

    async def create_permission(
        self,
        *,
        code: str,
        name: str,
        operator_id: uuid.UUID | None,
        description: str | None = None,
        scope: str = "factory",
        category: str = "MODULE",
        sort_order: int = 0,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Permission:
        module, action = _split_code(code)
        exists = (
            await self.db.execute(select(Permission.id).where(Permission.code == code))
        ).first()
        if exists:
            raise ConflictError(f"Permission '{code}' already exists")

        perm = Permission(
            id=uuid.uuid4(),
            code=code,
            name=name,
            description=description,
            module=module,
            action=action,
            scope=scope,
            category=category,
            sort_order=sort_order,
            is_active=True,
        )
        self.db.add(perm)
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.CREATE_PERMISSION,
            operator_id=operator_id,
            permission_id=perm.id,
            new_value=_permission_snapshot(perm),
            reason=reason or f"Create permission {code}",
            meta=meta,
        )
        return perm

    async def update_permission(
        self,
        permission_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        operator_id: uuid.UUID | None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Permission:
        illegal = set(changes) - PERMISSION_UPDATABLE
        if illegal:
            raise ValidationError(
                "Permission fields cannot be changed",
                [f"'{name}' is immutable" for name in sorted(illegal)],
            )
        perm = await self.get_permission(permission_id)
        old = _permission_snapshot(perm)
        for key, value in changes.items():
            setattr(perm, key, value)
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.UPDATE_PERMISSION,
            operator_id=operator_id,
            permission_id=perm.id,
            old_value=old,
            new_value=_permission_snapshot(perm),
            reason=reason or f"Update permission {perm.code}",
            meta=meta,
        )
        return perm

    async def deactivate_permission(
        self,
        permission_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Permission:
        perm = await self.get_permission(permission_id)
        old = _permission_snapshot(perm)
        perm.is_active = False
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.DEACTIVATE_PERMISSION,
            operator_id=operator_id,
            permission_id=perm.id,
            old_value=old,
            new_value=_permission_snapshot(perm),
            reason=reason or f"Deactivate permission {perm.code}",
            meta=meta,
        )
        return perm

    async def delete_permission(
        self,
        permission_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> None:
        """Hard delete, allowed only for permissions no role references."""
        perm = await self.get_permission(permission_id)
        referenced = (
            await self.db.execute(
                select(func.count()).select_from(RolePermission)
                .where(RolePermission.permission_id == permission_id)
            )
        ).scalar_one()
        if referenced:
            raise ConflictError(
                f"Permission '{perm.code}' is referenced by {referenced} role link(s); deactivate it instead"
            )

        old = _permission_snapshot(perm)
        await self.db.execute(
            delete(UserPermissionOverride).where(UserPermissionOverride.permission_id == permission_id)
        )
        await self.db.delete(perm)
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.DELETE_PERMISSION,
            operator_id=operator_id,
            old_value=old,
            reason=reason or f"Delete permission {old['code']}",
            meta=meta,
        )

    # ── Roles ────────────────────────────────────────────────────────

    async def create_role(
        self,
        *,
        code: str,
        name: str,
        operator_id: uuid.UUID | None,
        description: str | None = None,
        level: int = 1,
        is_default: bool = False,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Role:
        if await self.get_role_by_code(code) is not None:
            raise ConflictError(f"Role '{code}' already exists")
        role = Role(
            id=uuid.uuid4(),
            code=code,
            name=name,
            description=description,
            level=level,
            is_system=False,
            is_default=is_default,
            is_active=True,
        )
        self.db.add(role)
        await self.db.flush()
        await self.db.refresh(role, ["permission_links"])
        await self.audit.record_change(
            ChangeAction.CREATE_ROLE,
            operator_id=operator_id,
            role_id=role.id,
            new_value=_role_snapshot(role),
            reason=reason or f"Create role {code}",
            meta=meta,
        )
        return role

    async def update_role(
        self,
        role_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        operator_id: uuid.UUID | None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Role:
        illegal = set(changes) - ROLE_UPDATABLE
        if illegal:
            raise ValidationError(
                "Role fields cannot be changed",
                [f"'{name}' is immutable" for name in sorted(illegal)],
            )
        role = await self.get_role(role_id)
        old = _role_snapshot(role)
        for key, value in changes.items():
            setattr(role, key, value)
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.UPDATE_ROLE,
            operator_id=operator_id,
            role_id=role.id,
            old_value=old,
            new_value=_role_snapshot(role),
            reason=reason or f"Update role {role.code}",
            meta=meta,
        )
        return role

    async def deactivate_role(
        self,
        role_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Role:
        role = await self.get_role(role_id)
        old = _role_snapshot(role)
        role.is_active = False
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.DEACTIVATE_ROLE,
            operator_id=operator_id,
            role_id=role.id,
            old_value=old,
            new_value=_role_snapshot(role),
            reason=reason or f"Deactivate role {role.code}",
            meta=meta,
        )
        return role

    async def delete_role(
        self,
        role_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> None:
        role = await self.get_role(role_id)
        if role.is_system:
            raise ConflictError("System roles cannot be deleted")
        in_use = (
            await self.db.execute(
                select(func.count()).select_from(UserRoleAssignment).where(
                    UserRoleAssignment.role_id == role_id,
                    UserRoleAssignment.is_active == True,  # noqa: E712
                )
            )
        ).scalar_one()
        if in_use:
            raise ConflictError("Cannot delete a role that is still assigned to users")

        old = _role_snapshot(role)
        old["permissions"] = role.permission_codes
        # Children first: revoked assignments, permission links, then the role.
        await self.db.execute(delete(UserRoleAssignment).where(UserRoleAssignment.role_id == role_id))
        # Links and role go out in one flush so the links are not re-parented to NULL.
        for link in list(role.permission_links):
            await self.db.delete(link)
        await self.db.delete(role)
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.DELETE_ROLE,
            operator_id=operator_id,
            old_value=old,
            reason=reason or f"Delete role {old['code']}",
            meta=meta,
        )

    async def set_role_permissions(
        self,
        role_id: uuid.UUID,
        permission_ids: Sequence[uuid.UUID],
        *,
        operator_id: uuid.UUID | None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Role:
        """Replace a role's permission set (delete all links, insert the new set)."""
        role = await self.get_role(role_id)
        wanted = list(dict.fromkeys(permission_ids))

        found = (
            await self.db.execute(select(Permission).where(Permission.id.in_(wanted)))
        ).scalars().all() if wanted else []
        missing = set(wanted) - {p.id for p in found}
        if missing:
            raise NotFoundError(f"Unknown permission id(s): {', '.join(sorted(map(str, missing)))}")

        old_codes = role.permission_codes
        await self.db.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
        by_id = {p.id: p for p in found}
        for pid in wanted:
            self.db.add(
                RolePermission(id=uuid.uuid4(), role_id=role_id, permission=by_id[pid], created_by=operator_id)
            )
        await self.db.flush()
        await self.db.refresh(role, ["permission_links"])

        await self.audit.record_change(
            ChangeAction.UPDATE_ROLE_PERMISSIONS,
            operator_id=operator_id,
            role_id=role.id,
            old_value=old_codes,
            new_value=sorted(p.code for p in found),
            reason=reason or f"Update permissions of role {role.code}",
            meta=meta,
        )
        return role

    async def set_role_permission_patterns(
        self,
        role_id: uuid.UUID,
        patterns: Sequence[str],
        *,
        operator_id: uuid.UUID | None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> RolePatternUpdate:
        catalog = (await self.db.execute(select(Permission))).scalars().all()
        resolution = resolve_permission_patterns(patterns, catalog)
        role = await self.set_role_permissions(
            role_id, resolution.permission_ids,
            operator_id=operator_id, reason=reason, meta=meta,
        )
        return RolePatternUpdate(role=role, resolution=resolution)

    # ── User ↔ role ──────────────────────────────────────────────────

    async def _find_assignment(
        self, user_id: uuid.UUID, role_id: uuid.UUID, factory_id: uuid.UUID | None,
    ) -> UserRoleAssignment | None:
        stmt = select(UserRoleAssignment).where(
            UserRoleAssignment.user_id == user_id,
            UserRoleAssignment.role_id == role_id,
            _factory_match(UserRoleAssignment.factory_id, factory_id),
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def assign_role(
        self,
        user_id: uuid.UUID,
        role_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        factory_id: uuid.UUID | None = None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> UserRoleAssignment:
        await self._get_user(user_id)
        role = await self.get_role(role_id)
        if not role.is_active:
            raise ConflictError(f"Role '{role.code}' is inactive")

        assignment = await self._find_assignment(user_id, role_id, factory_id)
        if assignment is not None and assignment.is_active:
            raise ConflictError("User already has this role")
        if assignment is None:
            assignment = UserRoleAssignment(
                id=uuid.uuid4(),
                user_id=user_id,
                role_id=role_id,
                factory_id=factory_id,
                granted_by=operator_id,
            )
            self.db.add(assignment)
        else:
            # A re-grant counts as a new grant for role ordering.
            assignment.is_active = True
            assignment.granted_by = operator_id
            assignment.created_at = utcnow()
        await self.db.flush()
        await self.db.refresh(assignment, ["role"])

        await self.audit.record_change(
            ChangeAction.GRANT_ROLE,
            operator_id=operator_id,
            target_user_id=user_id,
            role_id=role_id,
            factory_id=factory_id,
            new_value={"role_id": role.id, "role_code": role.code, "role_name": role.name},
            reason=reason or f"Assign role {role.code}",
            meta=meta,
        )
        return assignment

    async def revoke_role(
        self,
        user_id: uuid.UUID,
        role_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        factory_id: uuid.UUID | None = None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> UserRoleAssignment:
        assignment = await self._find_assignment(user_id, role_id, factory_id)
        if assignment is None or not assignment.is_active:
            raise NotFoundError("User does not have this role")
        role = await self.get_role(role_id)
        assignment.is_active = False
        await self.db.flush()

        await self.audit.record_change(
            ChangeAction.REVOKE_ROLE,
            operator_id=operator_id,
            target_user_id=user_id,
            role_id=role_id,
            factory_id=factory_id,
            old_value={"role_id": role.id, "role_code": role.code, "role_name": role.name},
            reason=reason or f"Revoke role {role.code}",
            meta=meta,
        )
        return assignment

    # ── User ↔ permission overrides ──────────────────────────────────

    async def _find_override(
        self, user_id: uuid.UUID, permission_id: uuid.UUID, factory_id: uuid.UUID | None,
    ) -> UserPermissionOverride | None:
        stmt = select(UserPermissionOverride).where(
            UserPermissionOverride.user_id == user_id,
            UserPermissionOverride.permission_id == permission_id,
            _factory_match(UserPermissionOverride.factory_id, factory_id),
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _upsert_override(
        self,
        action: ChangeAction,
        user_id: uuid.UUID,
        permission_id: uuid.UUID,
        *,
        granted: bool,
        operator_id: uuid.UUID | None,
        factory_id: uuid.UUID | None,
        expires_at: datetime | None,
        reason: str | None,
        meta: RequestMeta | None,
    ) -> UserPermissionOverride:
        await self._get_user(user_id)
        perm = await self.get_permission(permission_id)

        override = await self._find_override(user_id, permission_id, factory_id)
        old = None
        if override is None:
            override = UserPermissionOverride(
                id=uuid.uuid4(),
                user_id=user_id,
                permission_id=permission_id,
                factory_id=factory_id,
            )
            self.db.add(override)
        else:
            old = {"granted": override.granted, "is_active": override.is_active, "expires_at": override.expires_at}
        override.granted = granted
        override.is_active = True
        override.expires_at = expires_at
        override.granted_by = operator_id
        override.reason = reason
        await self.db.flush()
        await self.db.refresh(override, ["permission"])

        verb = "Grant" if granted else "Deny"
        await self.audit.record_change(
            action,
            operator_id=operator_id,
            target_user_id=user_id,
            permission_id=permission_id,
            factory_id=factory_id,
            old_value=old,
            new_value={
                "permission_code": perm.code,
                "granted": granted,
                "expires_at": expires_at,
            },
            reason=reason or f"{verb} permission {perm.code}",
            meta=meta,
        )
        return override

    async def grant_permission(
        self,
        user_id: uuid.UUID,
        permission_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        factory_id: uuid.UUID | None = None,
        expires_at: datetime | None = None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> UserPermissionOverride:
        return await self._upsert_override(
            ChangeAction.GRANT_PERMISSION, user_id, permission_id,
            granted=True, operator_id=operator_id, factory_id=factory_id,
            expires_at=expires_at, reason=reason, meta=meta,
        )

    async def deny_permission(
        self,
        user_id: uuid.UUID,
        permission_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        factory_id: uuid.UUID | None = None,
        expires_at: datetime | None = None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> UserPermissionOverride:
        return await self._upsert_override(
            ChangeAction.DENY_PERMISSION, user_id, permission_id,
            granted=False, operator_id=operator_id, factory_id=factory_id,
            expires_at=expires_at, reason=reason, meta=meta,
        )

    async def remove_override(
        self,
        user_id: uuid.UUID,
        permission_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        factory_id: uuid.UUID | None = None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> UserPermissionOverride:
        override = await self._find_override(user_id, permission_id, factory_id)
        if override is None or not override.is_active:
            raise NotFoundError("No active permission override for this user")
        override.is_active = False
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.REVOKE_OVERRIDE,
            operator_id=operator_id,
            target_user_id=user_id,
            permission_id=permission_id,
            factory_id=factory_id,
            old_value={"permission_code": override.permission.code, "granted": override.granted},
            reason=reason or f"Remove override for {override.permission.code}",
            meta=meta,
        )
        return override

    async def expire_override(
        self,
        user_id: uuid.UUID,
        permission_id: uuid.UUID,
        *,
        operator_id: uuid.UUID | None,
        factory_id: uuid.UUID | None = None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> UserPermissionOverride:
        override = await self._find_override(user_id, permission_id, factory_id)
        if override is None or not override.is_active:
            raise NotFoundError("No active permission override for this user")
        old_expiry = override.expires_at
        override.expires_at = utcnow()
        await self.db.flush()
        await self.audit.record_change(
            ChangeAction.EXPIRE_OVERRIDE,
            operator_id=operator_id,
            target_user_id=user_id,
            permission_id=permission_id,
            factory_id=factory_id,
            old_value={"expires_at": old_expiry},
            new_value={"expires_at": override.expires_at},
            reason=reason or f"Expire override for {override.permission.code}",
            meta=meta,
        )
        return override

    # ── Batch ────────────────────────────────────────────────────────

    async def batch(
        self,
        operations: Sequence[BatchOperation],
        *,
        operator_id: uuid.UUID | None,
        meta: RequestMeta | None = None,
        guard: Callable[[BatchOperation], Awaitable[None]] | None = None,
    ) -> list[Result]:
        """
        Run each operation in its own savepoint; one failure does not undo the others.

        `guard` runs before each operation and may rewrite it or raise
        PermissionDeniedError, which is reported as a `forbidden` item.
        """
        handlers = {
            "ASSIGN_ROLE": lambda op: self.assign_role(
                op.user_id, op.role_id, operator_id=operator_id,
                factory_id=op.factory_id, reason=op.reason, meta=meta,
            ),
            "REVOKE_ROLE": lambda op: self.revoke_role(
                op.user_id, op.role_id, operator_id=operator_id,
                factory_id=op.factory_id, reason=op.reason, meta=meta,
            ),
            "GRANT_PERMISSION": lambda op: self.grant_permission(
                op.user_id, op.permission_id, operator_id=operator_id,
                factory_id=op.factory_id, expires_at=op.expires_at, reason=op.reason, meta=meta,
            ),
            "DENY_PERMISSION": lambda op: self.deny_permission(
                op.user_id, op.permission_id, operator_id=operator_id,
                factory_id=op.factory_id, expires_at=op.expires_at, reason=op.reason, meta=meta,
            ),
        }

        results: list[Result] = []
        for op in operations:
            handler = handlers.get(op.type)
            if handler is None:
                results.append(Err("validation", f"Unknown operation type: {op.type}"))
                continue
            try:
                if guard is not None:
                    await guard(op)
                async with self.db.begin_nested():
                    row = await handler(op)
                results.append(Ok({"type": op.type, "id": row.id}))
            except PermissionDeniedError as exc:
                results.append(Err("forbidden", exc.message))
            except FireSafetyError as exc:
                results.append(Err(type(exc).__name__, exc.message))
            except SQLAlchemyError as exc:
                logger.exception("Batch operation %s failed", op.type)
                results.append(Err("database", str(exc.__class__.__name__)))
        return results

    # ── Stats ────────────────────────────────────────────────────────

    async def stats(self) -> dict[str, Any]:
        total_permissions = (
            await self.db.execute(
                select(func.count(Permission.id)).where(Permission.is_active == True)  # noqa: E712
            )
        ).scalar_one()
        total_roles = (await self.db.execute(select(func.count(Role.id)))).scalar_one()
        active_roles = (
            await self.db.execute(
                select(func.count(Role.id)).where(Role.is_active == True)  # noqa: E712
            )
        ).scalar_one()
        by_module = (
            await self.db.execute(
                select(Permission.module, func.count())
                .where(Permission.is_active == True)  # noqa: E712
                .group_by(Permission.module)
            )
        ).all()
        by_level = (
            await self.db.execute(
                select(Role.level, func.count())
                .where(Role.is_active == True)  # noqa: E712
                .group_by(Role.level)
            )
        ).all()
        return {
            "total_permissions": total_permissions,
            "total_roles": total_roles,
            "active_roles": active_roles,
            "permissions_by_module": {m: c for m, c in by_module},
            "roles_by_level": {f"level{lvl}": c for lvl, c in by_level},
        }
