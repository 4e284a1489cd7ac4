"""
Permission resolver — computes a user's effective permission set.

Resolution for (user, factory) at instant `now`:

1. Active assignments of active roles.  With a factory requested only
   unscoped and same-factory assignments count, and a same-factory
   assignment wins over an unscoped one for the same role.  Without a
   factory every active assignment counts.
2. Active links of those roles to active permissions → codes.
3. Active, unexpired overrides on active permissions (same scoping).
4. Union role codes with granted overrides, THEN drop denied codes:
   an explicit deny always wins, wildcards included.
5. Roles are ordered by level DESC, assignment created_at ASC, role
   code ASC.  The first one is the primary role (token `role` claim).

No assignment and no override is not an error: the result is empty
and callers fall back to the baseline role on the user record.

Nothing is cached: every call re-reads the store.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.models.assignment import UserPermissionOverride, UserRoleAssignment
from fire_safety.models.base import as_utc, utcnow
from fire_safety.models.permission import Permission
from fire_safety.models.role import Role, RolePermission
from fire_safety.models.user import User
from fire_safety.rbac.matching import expand_denied_wildcards, has_permission


@dataclass
class EffectivePermissions:
    roles: list[Role] = field(default_factory=list)
    all_permissions: list[str] = field(default_factory=list)
    # Codes removed by live deny overrides; they bind even a super admin.
    denied: list[str] = field(default_factory=list)

    @property
    def primary_role(self) -> Role | None:
        return self.roles[0] if self.roles else None

    @property
    def role_codes(self) -> list[str]:
        return [r.code for r in self.roles]

    def has(self, code: str) -> bool:
        return has_permission(self.all_permissions, code)

    def effective_role(self, user: User) -> str:
        """Primary role code, or the user's baseline role when none is assigned."""
        if self.primary_role is not None:
            return self.primary_role.code
        return user.role.value if hasattr(user.role, "value") else str(user.role)

    @property
    def role_level(self) -> int:
        """Level of the primary role; 0 without assignments."""
        return self.primary_role.level if self.primary_role is not None else 0


@dataclass
class PermissionBreakdown:
    """Per-source view for the admin UI."""

    effective: EffectivePermissions
    role_permissions: dict[str, list[str]]
    overrides: list[dict]


def _is_expired(expires_at: datetime | None, now: datetime) -> bool:
    return expires_at is not None and as_utc(expires_at) <= now


class PermissionResolver:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Loading ──────────────────────────────────────────────────────

    def _scope_filter(self, column, factory_id: uuid.UUID | None):
        if factory_id is None:
            return None
        return or_(column.is_(None), column == factory_id)

    async def _active_assignments(
        self, user_id: uuid.UUID, factory_id: uuid.UUID | None,
    ) -> list[UserRoleAssignment]:
        stmt = (
            select(UserRoleAssignment)
            .join(Role, Role.id == UserRoleAssignment.role_id)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.is_active == True,  # noqa: E712
                Role.is_active == True,  # noqa: E712
            )
        )
        scope = self._scope_filter(UserRoleAssignment.factory_id, factory_id)
        if scope is not None:
            stmt = stmt.where(scope)
        assignments = (await self.db.execute(stmt)).scalars().all()

        # One assignment per role; the factory-scoped one takes precedence.
        by_role: dict[uuid.UUID, UserRoleAssignment] = {}
        for a in assignments:
            current = by_role.get(a.role_id)
            if current is None:
                by_role[a.role_id] = a
            elif current.factory_id is None and a.factory_id is not None:
                by_role[a.role_id] = a
            elif (current.factory_id is None) == (a.factory_id is None) and (
                as_utc(a.created_at) < as_utc(current.created_at)
            ):
                by_role[a.role_id] = a

        return sorted(
            by_role.values(),
            key=lambda a: (-a.role.level, as_utc(a.created_at), a.role.code),
        )

    async def _role_codes(self, role_ids: list[uuid.UUID]) -> dict[uuid.UUID, list[str]]:
        if not role_ids:
            return {}
        stmt = (
            select(RolePermission.role_id, Permission.code)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(
                RolePermission.role_id.in_(role_ids),
                RolePermission.is_active == True,  # noqa: E712
                Permission.is_active == True,  # noqa: E712
            )
        )
        codes: dict[uuid.UUID, list[str]] = {rid: [] for rid in role_ids}
        for role_id, code in (await self.db.execute(stmt)).all():
            codes[role_id].append(code)
        return codes

    async def _overrides(
        self, user_id: uuid.UUID, factory_id: uuid.UUID | None,
    ) -> list[UserPermissionOverride]:
        stmt = (
            select(UserPermissionOverride)
            .join(Permission, Permission.id == UserPermissionOverride.permission_id)
            .where(
                UserPermissionOverride.user_id == user_id,
                UserPermissionOverride.is_active == True,  # noqa: E712
                Permission.is_active == True,  # noqa: E712
            )
        )
        scope = self._scope_filter(UserPermissionOverride.factory_id, factory_id)
        if scope is not None:
            stmt = stmt.where(scope)
        return list((await self.db.execute(stmt)).scalars().all())

    async def _catalog_codes(self) -> list[str]:
        stmt = select(Permission.code).where(Permission.is_active == True)  # noqa: E712
        return list((await self.db.execute(stmt)).scalars().all())

    # ── Resolution ───────────────────────────────────────────────────

    async def resolve(
        self,
        user_id: uuid.UUID,
        factory_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> EffectivePermissions:
        effective, _, _ = await self._resolve(user_id, factory_id, now)
        return effective

    async def _resolve(self, user_id, factory_id, now):
        now = as_utc(now) if now else utcnow()

        assignments = await self._active_assignments(user_id, factory_id)
        role_codes = await self._role_codes([a.role_id for a in assignments])
        overrides = await self._overrides(user_id, factory_id)
        live = [o for o in overrides if not _is_expired(o.expires_at, now)]

        codes: set[str] = set()
        for codes_of_role in role_codes.values():
            codes.update(codes_of_role)
        codes.update(o.permission.code for o in live if o.granted)

        denied = {o.permission.code for o in live if not o.granted}
        if denied:
            codes = expand_denied_wildcards(codes, denied, await self._catalog_codes())

        effective = EffectivePermissions(
            roles=[a.role for a in assignments],
            all_permissions=sorted(codes),
            denied=sorted(denied),
        )
        return effective, role_codes, overrides

    async def describe(
        self,
        user_id: uuid.UUID,
        factory_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> PermissionBreakdown:
        now = as_utc(now) if now else utcnow()
        effective, role_codes, overrides = await self._resolve(user_id, factory_id, now)
        by_role = {
            role.code: sorted(role_codes.get(role.id, []))
            for role in effective.roles
        }
        personal = [
            {
                "permission_id": o.permission_id,
                "code": o.permission.code,
                "granted": o.granted,
                "factory_id": o.factory_id,
                "expires_at": o.expires_at,
                "expired": _is_expired(o.expires_at, now),
                "reason": o.reason,
            }
            for o in sorted(overrides, key=lambda o: o.permission.code)
        ]
        return PermissionBreakdown(effective=effective, role_permissions=by_role, overrides=personal)
