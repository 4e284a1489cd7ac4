"""
Permission & Role seeding script.

Run this once against a live database to populate the default
permission catalog and system roles.  It is IDEMPOTENT — safe to re-run.

- Missing permissions are inserted; existing ones are left alone.
- A role's permission links are written only when the role is first
  created.  Later edits made through the API are never overwritten.
- Role permission lists are PATTERNS (`*`, `module:*`, exact codes),
  resolved against the active catalog.  Unmatched patterns are logged.

Seeding is bootstrap, not an administrative change: it writes no
PermissionChangeLog rows.

Usage:
    python -m fire_safety.rbac.permission_seed
"""

import asyncio
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.core.config import settings
from fire_safety.core.database import Database
from fire_safety.models.assignment import UserRoleAssignment
from fire_safety.models.permission import Permission
from fire_safety.models.role import Role, RolePermission
from fire_safety.models.user import BaseRole, User
from fire_safety.rbac.matching import resolve_permission_patterns

logger = logging.getLogger(__name__)


def _perm(code: str, name: str, category: str = "MODULE", sort_order: int = 0, scope: str = "factory") -> dict:
    module, _, action = code.partition(":")
    return {
        "code": code,
        "name": name,
        "module": module,
        "action": action,
        "category": category,
        "sort_order": sort_order,
        "scope": scope,
    }


# ────────────────────────────────────────────────────────────────────
# 1.  CANONICAL PERMISSION CATALOG
# ────────────────────────────────────────────────────────────────────
PERMISSIONS: list[dict] = [
    # Equipment
    _perm("equipment:read", "View equipment", sort_order=1),
    _perm("equipment:create", "Create equipment", sort_order=2),
    _perm("equipment:update", "Edit equipment", sort_order=3),
    _perm("equipment:delete", "Delete equipment", sort_order=4),
    _perm("equipment:export", "Export equipment", "DATA", 5),
    _perm("equipment:import", "Import equipment", "DATA", 6),
    _perm("equipment:qrcode", "Generate equipment QR codes", sort_order=7),
    # Inspection
    _perm("inspection:read", "View inspections", sort_order=1),
    _perm("inspection:read:own", "View own inspections", sort_order=2, scope="own"),
    _perm("inspection:create", "Perform inspections", sort_order=3),
    _perm("inspection:stats", "Inspection statistics", "DATA", 4),
    _perm("inspection:export", "Export inspections", "DATA", 5),
    _perm("inspection:delete", "Delete inspections", sort_order=6),
    # Issues
    _perm("issue:read", "View issues", sort_order=1),
    _perm("issue:create", "Report issues", sort_order=2),
    _perm("issue:handle", "Handle issues", sort_order=3),
    _perm("issue:audit", "Audit issue handling", sort_order=4),
    _perm("issue:stats", "Issue statistics", "DATA", 5),
    # Users
    _perm("user:read", "View users", sort_order=1),
    _perm("user:create", "Create users", sort_order=2),
    _perm("user:update", "Edit users", sort_order=3),
    _perm("user:delete", "Delete users", sort_order=4),
    _perm("user:reset_password", "Reset user passwords", sort_order=5),
    # Permission management
    _perm("permission:read", "View roles & permissions", "SYSTEM", 1, "global"),
    _perm("permission:manage", "Manage roles & permissions", "SYSTEM", 2, "global"),
    _perm("permission:assign", "Assign roles & permissions", "SYSTEM", 3, "global"),
    # Reports
    _perm("report:dashboard", "View dashboard", "DATA", 1),
    _perm("report:monthly", "View monthly reports", "DATA", 2),
    _perm("report:export", "Export reports", "DATA", 3),
    # System
    _perm("system:settings", "System settings", "SYSTEM", 1, "global"),
    _perm("system:logs", "View system logs", "SYSTEM", 2, "global"),
    _perm("system:backup", "Back up data", "SYSTEM", 3, "global"),
    # Profile
    _perm("profile:read:own", "View own profile", sort_order=1, scope="own"),
]

# ────────────────────────────────────────────────────────────────────
# 2.  SYSTEM ROLES → PERMISSION PATTERNS
# ────────────────────────────────────────────────────────────────────
ROLES: list[dict] = [
    {
        "code": "SUPER_ADMIN",
        "name": "Super administrator",
        "description": "Full access to every factory and setting",
        "level": 3,
        "patterns": ["*"],
    },
    {
        "code": "FACTORY_ADMIN",
        "name": "Factory administrator",
        "description": "Manages one factory",
        "level": 2,
        "patterns": [
            "equipment:*",
            "inspection:read", "inspection:stats", "inspection:export",
            "issue:read", "issue:handle", "issue:audit", "issue:stats",
            "user:read", "user:create", "user:update", "user:reset_password",
            "report:dashboard", "report:monthly", "report:export",
            "profile:read:own",
        ],
    },
    {
        "code": "EQUIPMENT_MANAGER",
        "name": "Equipment manager",
        "description": "Maintains the equipment register",
        "level": 2,
        "patterns": [
            "equipment:*",
            "inspection:read", "inspection:stats",
            "issue:read", "issue:handle",
            "report:dashboard",
            "profile:read:own",
        ],
    },
    {
        "code": "SAFETY_MANAGER",
        "name": "Safety manager",
        "description": "Owns the issue workflow",
        "level": 2,
        "patterns": [
            "equipment:read",
            "inspection:read", "inspection:stats",
            "issue:*",
            "report:dashboard", "report:monthly",
            "profile:read:own",
        ],
    },
    {
        "code": "INSPECTOR",
        "name": "Inspector",
        "description": "Performs inspections and reports issues",
        "level": 1,
        "is_default": True,
        "patterns": [
            "equipment:read",
            "inspection:create", "inspection:read:own",
            "issue:create",
            "profile:read:own",
        ],
    },
    {
        "code": "REPORT_VIEWER",
        "name": "Report viewer",
        "description": "Read-only access to statistics and reports",
        "level": 1,
        "patterns": [
            "equipment:read",
            "inspection:read", "inspection:stats",
            "issue:read", "issue:stats",
            "report:dashboard", "report:monthly",
            "profile:read:own",
        ],
    },
]


# ────────────────────────────────────────────────────────────────────
# 3.  SEED FUNCTIONS (idempotent)
# ────────────────────────────────────────────────────────────────────
async def seed(session: AsyncSession) -> None:
    """Create permissions & system roles if they don't already exist."""

    # ── Permissions ──────────────────────────────────────────────────
    existing_codes = set((await session.execute(select(Permission.code))).scalars().all())
    added = 0
    for pdata in PERMISSIONS:
        if pdata["code"] not in existing_codes:
            session.add(Permission(id=uuid.uuid4(), **pdata))
            added += 1
    await session.flush()  # ensure IDs are available

    catalog = (await session.execute(select(Permission))).scalars().all()
    by_id = {p.id: p for p in catalog}

    # ── Roles ────────────────────────────────────────────────────────
    existing_roles = set((await session.execute(select(Role.code))).scalars().all())
    created = 0
    for rdata in ROLES:
        if rdata["code"] in existing_roles:
            continue
        role = Role(
            id=uuid.uuid4(),
            code=rdata["code"],
            name=rdata["name"],
            description=rdata["description"],
            level=rdata["level"],
            is_system=True,
            is_default=rdata.get("is_default", False),
            is_active=True,
        )
        session.add(role)
        resolution = resolve_permission_patterns(rdata["patterns"], catalog)
        if resolution.unmatched:
            logger.warning("Role %s: %d unmatched pattern(s)", role.code, resolution.unmatched_count)
        # Links are attached through the relationship so the new role is fully loaded.
        role.permission_links = [
            RolePermission(id=uuid.uuid4(), permission=by_id[pid]) for pid in resolution.permission_ids
        ]
        created += 1

    await session.commit()
    logger.info("Permission seed complete: %d permission(s), %d role(s) added.", added, created)


async def backfill_user_roles(session: AsyncSession) -> int:
    """
    Give every user without an active assignment the system role that
    matches their baseline role.  Returns the number of users updated.
    """
    assigned = select(UserRoleAssignment.user_id).where(
        UserRoleAssignment.is_active == True  # noqa: E712
    )
    users = (
        await session.execute(select(User).where(User.id.not_in(assigned)))
    ).scalars().all()
    roles = {
        r.code: r for r in (await session.execute(select(Role).where(Role.is_system == True))).scalars()  # noqa: E712
    }

    count = 0
    for user in users:
        role = roles.get(user.role.value)
        if role is None:
            logger.warning("No system role for baseline role %s (user %s)", user.role.value, user.username)
            continue
        session.add(
            UserRoleAssignment(
                id=uuid.uuid4(),
                user_id=user.id,
                role=role,
                factory_id=None if user.role == BaseRole.SUPER_ADMIN else user.factory_id,
            )
        )
        count += 1

    await session.commit()
    logger.info("Backfilled role assignments for %d user(s).", count)
    return count


# ────────────────────────────────────────────────────────────────────
# 4.  CLI entrypoint:  python -m fire_safety.rbac.permission_seed
# ────────────────────────────────────────────────────────────────────
async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    database = Database(settings.DATABASE_URL)
    await database.connect(create_tables=settings.AUTO_CREATE_TABLES)
    try:
        async with database.session() as session:
            await seed(session)
            await backfill_user_roles(session)
    finally:
        await database.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
