"""
One-time bootstrap script — creates the first SUPER_ADMIN user.

Usage:
    python -m fire_safety.scripts.create_admin

You only need this ONCE. After the first admin exists, all other
users are created via POST /api/auth/register.
"""

import asyncio
import getpass

from fire_safety.core.config import settings
from fire_safety.core.database import Database
from fire_safety.core.exceptions import FireSafetyError
from fire_safety.core.tokens import TokenService
from fire_safety.models.user import BaseRole
from fire_safety.rbac.permission_seed import seed
from fire_safety.services.auth_service import AuthService


async def create_admin() -> None:
    database = Database(settings.DATABASE_URL)
    await database.connect(create_tables=settings.AUTO_CREATE_TABLES)

    try:
        async with database.session() as session:
            # Roles must exist so the admin gets SUPER_ADMIN assigned.
            await seed(session)

            # ── Collect input ────────────────────────────────────────
            print("\n🔧  Fire Safety — First Admin Setup\n")
            username = input("  Username:    ").strip()
            full_name = input("  Full name:   ").strip()
            password = getpass.getpass("  Password:    ")
            confirm = getpass.getpass("  Confirm:     ")

            if password != confirm:
                print("\n❌  Passwords do not match.")
                return

            if not username or not full_name or not password:
                print("\n❌  All fields are required.")
                return

            # ── Create the admin user ────────────────────────────────
            try:
                admin_user = await AuthService(session, TokenService(settings)).create_user(
                    username=username,
                    password=password,
                    full_name=full_name,
                    role=BaseRole.SUPER_ADMIN,
                )
            except FireSafetyError as exc:
                print(f"\n❌  {exc.message}")
                return
            await session.commit()

            print("\n✅  Admin user created successfully!")
            print(f"    ID:       {admin_user.id}")
            print(f"    Username: {admin_user.username}")
            print("    Role:     SUPER_ADMIN")
            print("\n   You can now log in via POST /api/auth/login\n")
    finally:
        await database.disconnect()


if __name__ == "__main__":
    asyncio.run(create_admin())
