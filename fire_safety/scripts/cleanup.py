"""
Retention job — run from cron or any external scheduler.

Usage:
    python -m fire_safety.scripts.cleanup [--days N]
"""

import argparse
import asyncio
import logging

from fire_safety.core.config import settings
from fire_safety.core.database import Database
from fire_safety.services.retention import run_retention


async def cleanup(days: int | None) -> dict[str, int]:
    database = Database(settings.DATABASE_URL)
    await database.connect()
    try:
        async with database.session() as session:
            counts = await run_retention(session, days)
            await session.commit()
    finally:
        await database.disconnect()
    return counts


def main() -> None:
    parser = argparse.ArgumentParser(description="Prune old audit rows and expired blacklist entries.")
    parser.add_argument("--days", type=int, default=None, help="retention window (default: AUDIT_RETENTION_DAYS)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    counts = asyncio.run(cleanup(args.days))
    print(
        f"✔  Removed {counts['permission_logs']} permission log(s), "
        f"{counts['auth_events']} auth event(s), {counts['revoked_tokens']} revoked token(s)."
    )


if __name__ == "__main__":
    main()
