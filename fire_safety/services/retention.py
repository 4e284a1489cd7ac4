"""
Retention job — prunes audit rows older than the retention window and
purges blacklist entries whose tokens have expired anyway.

Triggered externally (`POST /api/audit/cleanup` or
`python -m fire_safety.scripts.cleanup`); never scheduled in-process.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.core.config import settings
from fire_safety.models.base import utcnow
from fire_safety.services.audit_service import AuditTrail
from fire_safety.services.revocation_store import RevocationStore

logger = logging.getLogger(__name__)


async def run_retention(
    db: AsyncSession,
    retention_days: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    days = settings.AUDIT_RETENTION_DAYS if retention_days is None else retention_days
    now = now or utcnow()
    pruned = await AuditTrail(db).prune_older_than(days, now=now)
    purged = await RevocationStore(db).purge_expired(before=now)
    logger.info(
        "Retention (%d days): %d permission log(s), %d auth event(s), %d revoked token(s) removed",
        days, pruned["permission_logs"], pruned["auth_events"], purged,
    )
    return {"retention_days": days, **pruned, "revoked_tokens": purged}
