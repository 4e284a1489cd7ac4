"""
Audit controller — authentication events, token blacklist stats and
the retention job.

The cleanup route is the HTTP trigger for the periodic retention job;
nothing in-process schedules it.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.rbac.dependencies import Principal, get_db, require_permission
from fire_safety.schemas import (
    AuthEventPage,
    CleanupRequest,
    CleanupResponse,
    RevokedTokenStats,
)
from fire_safety.services.audit_service import AuditTrail
from fire_safety.services.retention import run_retention
from fire_safety.services.revocation_store import RevocationStore

router = APIRouter(prefix="/api/audit", tags=["Audit"])


@router.get("/auth-events", response_model=AuthEventPage)
async def auth_events(
    user_id: uuid.UUID | None = Query(None),
    event_type: str | None = Query(None),
    success: bool | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_permission("system:logs")),
    db: AsyncSession = Depends(get_db),
):
    rows, total = await AuditTrail(db).query_auth_events(
        user_id=user_id, event_type=event_type, success=success, limit=limit, offset=offset,
    )
    return AuthEventPage(items=rows, total=total, limit=limit, offset=offset)


@router.get("/revoked-tokens/stats", response_model=RevokedTokenStats)
async def revoked_token_stats(
    principal: Principal = Depends(require_permission("system:logs")),
    db: AsyncSession = Depends(get_db),
):
    return await RevocationStore(db).stats()


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(
    body: CleanupRequest,
    principal: Principal = Depends(require_permission("system:settings")),
    db: AsyncSession = Depends(get_db),
):
    """Prune old audit rows and purge blacklist entries of expired tokens."""
    return await run_retention(db, body.retention_days)
