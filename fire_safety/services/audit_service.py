"""
Audit trail — append-only change log & authentication event log.

Writes are added to the caller's session and flushed; they commit or
roll back together with the mutation they describe.  The only delete
path is `prune_older_than`, used by the retention job.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from fastapi import Request
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.models.audit_log import (
    AuthEvent,
    AuthEventLog,
    ChangeAction,
    PermissionChangeLog,
)
from fire_safety.models.base import utcnow


@dataclass(frozen=True)
class RequestMeta:
    """Requester metadata copied into audit rows."""

    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        ip = request.client.host if request.client else None
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
        ua = request.headers.get("user-agent", "")[:500] or None
        return cls(ip_address=ip, user_agent=ua)


@dataclass
class ChangeLogFilters:
    target_user_id: uuid.UUID | None = None
    operator_id: uuid.UUID | None = None
    action_type: str | None = None
    factory_id: uuid.UUID | None = None
    start: datetime | None = None
    end: datetime | None = None


def _dump(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str, ensure_ascii=False, sort_keys=True)


class AuditTrail:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_change(
        self,
        action: ChangeAction,
        *,
        operator_id: uuid.UUID | None,
        target_user_id: uuid.UUID | None = None,
        role_id: uuid.UUID | None = None,
        permission_id: uuid.UUID | None = None,
        factory_id: uuid.UUID | None = None,
        old_value: Any = None,
        new_value: Any = None,
        reason: str | None = None,
        meta: RequestMeta | None = None,
    ) -> PermissionChangeLog:
        meta = meta or RequestMeta()
        entry = PermissionChangeLog(
            id=uuid.uuid4(),
            action_type=action.value,
            target_user_id=target_user_id,
            operator_id=operator_id,
            role_id=role_id,
            permission_id=permission_id,
            factory_id=factory_id,
            old_value=_dump(old_value),
            new_value=_dump(new_value),
            reason=reason,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def record_auth_event(
        self,
        event: AuthEvent,
        *,
        user_id: uuid.UUID | None = None,
        username: str | None = None,
        success: bool = True,
        detail: str | None = None,
        meta: RequestMeta | None = None,
    ) -> AuthEventLog:
        meta = meta or RequestMeta()
        entry = AuthEventLog(
            id=uuid.uuid4(),
            event_type=event.value,
            user_id=user_id,
            username=username,
            success=success,
            detail=detail[:512] if detail else None,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    # ── Queries ──────────────────────────────────────────────────────

    async def query_changes(
        self,
        filters: ChangeLogFilters | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[PermissionChangeLog], int]:
        filters = filters or ChangeLogFilters()
        conditions = []
        if filters.target_user_id:
            conditions.append(PermissionChangeLog.target_user_id == filters.target_user_id)
        if filters.operator_id:
            conditions.append(PermissionChangeLog.operator_id == filters.operator_id)
        if filters.action_type:
            conditions.append(PermissionChangeLog.action_type == filters.action_type)
        if filters.factory_id:
            conditions.append(PermissionChangeLog.factory_id == filters.factory_id)
        if filters.start:
            conditions.append(PermissionChangeLog.timestamp >= filters.start)
        if filters.end:
            conditions.append(PermissionChangeLog.timestamp <= filters.end)

        total = (
            await self.db.execute(
                select(func.count()).select_from(PermissionChangeLog).where(*conditions)
            )
        ).scalar_one()
        stmt = (
            select(PermissionChangeLog)
            .where(*conditions)
            .order_by(PermissionChangeLog.timestamp.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = (await self.db.execute(stmt)).scalars().all()
        return list(rows), total

    async def query_auth_events(
        self,
        *,
        user_id: uuid.UUID | None = None,
        event_type: str | None = None,
        success: bool | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AuthEventLog], int]:
        conditions = []
        if user_id:
            conditions.append(AuthEventLog.user_id == user_id)
        if event_type:
            conditions.append(AuthEventLog.event_type == event_type)
        if success is not None:
            conditions.append(AuthEventLog.success == success)

        total = (
            await self.db.execute(
                select(func.count()).select_from(AuthEventLog).where(*conditions)
            )
        ).scalar_one()
        stmt = (
            select(AuthEventLog)
            .where(*conditions)
            .order_by(AuthEventLog.timestamp.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = (await self.db.execute(stmt)).scalars().all()
        return list(rows), total

    # ── Retention ────────────────────────────────────────────────────

    async def prune_older_than(self, days: int, now: datetime | None = None) -> dict[str, int]:
        """Delete log rows older than `days`.  Returns rows removed per table."""
        cutoff = (now or utcnow()) - timedelta(days=days)
        changes = await self.db.execute(
            delete(PermissionChangeLog).where(PermissionChangeLog.timestamp < cutoff)
        )
        events = await self.db.execute(
            delete(AuthEventLog).where(AuthEventLog.timestamp < cutoff)
        )
        await self.db.flush()
        return {"permission_logs": changes.rowcount, "auth_events": events.rowcount}
