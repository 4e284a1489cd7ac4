"""
Revocation store — CRUD & lifecycle helpers for the token blacklist.

Handles:
- Recording a revoked token (idempotent on the token hash)
- Checking a token (by raw value and/or `jti`) on verification
- Purging rows whose original token has expired anyway
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.core.security import hash_token
from fire_safety.models.base import utcnow
from fire_safety.models.revoked_token import (
    RevocationReason,
    RevokedToken,
    RevokedTokenType,
)

logger = logging.getLogger(__name__)


class RevocationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(
        self,
        token: str,
        user_id: uuid.UUID | None,
        token_type: RevokedTokenType = RevokedTokenType.REFRESH,
        reason: RevocationReason = RevocationReason.LOGOUT,
        expires_at: datetime | None = None,
        jti: str | None = None,
    ) -> RevokedToken:
        token_hash = hash_token(token)
        existing = (
            await self.db.execute(select(RevokedToken).where(RevokedToken.token_hash == token_hash))
        ).scalar_one_or_none()
        if existing is not None:
            logger.debug("Token already revoked: %s…", token_hash[:10])
            return existing

        entry = RevokedToken(
            id=uuid.uuid4(),
            token_hash=token_hash,
            jti=jti,
            user_id=user_id,
            token_type=token_type.value,
            reason=reason.value,
            expires_at=expires_at or utcnow(),
        )
        self.db.add(entry)
        await self.db.flush()
        logger.info(
            "Token revoked: user=%s type=%s reason=%s", user_id, token_type.value, reason.value,
        )
        return entry

    async def is_revoked(self, token: str | None = None, jti: str | None = None) -> bool:
        conditions = []
        if token:
            conditions.append(RevokedToken.token_hash == hash_token(token))
        if jti:
            conditions.append(RevokedToken.jti == jti)
        if not conditions:
            return False
        stmt = select(RevokedToken.id).where(or_(*conditions)).limit(1)
        return (await self.db.execute(stmt)).first() is not None

    async def purge_expired(self, before: datetime | None = None) -> int:
        """Delete entries whose token would already fail the expiry check."""
        stmt = delete(RevokedToken).where(RevokedToken.expires_at < (before or utcnow()))
        result = await self.db.execute(stmt)
        await self.db.flush()
        logger.info("Purged %s expired revoked tokens", result.rowcount)
        return result.rowcount

    async def list_for_user(self, user_id: uuid.UUID, limit: int = 50) -> list[RevokedToken]:
        stmt = (
            select(RevokedToken)
            .where(RevokedToken.user_id == user_id)
            .order_by(RevokedToken.created_at.desc())
            .limit(limit)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def stats(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        total = (await self.db.execute(select(func.count(RevokedToken.id)))).scalar_one()
        expired = (
            await self.db.execute(
                select(func.count(RevokedToken.id)).where(RevokedToken.expires_at < now)
            )
        ).scalar_one()
        by_type = (
            await self.db.execute(
                select(RevokedToken.token_type, func.count()).group_by(RevokedToken.token_type)
            )
        ).all()
        by_reason = (
            await self.db.execute(
                select(RevokedToken.reason, func.count()).group_by(RevokedToken.reason)
            )
        ).all()
        return {
            "total": total,
            "expired": expired,
            "active": total - expired,
            "by_type": {t: c for t, c in by_type},
            "by_reason": {r: c for r, c in by_reason},
        }
