"""
RBAC dependencies — the heart of permission enforcement.

`require_permission` is a *dependency factory*:  call it with one or
more permission codes and it returns a FastAPI dependency that will:

1. Verify the bearer access token (signature, issuer, audience, type)
   and reject it if it has been revoked.
2. Load the User and RE-RESOLVE its effective permissions from the
   store.  The `permissions` claim in the token is only a client-side
   hint; it is never trusted for authorization.
3. Check every required code (wildcards honoured).  An effective
   SUPER_ADMIN passes every check except explicitly denied codes.
4. Return 403 on failure, with NO details about which permissions
   exist (prevents enumeration attacks).

Usage in a route:
    @router.get("/roles", dependencies=[Depends(require_permission("permission:read"))])
    async def list_roles(...): ...

Or inject the authorized principal:
    @router.get("/stats")
    async def stats(principal: Principal = Depends(require_permission("permission:read"))): ...
"""

import logging
import uuid
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.core.database import Database
from fire_safety.core.exceptions import InvalidTokenError, TokenRevokedError
from fire_safety.core.rate_limit import LoginRateLimiter
from fire_safety.core.result import Err, Ok, Result
from fire_safety.core.tokens import TokenService
from fire_safety.models.user import BaseRole, User
from fire_safety.rbac.matching import has_permission
from fire_safety.rbac.scope import DataScope, resolve_data_scope
from fire_safety.services.audit_service import RequestMeta
from fire_safety.services.permission_resolver import EffectivePermissions, PermissionResolver
from fire_safety.services.revocation_store import RevocationStore

logger = logging.getLogger("rbac")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


def _unauthorized(detail: str = InvalidTokenError.public_message) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers=_UNAUTHORIZED_HEADERS,
    )


# ── Infrastructure ───────────────────────────────────────────────────

async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """One session per request; committed on success, rolled back on error."""
    database: Database = request.app.state.database
    async with database.session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_login_limiter(request: Request) -> LoginRateLimiter:
    return request.app.state.login_limiter


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta.from_request(request)


# ── Authentication ───────────────────────────────────────────────────

async def get_current_claims(
    token: str = Depends(oauth2_scheme),
    tokens: TokenService = Depends(get_token_service),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Verify the access token and reject revoked ones."""
    try:
        claims = tokens.verify(token, "access")
        if tokens.settings.CHECK_REVOCATION_ON_ACCESS and await RevocationStore(db).is_revoked(
            token=token, jti=claims.get("jti"),
        ):
            raise TokenRevokedError("Access token has been revoked")
    except InvalidTokenError as exc:
        # Precise reason for the logs only.
        logger.info("Rejected access token: %s", exc.message)
        raise _unauthorized()
    return claims


async def get_current_user(
    claims: dict[str, Any] = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Authenticated user WITHOUT permission checks."""
    try:
        user_id = uuid.UUID(str(claims.get("userId")))
    except ValueError:
        raise _unauthorized("Invalid token payload")
    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")
    return user


# ── Authorization ────────────────────────────────────────────────────

@dataclass
class Principal:
    """The authorized caller of a protected route."""

    user: User
    effective: EffectivePermissions

    @property
    def id(self) -> uuid.UUID:
        return self.user.id

    @property
    def role(self) -> str:
        return self.effective.effective_role(self.user)

    @property
    def is_super_admin(self) -> bool:
        return self.role == BaseRole.SUPER_ADMIN.value

    @property
    def scope(self) -> DataScope:
        """Raises PermissionDeniedError for a factory-less, non-global user."""
        return resolve_data_scope(self.user, self.effective)


def authorize(
    effective: EffectivePermissions, required: Iterable[str], role: str | None = None,
) -> Result:
    """
    SUPER_ADMIN (assigned, or as the baseline role with no assignment)
    passes every check except codes an explicit deny override removed.
    """
    if role == BaseRole.SUPER_ADMIN.value:
        missing = [code for code in required if has_permission(effective.denied, code)]
    else:
        missing = [code for code in required if not has_permission(effective.all_permissions, code)]
    if missing:
        return Err("forbidden", f"missing {', '.join(sorted(missing))}")
    return Ok(effective)


class require_permission:
    """
    Dependency factory.

    Can be used as:
        Depends(require_permission("permission:read"))
        Depends(require_permission("permission:manage", "permission:assign"))
    """

    def __init__(self, *permission_codes: str):
        self.required_codes = tuple(permission_codes)

    async def __call__(
        self,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        effective = await PermissionResolver(db).resolve(user.id, user.factory_id)
        decision = authorize(effective, self.required_codes, effective.effective_role(user))
        if not decision.ok:
            logger.warning(
                "Permission denied for user %s — %s, granted: %s",
                user.id,
                decision.message,
                effective.all_permissions,
            )
            # Intentionally vague — do NOT reveal which codes are missing
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return Principal(user=user, effective=effective)
