"""
Authentication service.

Handles:
- Login (username + password) → access/refresh token pair
- Access-token renewal from a refresh token, with permissions
  re-resolved from the store on every renewal
- Best-effort logout (blacklists the refresh token, and the access
  token when supplied)
- Password change & user creation with the password policy

Refresh tokens are NOT rotated: renewal issues a new access token and
the refresh token stays valid until it expires or is logged out.

All business logic lives here — controllers call service methods
and return the result.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, NoReturn

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.core.exceptions import (
    AuthenticationError,
    ConflictError,
    FireSafetyError,
    NotFoundError,
    TokenMalformedError,
    TokenRevokedError,
    ValidationError,
)
from fire_safety.core.security import hash_password, password_policy_errors, verify_password
from fire_safety.core.tokens import TokenService
from fire_safety.models.audit_log import AuthEvent
from fire_safety.models.base import utcnow
from fire_safety.models.revoked_token import RevocationReason, RevokedTokenType
from fire_safety.models.user import BaseRole, User
from fire_safety.services.audit_service import AuditTrail, RequestMeta
from fire_safety.services.permission_resolver import EffectivePermissions, PermissionResolver
from fire_safety.services.permission_service import PermissionService
from fire_safety.services.revocation_store import RevocationStore

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"


# ── Helpers ──────────────────────────────────────────────────────────

def build_access_claims(user: User, effective: EffectivePermissions) -> dict[str, Any]:
    """Claims carried by an access token (issuer adds type/iat/jti/exp)."""
    return {
        "userId": str(user.id),
        "username": user.username,
        "role": effective.effective_role(user),
        "factoryId": str(user.factory_id) if user.factory_id else None,
        "permissions": list(effective.all_permissions),
    }


def user_payload(user: User, role: str) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "full_name": user.full_name,
        "role": role,
        "factory_id": user.factory_id,
        "is_active": user.is_active,
        "last_login_at": user.last_login_at,
    }


def factory_payload(user: User) -> dict[str, Any] | None:
    if user.factory is None:
        return None
    return {"id": user.factory.id, "name": user.factory.name}


def _parse_user_id(value: Any) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class AuthService:
    def __init__(self, db: AsyncSession, tokens: TokenService):
        self.db = db
        self.tokens = tokens
        self.resolver = PermissionResolver(db)
        self.revocations = RevocationStore(db)
        self.audit = AuditTrail(db)

    # ── Login ────────────────────────────────────────────────────────

    async def _reject_login(
        self, username: str, user: User | None, detail: str, meta: RequestMeta | None,
    ) -> NoReturn:
        logger.info("Login failed for '%s': %s", username, detail)
        await self.audit.record_auth_event(
            AuthEvent.LOGIN_FAILED,
            user_id=user.id if user else None,
            username=username,
            success=False,
            detail=detail,
            meta=meta,
        )
        # The request transaction rolls back on the error below.
        await self.db.commit()
        raise AuthenticationError(INVALID_CREDENTIALS)

    async def login(
        self,
        username: str,
        password: str,
        *,
        remember_me: bool = False,
        meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        stmt = select(User).where(User.username == username)
        user = (await self.db.execute(stmt)).scalar_one_or_none()

        if user is None:
            await self._reject_login(username, None, "user not found", meta)
        if not user.is_active:
            await self._reject_login(username, user, "account disabled", meta)
        if not verify_password(password, user.password_hash):
            await self._reject_login(username, user, "bad password", meta)

        effective = await self.resolver.resolve(user.id, user.factory_id)
        claims = build_access_claims(user, effective)
        access_token = self.tokens.issue_access_token(claims)
        refresh_token = self.tokens.issue_refresh_token(str(user.id), remember_me=remember_me)

        user.last_login_at = utcnow()
        await self.db.flush()
        await self.audit.record_auth_event(
            AuthEvent.LOGIN, user_id=user.id, username=user.username, meta=meta,
        )
        logger.info("User %s logged in as %s", user.username, claims["role"])

        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": self.tokens.access_expires_in,
            "user": user_payload(user, claims["role"]),
            "role": claims["role"],
            "permissions": claims["permissions"],
            "factory": factory_payload(user),
        }

    # ── Refresh ──────────────────────────────────────────────────────

    async def refresh_access_token(
        self, refresh_token: str, meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        """Issue a new access token carrying the user's CURRENT permissions."""
        claims = self.tokens.verify(refresh_token, "refresh")
        if await self.revocations.is_revoked(token=refresh_token, jti=claims.get("jti")):
            raise TokenRevokedError("Refresh token has been revoked")

        user_id = _parse_user_id(claims.get("userId"))
        if user_id is None:
            raise TokenMalformedError("Refresh token carries no valid userId")
        user = await self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or disabled")

        effective = await self.resolver.resolve(user.id, user.factory_id)
        access_claims = build_access_claims(user, effective)
        access_token = self.tokens.issue_access_token(access_claims)

        await self.audit.record_auth_event(
            AuthEvent.TOKEN_REFRESH, user_id=user.id, username=user.username, meta=meta,
        )
        return {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": self.tokens.access_expires_in,
            "user": user_payload(user, access_claims["role"]),
            "role": access_claims["role"],
            "permissions": access_claims["permissions"],
        }

    # ── Logout ───────────────────────────────────────────────────────

    async def logout(
        self,
        refresh_token: str,
        access_token: str | None = None,
        meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        """
        Blacklist the refresh token even if it is expired or badly signed.

        A failed blacklist insert is logged and swallowed: the client
        discards its copy regardless, so logout still reports success.
        """
        claims = self.tokens.decode_unverified(refresh_token)
        user_id = _parse_user_id(claims.get("userId")) if claims else None
        if user_id is None:
            logger.info("Logout with an undecodable refresh token")
            return {"success": False, "message": "Invalid token"}

        fallback = utcnow() + timedelta(days=self.tokens.settings.REVOKED_TOKEN_FALLBACK_DAYS)
        try:
            async with self.db.begin_nested():
                await self.revocations.add(
                    refresh_token,
                    user_id,
                    token_type=RevokedTokenType.REFRESH,
                    reason=RevocationReason.LOGOUT,
                    expires_at=TokenService.expires_at(claims) or fallback,
                    jti=claims.get("jti"),
                )
                if access_token:
                    access_claims = self.tokens.decode_unverified(access_token) or {}
                    await self.revocations.add(
                        access_token,
                        user_id,
                        token_type=RevokedTokenType.ACCESS,
                        reason=RevocationReason.LOGOUT,
                        expires_at=TokenService.expires_at(access_claims) or fallback,
                        jti=access_claims.get("jti"),
                    )
        except SQLAlchemyError:
            logger.exception("Failed to blacklist tokens for user %s on logout", user_id)

        await self.audit.record_auth_event(AuthEvent.LOGOUT, user_id=user_id, meta=meta)
        logger.info("User %s logged out", user_id)
        return {"success": True, "message": "Logged out"}

    # ── Password ─────────────────────────────────────────────────────

    async def change_password(
        self,
        user_id: uuid.UUID,
        old_password: str,
        new_password: str,
        meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not verify_password(old_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")

        errors = password_policy_errors(new_password)
        if new_password == old_password:
            errors.append("must differ from the current password")
        if errors:
            raise ValidationError("Password does not meet requirements", errors)

        user.password_hash = hash_password(new_password)
        await self.db.flush()
        await self.audit.record_auth_event(
            AuthEvent.PASSWORD_CHANGE, user_id=user.id, username=user.username, meta=meta,
        )
        logger.info("Password changed for user %s", user.username)
        return {"success": True, "message": "Password changed"}

    # ── Users ────────────────────────────────────────────────────────

    async def create_user(
        self,
        *,
        username: str,
        password: str,
        full_name: str,
        role: BaseRole = BaseRole.INSPECTOR,
        factory_id: uuid.UUID | None = None,
        operator_id: uuid.UUID | None = None,
        meta: RequestMeta | None = None,
    ) -> User:
        existing = (
            await self.db.execute(select(User.id).where(User.username == username))
        ).first()
        if existing:
            raise ConflictError("Username already exists")

        errors = password_policy_errors(password)
        if errors:
            raise ValidationError("Password does not meet requirements", errors)

        user = User(
            id=uuid.uuid4(),
            username=username,
            password_hash=hash_password(password),
            full_name=full_name,
            role=role,
            factory_id=factory_id,
            is_active=True,
        )
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user, ["factory"])

        await self._assign_initial_role(user, operator_id, meta)
        logger.info("User %s created with baseline role %s", user.username, role.value)
        return user

    async def _assign_initial_role(
        self, user: User, operator_id: uuid.UUID | None, meta: RequestMeta | None,
    ) -> None:
        """Mirror the baseline role into the permission system; never fails the caller."""
        permissions = PermissionService(self.db)
        role = await permissions.get_role_by_code(user.role.value)
        if role is None:
            logger.warning("No permission-system role '%s' for new user %s", user.role.value, user.username)
            return
        scope = None if user.role == BaseRole.SUPER_ADMIN else user.factory_id
        try:
            async with self.db.begin_nested():
                await permissions.assign_role(
                    user.id, role.id,
                    operator_id=operator_id,
                    factory_id=scope,
                    reason="Initial role on user creation",
                    meta=meta,
                )
        except (FireSafetyError, SQLAlchemyError) as exc:
            logger.warning("Role auto-assignment failed for %s: %s", user.username, exc)

    async def get_profile(self, user_id: uuid.UUID) -> dict[str, Any]:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        effective = await self.resolver.resolve(user.id, user.factory_id)
        role = effective.effective_role(user)
        return {
            "user": user_payload(user, role),
            "role": role,
            "roles": [
                {"id": r.id, "code": r.code, "name": r.name, "level": r.level}
                for r in effective.roles
            ],
            "permissions": effective.all_permissions,
            "factory": factory_payload(user),
        }
