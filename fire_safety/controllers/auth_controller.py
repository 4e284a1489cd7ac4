"""
Auth controller — login, token refresh, logout, password & profile.

Login, refresh and logout are PUBLIC (no permission dependency).
Registration requires `user:create`; non-global callers can only
create users inside their own factory.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fire_safety.core.exceptions import AuthenticationError, PermissionDeniedError
from fire_safety.core.rate_limit import LoginRateLimiter
from fire_safety.core.tokens import TokenService
from fire_safety.models.user import BaseRole, User
from fire_safety.rbac.dependencies import (
    Principal,
    get_current_user,
    get_db,
    get_login_limiter,
    get_request_meta,
    get_token_service,
    require_permission,
)
from fire_safety.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MyPermissionsResponse,
    ProfileResponse,
    RefreshResponse,
    RefreshTokenRequest,
    RegisterRequest,
    SuccessResponse,
    UserOut,
)
from fire_safety.services.audit_service import RequestMeta
from fire_safety.services.auth_service import AuthService
from fire_safety.services.permission_resolver import PermissionResolver

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    meta: RequestMeta = Depends(get_request_meta),
    limiter: LoginRateLimiter = Depends(get_login_limiter),
):
    """Authenticate with username + password → receive JWT pair."""
    limiter.check(meta.ip_address, body.username)
    try:
        return await AuthService(db, tokens).login(
            body.username, body.password, remember_me=body.remember_me, meta=meta,
        )
    except AuthenticationError:
        limiter.record_failure(meta.ip_address, body.username)
        raise


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(
    body: RefreshTokenRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Exchange a valid refresh token for a new access token (current permissions)."""
    return await AuthService(db, tokens).refresh_access_token(body.refresh_token, meta=meta)


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    body: LogoutRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Blacklist the refresh (and optionally access) token."""
    return await AuthService(db, tokens).logout(
        body.refresh_token, access_token=body.access_token, meta=meta,
    )


@router.post("/change-password", response_model=SuccessResponse)
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await AuthService(db, tokens).change_password(
        user.id, body.old_password, body.new_password, meta=meta,
    )


@router.get("/profile", response_model=ProfileResponse)
async def profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    return await AuthService(db, tokens).get_profile(user.id)


@router.get("/permissions", response_model=MyPermissionsResponse)
async def my_permissions(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's effective permissions, freshly resolved."""
    effective = await PermissionResolver(db).resolve(user.id, user.factory_id)
    return MyPermissionsResponse(
        role=effective.effective_role(user),
        roles=effective.role_codes,
        permissions=effective.all_permissions,
    )


@router.post("/register", response_model=UserOut, status_code=201)
async def register(
    body: RegisterRequest,
    principal: Principal = Depends(require_permission("user:create")),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Create a user; the matching system role is assigned automatically."""
    scope = principal.scope
    if body.role == BaseRole.SUPER_ADMIN and not scope.is_global:
        raise PermissionDeniedError("Insufficient permissions")
    factory_id = scope.factory_filter(body.factory_id)
    user = await AuthService(db, tokens).create_user(
        username=body.username,
        password=body.password,
        full_name=body.full_name,
        role=body.role,
        factory_id=factory_id,
        operator_id=principal.id,
        meta=meta,
    )
    return UserOut(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        role=user.role.value,
        factory_id=user.factory_id,
        is_active=user.is_active,
        last_login_at=user.last_login_at,
    )
