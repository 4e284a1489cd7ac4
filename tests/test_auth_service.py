"""Login, refresh, logout, password change and user creation."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from fire_safety.core.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidTokenError,
    TokenRevokedError,
    ValidationError,
)
from fire_safety.models.assignment import UserRoleAssignment
from fire_safety.models.audit_log import AuthEvent
from fire_safety.models.user import BaseRole
from fire_safety.services.audit_service import AuditTrail
from fire_safety.services.auth_service import INVALID_CREDENTIALS, AuthService
from fire_safety.services.permission_service import PermissionService
from fire_safety.services.revocation_store import RevocationStore
from tests.helpers import TEST_PASSWORD, create_factory, create_user, perm_by_code, role_by_code


async def _inspector(session, username="inspector"):
    factory = await create_factory(session)
    user = await create_user(session, username, factory=factory)
    role = await role_by_code(session, "INSPECTOR")
    await PermissionService(session).assign_role(user.id, role.id, operator_id=None, factory_id=factory.id)
    return user


# ── Login ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_login_issues_token_pair(session, tokens):
    user = await _inspector(session)

    result = await AuthService(session, tokens).login("inspector", TEST_PASSWORD)

    claims = tokens.verify(result["access_token"], "access")
    assert claims["userId"] == str(user.id)
    assert claims["role"] == "INSPECTOR"
    assert claims["factoryId"] == str(user.factory_id)
    assert claims["permissions"] == result["permissions"]
    assert "equipment:read" in result["permissions"]
    assert tokens.verify(result["refresh_token"], "refresh")["userId"] == str(user.id)
    assert result["token_type"] == "bearer"
    assert result["expires_in"] == tokens.access_expires_in
    assert result["factory"] == {"id": user.factory_id, "name": "North Plant"}
    assert user.last_login_at is not None

    events, _ = await AuditTrail(session).query_auth_events(event_type=AuthEvent.LOGIN.value)
    assert events[0].user_id == user.id


@pytest.mark.asyncio
async def test_login_without_assignments_falls_back_to_baseline_role(session, tokens):
    await create_user(session, "fresh", role=BaseRole.FACTORY_ADMIN)

    result = await AuthService(session, tokens).login("fresh", TEST_PASSWORD)

    assert result["role"] == "FACTORY_ADMIN"
    assert result["permissions"] == []


@pytest.mark.asyncio
async def test_login_failures_share_one_message(session, tokens):
    await create_user(session, "alice")
    await create_user(session, "disabled", is_active=False)
    service = AuthService(session, tokens)

    messages = []
    for username, password in [("ghost", TEST_PASSWORD), ("alice", "wrong"), ("disabled", TEST_PASSWORD)]:
        with pytest.raises(AuthenticationError) as exc:
            await service.login(username, password)
        messages.append(exc.value.message)

    assert messages == [INVALID_CREDENTIALS] * 3
    failures, total = await AuditTrail(session).query_auth_events(success=False)
    assert total == 3
    assert {f.detail for f in failures} == {"user not found", "bad password", "account disabled"}


# ── Refresh ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_refresh_reflects_current_permissions(session, tokens):
    user = await _inspector(session)
    service = AuthService(session, tokens)
    login = await service.login("inspector", TEST_PASSWORD)
    dashboard = await perm_by_code(session, "report:dashboard")

    await PermissionService(session).grant_permission(user.id, dashboard.id, operator_id=None)
    granted = await service.refresh_access_token(login["refresh_token"])

    await PermissionService(session).deny_permission(user.id, dashboard.id, operator_id=None)
    denied = await service.refresh_access_token(login["refresh_token"])

    assert "report:dashboard" not in login["permissions"]
    assert "report:dashboard" in granted["permissions"]
    assert "report:dashboard" in tokens.verify(granted["access_token"])["permissions"]
    assert "report:dashboard" not in denied["permissions"]


@pytest.mark.asyncio
async def test_refresh_rejects_access_tokens_and_garbage(session, tokens):
    await _inspector(session)
    service = AuthService(session, tokens)
    login = await service.login("inspector", TEST_PASSWORD)

    with pytest.raises(InvalidTokenError):
        await service.refresh_access_token(login["access_token"])
    with pytest.raises(InvalidTokenError):
        await service.refresh_access_token("garbage")


@pytest.mark.asyncio
async def test_refresh_for_disabled_user(session, tokens):
    user = await _inspector(session)
    service = AuthService(session, tokens)
    login = await service.login("inspector", TEST_PASSWORD)

    user.is_active = False
    await session.flush()

    with pytest.raises(AuthenticationError):
        await service.refresh_access_token(login["refresh_token"])


# ── Logout ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_logout_revokes_refresh_and_access_tokens(session, tokens):
    await _inspector(session)
    service = AuthService(session, tokens)
    login = await service.login("inspector", TEST_PASSWORD)

    result = await service.logout(login["refresh_token"], access_token=login["access_token"])

    assert result == {"success": True, "message": "Logged out"}
    store = RevocationStore(session)
    assert await store.is_revoked(token=login["refresh_token"])
    assert await store.is_revoked(token=login["access_token"])
    with pytest.raises(TokenRevokedError):
        await service.refresh_access_token(login["refresh_token"])


@pytest.mark.asyncio
async def test_logout_accepts_expired_refresh_token(session, tokens):
    user = await create_user(session, "expired")
    expired = tokens.issue_refresh_token(str(user.id), expires_delta=timedelta(seconds=-30))

    result = await AuthService(session, tokens).logout(expired)

    assert result["success"] is True
    entries = await RevocationStore(session).list_for_user(user.id)
    assert len(entries) == 1
    assert entries[0].token_type == "REFRESH"
    events, _ = await AuditTrail(session).query_auth_events(event_type=AuthEvent.LOGOUT.value)
    assert events[0].user_id == user.id


@pytest.mark.asyncio
async def test_logout_twice_is_harmless(session, tokens):
    await _inspector(session)
    service = AuthService(session, tokens)
    login = await service.login("inspector", TEST_PASSWORD)

    await service.logout(login["refresh_token"])
    second = await service.logout(login["refresh_token"])

    assert second["success"] is True
    assert (await RevocationStore(session).stats())["total"] == 1


@pytest.mark.asyncio
async def test_logout_with_undecodable_token(session, tokens):
    result = await AuthService(session, tokens).logout("garbage")
    assert result == {"success": False, "message": "Invalid token"}


# ── Password ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_change_password(session, tokens):
    user = await _inspector(session)
    service = AuthService(session, tokens)

    with pytest.raises(AuthenticationError):
        await service.change_password(user.id, "wrong", "N3w-Secret!")

    await service.change_password(user.id, TEST_PASSWORD, "N3w-Secret!")

    with pytest.raises(AuthenticationError):
        await service.login("inspector", TEST_PASSWORD)
    assert (await service.login("inspector", "N3w-Secret!"))["role"] == "INSPECTOR"


@pytest.mark.asyncio
async def test_change_password_lists_every_violation(session, tokens):
    user = await _inspector(session)

    with pytest.raises(ValidationError) as exc:
        await AuthService(session, tokens).change_password(user.id, TEST_PASSWORD, "short")
    assert len(exc.value.errors) == 4

    with pytest.raises(ValidationError) as exc:
        await AuthService(session, tokens).change_password(user.id, TEST_PASSWORD, TEST_PASSWORD)
    assert exc.value.errors == ["must differ from the current password"]


# ── Users ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_user_assigns_matching_role(session, tokens):
    factory = await create_factory(session)
    service = AuthService(session, tokens)

    user = await service.create_user(
        username="newbie", password="Str0ng-Enough", full_name="New Inspector", factory_id=factory.id,
    )
    root = await service.create_user(
        username="root", password="Str0ng-Enough", full_name="Root", role=BaseRole.SUPER_ADMIN,
    )

    assignments = (await session.execute(select(UserRoleAssignment))).scalars().all()
    by_user = {a.user_id: a for a in assignments}
    assert by_user[user.id].role.code == "INSPECTOR"
    assert by_user[user.id].factory_id == factory.id
    assert by_user[root.id].role.code == "SUPER_ADMIN"
    assert by_user[root.id].factory_id is None

    profile = await service.get_profile(user.id)
    assert profile["role"] == "INSPECTOR"
    assert [r["code"] for r in profile["roles"]] == ["INSPECTOR"]
    assert profile["factory"]["id"] == factory.id


@pytest.mark.asyncio
async def test_create_user_validation(session, tokens):
    service = AuthService(session, tokens)
    await create_user(session, "taken")

    with pytest.raises(ConflictError):
        await service.create_user(username="taken", password="Str0ng-Enough", full_name="Dup")
    with pytest.raises(ValidationError) as exc:
        await service.create_user(username="weak", password="weak", full_name="Weak")
    assert len(exc.value.errors) == 4
