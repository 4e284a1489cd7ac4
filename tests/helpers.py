"""Factories for test data."""

import uuid

from sqlalchemy import select

from fire_safety.core.security import hash_password
from fire_safety.models.factory import Factory
from fire_safety.models.permission import Permission
from fire_safety.models.role import Role
from fire_safety.models.user import BaseRole, User

TEST_PASSWORD = "Passw0rd!"


async def create_factory(session, name: str = "North Plant") -> Factory:
    factory = Factory(id=uuid.uuid4(), name=name)
    session.add(factory)
    await session.flush()
    return factory


async def create_user(
    session,
    username: str,
    role: BaseRole = BaseRole.INSPECTOR,
    factory: Factory | None = None,
    password: str = TEST_PASSWORD,
    is_active: bool = True,
) -> User:
    """A bare user row: no role assignment is made."""
    user = User(
        id=uuid.uuid4(),
        username=username,
        password_hash=hash_password(password),
        full_name=username.title(),
        role=role,
        factory_id=factory.id if factory else None,
        is_active=is_active,
    )
    session.add(user)
    await session.flush()
    await session.refresh(user, ["factory"])
    return user


async def role_by_code(session, code: str) -> Role:
    return (await session.execute(select(Role).where(Role.code == code))).scalar_one()


async def perm_by_code(session, code: str) -> Permission:
    return (await session.execute(select(Permission).where(Permission.code == code))).scalar_one()
