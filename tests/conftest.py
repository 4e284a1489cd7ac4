"""
Shared fixtures: a seeded SQLite database per test and a token
service with test secrets.
"""

import pytest
import pytest_asyncio

from fire_safety.core import security
from fire_safety.core.config import Settings
from fire_safety.core.database import Database
from fire_safety.core.tokens import TokenService
from fire_safety.rbac.permission_seed import seed


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(security.settings, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        JWT_SECRET="test-access-secret",
        JWT_REFRESH_SECRET="test-refresh-secret",
        BCRYPT_ROUNDS=4,
        AUTO_CREATE_TABLES=True,
        SEED_ON_STARTUP=False,
    )


@pytest.fixture
def tokens(test_settings):
    return TokenService(test_settings)


@pytest_asyncio.fixture
async def database(test_settings):
    db = Database(test_settings.DATABASE_URL)
    await db.connect(create_tables=True)
    async with db.session() as session:
        await seed(session)
    yield db
    await db.disconnect()


@pytest_asyncio.fixture
async def session(database):
    async with database.session() as s:
        yield s
