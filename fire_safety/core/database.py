"""
Database handle.

One `Database` is constructed per process, connected on startup and
disposed on shutdown (see `fire_safety.main`).  Services never import
an engine; they receive an `AsyncSession` opened from this handle.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from fire_safety.models import Base  # noqa: F401 — registers every table

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, url: str, *, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected")
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    async def connect(self, *, create_tables: bool = False) -> None:
        if self._engine is not None:
            return

        kwargs: dict = {"echo": self.echo}
        if self.is_sqlite and ":memory:" in self.url:
            # A single shared connection keeps the in-memory DB alive.
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        elif not self.is_sqlite:
            kwargs["pool_pre_ping"] = True

        self._engine = create_async_engine(self.url, **kwargs)
        if self.is_sqlite:
            _enable_sqlite_savepoints(self._engine)

        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

        if create_tables:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created (AUTO_CREATE_TABLES).")

    async def disconnect(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine disposed.")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")
        async with self._session_factory() as session:
            yield session


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on SQLite."""

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN")
