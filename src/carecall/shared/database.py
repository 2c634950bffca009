"""
Async SQLAlchemy engine and unit-of-work sessions.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from carecall.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for members, schedules and call records."""


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": get_settings().debug}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
    return options


class DatabaseManager:
    """Owns the engine; hands out sessions that commit or roll back as a unit.

    Every webhook, dispatch and analysis opens its own short session, so no
    database connection is held across an LLM or telephony round trip.
    """

    def __init__(self, database_url: str | None = None, engine: AsyncEngine | None = None) -> None:
        self._url = database_url or get_settings().database_url
        self._engine = engine
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self._url, **_engine_options(self._url))
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            self._sessions = async_sessionmaker(
                bind=self.engine,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._sessions

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Commit when the block exits normally, roll back when it raises."""
        async with self.session_factory() as db:
            try:
                yield db
            except Exception:
                await db.rollback()
                raise
            await db.commit()

    async def create_all(self) -> None:
        """Create missing tables (dev and tests; production uses managed DDL)."""
        # Imported for their mapper side effects.
        import carecall.calls.models  # noqa: F401
        import carecall.members.models  # noqa: F401
        import carecall.schedules.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None


_manager: DatabaseManager | None = None


def get_database_manager() -> DatabaseManager:
    """Process-wide manager built from settings on first use."""
    global _manager
    if _manager is None:
        _manager = DatabaseManager()
    return _manager
