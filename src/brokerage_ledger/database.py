"""Database connection and session management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from brokerage_ledger.config import get_settings
from brokerage_ledger.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


def engine_options(database_url: str, echo: bool = False) -> dict[str, Any]:
    """Engine keyword arguments appropriate for the target backend."""
    if make_url(database_url).get_backend_name() == "sqlite":
        # Single shared connection so in-memory databases survive across sessions
        return {"echo": echo, "poolclass": StaticPool}
    return {
        "echo": echo,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    }


class Database:
    """Owns the async engine and session factory for one process.

    The entry point creates one instance, hands sessions to the services
    and disposes of it on shutdown.
    """

    def __init__(self, database_url: str | None = None, echo: bool | None = None):
        settings = get_settings()
        self.database_url = database_url or settings.database_url
        self.engine: AsyncEngine = create_async_engine(
            self.database_url,
            **engine_options(
                self.database_url,
                settings.database_echo if echo is None else echo,
            ),
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Unit of work: commit on success, roll back everything on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        """Drop all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()
