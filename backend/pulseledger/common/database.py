"""
Database connection management.

The local store is the system of record for action records, evaluations,
strategy versions and leaderboard snapshots. SQLite (aiosqlite) by default,
PostgreSQL (asyncpg) when database_url points at one.
"""

from typing import Optional
import logging
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the async engine and session factory.

    The local store is critical: without it the system cannot start, so
    initialize() raises instead of degrading.
    """

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        self._database_url = database_url
        self._echo = echo
        self.available = False
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None

    @property
    def database_url(self) -> str:
        if self._database_url:
            return self._database_url
        from pulseledger.common.config import settings
        return settings.database_url

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    async def initialize(self, create_tables: bool = True):
        """Create engine, verify connectivity and (optionally) create missing tables"""
        self.available = await self._init_engine()
        if not self.available:
            db_type = "SQLite" if self.is_sqlite else "PostgreSQL"
            raise RuntimeError(
                f"{db_type} is not available. This is a critical dependency. "
                f"Check your configuration and database setup."
            )

        if create_tables:
            await self.create_tables()

    async def _init_engine(self) -> bool:
        from pulseledger.common.config import settings

        db_type = "SQLite" if self.is_sqlite else "PostgreSQL"
        try:
            engine_kwargs = {
                "echo": settings.debug if self._echo is None else self._echo,
            }

            if self.is_sqlite:
                # in-memory databases only live as long as their single connection
                if ":memory:" in self.database_url:
                    engine_kwargs.update({
                        "poolclass": StaticPool,
                        "connect_args": {"check_same_thread": False},
                    })
            else:
                engine_kwargs.update({
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_pre_ping": True,
                })

            self.engine = create_async_engine(self.database_url, **engine_kwargs)
            self.session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))

            logger.info(f"✓ {db_type} connection established")
            return True
        except Exception as e:
            logger.error(f"✗ {db_type} connection failed: {e}")
            return False

    async def create_tables(self):
        """Create all tables registered on Base.metadata (idempotent)"""
        from pulseledger.common.base import Base
        # registers every table on Base.metadata
        import pulseledger.domains.ledger.models  # noqa: F401
        import pulseledger.domains.decision.models  # noqa: F401
        import pulseledger.domains.strategy.models  # noqa: F401
        import pulseledger.domains.agent.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables.keys()))}")

    @asynccontextmanager
    async def get_session(self):
        """
        Get a database session

        Commits on clean exit, rolls back and re-raises on error.

        Usage:
            async with db_manager.get_session() as session:
                result = await session.execute(stmt)
        """
        if not self.available:
            raise RuntimeError("Database is not available")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self):
        if self.engine is not None:
            await self.engine.dispose()
        self.available = False


# Global database manager instance
db_manager = DatabaseManager()
