"""
PostgreSQL Client
=================

Async database client using SQLAlchemy 2.0 with asyncpg. Backs the SQL
rule store in production; tests point the same client at SQLite through
aiosqlite.

Version: 0.1.0
"""

import time
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for ORM models."""

    pass


def engine_options(url: str, echo: bool = False) -> dict[str, Any]:
    """
    Engine keyword arguments for a database URL.

    SQLite gets a single shared connection so an in-memory database
    survives across sessions; server databases get a bounded pool.
    """
    if make_url(url).get_backend_name() == "sqlite":
        return {"echo": echo, "poolclass": StaticPool}
    return {
        "echo": echo,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


class PostgresClient:
    """
    Process-wide async engine and session factory.

    The URL defaults to the configured PostgreSQL database; call
    ``configure`` before first use to point it elsewhere.
    """

    _url: str | None = None
    _engine: AsyncEngine | None = None
    _session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def configure(cls, url: str) -> None:
        """Override the database URL. Must be called before the engine exists."""
        if cls._engine is not None:
            raise RuntimeError("Database engine already created; call close() first")
        cls._url = url

    @classmethod
    def url(cls) -> str:
        return cls._url or settings.postgres.async_url

    @classmethod
    def get_engine(cls) -> AsyncEngine:
        """Get or create the async engine."""
        if cls._engine is None:
            url = cls.url()
            cls._engine = create_async_engine(url, **engine_options(url, echo=settings.debug))
            parsed = make_url(url)
            logger.info(
                "database_engine_created",
                backend=parsed.get_backend_name(),
                host=parsed.host,
                database=parsed.database,
            )
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if cls._session_factory is None:
            cls._session_factory = async_sessionmaker(
                cls.get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return cls._session_factory

    @classmethod
    async def create_all(cls) -> None:
        """Create every table registered on Base.metadata."""
        async with cls.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_created", tables=sorted(Base.metadata.tables))

    @classmethod
    async def missing_tables(cls) -> list[str]:
        """Registered tables that do not exist in the database."""
        async with cls.get_engine().connect() as conn:
            existing = await conn.run_sync(lambda sync: set(inspect(sync).get_table_names()))
        return sorted(set(Base.metadata.tables) - existing)

    @classmethod
    async def close(cls) -> None:
        """Dispose of the engine and forget any URL override."""
        if cls._engine is not None:
            await cls._engine.dispose()
            logger.info("database_engine_closed")
        cls._engine = None
        cls._session_factory = None
        cls._url = None

    @classmethod
    async def health_check(cls) -> dict[str, Any]:
        """
        Check database health.

        Returns:
            dict with status, latency and any missing rule store tables
        """
        try:
            start = time.perf_counter()
            async with cls.get_session_factory()() as session:
                await session.execute(text("SELECT 1"))
            latency_ms = (time.perf_counter() - start) * 1000
            missing = await cls.missing_tables()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }

        return {
            "status": "degraded" if missing else "healthy",
            "latency_ms": round(latency_ms, 2),
            "database": make_url(cls.url()).database,
            "missing_tables": missing,
        }
