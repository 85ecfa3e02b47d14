"""Database engine and sessions for the referral service.

PostgreSQL (asyncpg) in production. The test suite and local runs use
SQLite through aiosqlite, which gets a single shared connection when the
database lives in memory.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from config import get_settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pool options suited to the backend."""
    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.endswith("://"):
            options["poolclass"] = StaticPool
        return create_async_engine(database_url, echo=echo, **options)

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


_settings = get_settings()
engine = build_engine(_settings.database_url, echo=_settings.debug)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request.

    The session commits when the route returns and rolls back if it raises,
    so a rejected registration never leaves a half-created user behind.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_schema(bind: AsyncEngine) -> None:
    """Create every referral table on the given engine."""
    from db import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    # Alembic owns the production schema; create_all only fills gaps locally
    await create_schema(engine)
    logger.info(f"Schema ready ({len(Base.metadata.tables)} tables)")


async def close_db() -> None:
    await engine.dispose()
