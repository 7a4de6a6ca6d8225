"""
Database Connection Management

Async SQLAlchemy 2.0 engine and session factory for the SQL booking store.

The module-level engine is built from settings.database_url; tests build
their own engine (sqlite+aiosqlite) with build_engine() and pass it
around explicitly.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for postgresql+asyncpg or sqlite+aiosqlite."""
    return create_async_engine(database_url, echo=echo, poolclass=NullPool)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows are converted to domain objects after commit
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.debug)
async_session_factory = build_session_factory(engine)


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session for one unit of work.

    Commits when the block exits normally, rolls back on any exception
    and re-raises it.

    Usage:
        async with session_scope() as session:
            session.add(models.Business(id="biz-1", name="Bistro"))
    """
    async with (factory or async_session_factory)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """
    Create the booking tables if they do not exist.

    Development and tests only; deployed databases are migrated.
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")


async def close_db(bind: Optional[AsyncEngine] = None) -> None:
    await (bind or engine).dispose()


async def check_db_health(bind: Optional[AsyncEngine] = None) -> bool:
    """Return True when a trivial query succeeds."""
    try:
        async with (bind or engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
