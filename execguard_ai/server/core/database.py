"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
when ``EXECGUARD_AI_DATABASE_URL`` is configured. Without a database URL the
server keeps executions in memory.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from execguard_ai.core.logging_config import get_logger
from execguard_ai.governance.repos.sql import create_all, create_engine, create_sessionmaker
from execguard_ai.server.core.config import settings

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> Optional[AsyncEngine]:
    """Return the global engine, creating it on first use. None when no database is configured."""
    global _engine
    if _engine is None and settings.database_url:
        _engine = create_engine(settings.database_url)
    return _engine


def get_session_maker() -> Optional[async_sessionmaker[AsyncSession]]:
    """Return the global session factory bound to ``get_engine()``."""
    global _session_maker
    engine = get_engine()
    if _session_maker is None and engine is not None:
        _session_maker = create_sessionmaker(engine)
    return _session_maker


async def init_db() -> None:
    """
    Initialize the database.

    Creates all governance tables if they do not exist.
    NOTE: In production, Alembic migrations should be used instead of this function.
    """
    engine = get_engine()
    if engine is None:
        logger.info("No database configured; executions are kept in memory")
        return
    await create_all(engine)


async def dispose_db() -> None:
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None
