"""Async engine and per-request sessions.

Nothing connects at import time. The engine is built from
``Settings.database_url`` on first use, which lets tests point DATABASE_URL
at a fresh SQLite file before the app starts.
"""

import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from visidash.server.config import get_settings
from visidash.server.models import Base

logger = logging.getLogger(__name__)

# Hosted Postgres hands out sync URLs; SQLAlchemy's asyncio mode needs asyncpg
_ASYNC_SCHEMES = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
}


@dataclass
class _Connection:
    engine: Optional[AsyncEngine] = None
    sessions: Optional[async_sessionmaker[AsyncSession]] = None


_connection = _Connection()


def get_database_url(raw: Optional[str] = None) -> str:
    """Async form of ``raw``, or of the configured URL when raw is None."""
    url = get_settings().database_url if raw is None else raw
    for scheme, async_scheme in _ASYNC_SCHEMES.items():
        if url.startswith(scheme):
            return async_scheme + url[len(scheme):]
    return url


def get_engine() -> AsyncEngine:
    if _connection.engine is None:
        _connection.engine = create_async_engine(
            get_database_url(), echo=get_settings().sql_echo
        )
        logger.info(f"Database engine created for {_connection.engine.url.drivername}")
    return _connection.engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _connection.sessions is None:
        _connection.sessions = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _connection.sessions


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request.

    Work is committed once the handler returns. If the handler raises
    (HTTPException included) everything it wrote is rolled back.
    """
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        else:
            await session.commit()


async def init_db() -> None:
    """Create tables that do not exist yet. Existing tables are left alone."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine so the next use starts from current settings."""
    engine, _connection.engine, _connection.sessions = _connection.engine, None, None
    if engine is not None:
        await engine.dispose()
