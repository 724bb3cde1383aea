from __future__ import annotations

import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import make_async_db_url

log = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def init_engine(database_url: str, *, pool_size: int = 5) -> async_sessionmaker[AsyncSession]:
    """Create the process-wide engine once; later calls return the existing sessionmaker."""
    global _engine, _sessionmaker
    if _sessionmaker is not None:
        return _sessionmaker
    url = make_async_db_url(database_url)
    _engine = create_async_engine(url, pool_pre_ping=True, pool_size=pool_size)
    _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
    log.info("db_engine_initialized host=%s db=%s", make_url(url).host, make_url(url).database)
    return _sessionmaker


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessionmaker = None
    log.info("db_engine_disposed")
