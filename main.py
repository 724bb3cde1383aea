"""
Admin back-office bot entrypoint.
Required env vars:
 - BOT_TOKEN
 - OWNER_TG_ID
 - STORE_BACKEND=sql + DATABASE_URL for Postgres (memory otherwise)
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys

from app.bot.app import run_bot
from app.core.config import settings
from app.core.logging import setup_logging
from app.deps import init_services
from app.store.base import Store
from app.store.memory import MemoryStore

log = logging.getLogger(__name__)


def _run_alembic_upgrade_head() -> None:
    subprocess.check_call([sys.executable, "-m", "alembic", "upgrade", "head"])
    log.info("alembic_upgrade_head_done")


def _build_store() -> Store:
    if settings.store_backend == "sql":
        from app.db.session import init_engine
        from app.store.sql import SqlStore

        _run_alembic_upgrade_head()
        return SqlStore(init_engine(settings.database_url))
    log.warning("store_backend_memory data is lost on restart")
    return MemoryStore()


async def main() -> None:
    setup_logging()
    store = _build_store()
    services = init_services(settings, store)
    await services.live.start()
    try:
        await run_bot()
    finally:
        services.live.stop()
        if settings.store_backend == "sql":
            from app.db.session import dispose_engine

            await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
