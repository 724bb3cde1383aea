from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Update

from app.core.logging import log_context

log = logging.getLogger(__name__)


class CorrelationIdMiddleware(BaseMiddleware):
    """Runs the handler inside a log context carrying corr_id, update_id and admin_id."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        update: Update | None = data.get("event_update")
        from_user = getattr(event, "from_user", None)
        if update:
            data["corr_id"] = f"u{update.update_id}"
            data["update_id"] = update.update_id
        if from_user:
            data["admin_id"] = from_user.id

        with log_context(
            corr_id=data.get("corr_id"),
            update_id=data.get("update_id"),
            admin_id=data.get("admin_id"),
        ):
            started = time.monotonic()
            try:
                return await handler(event, data)
            finally:
                log.info("update_handled ms=%d", (time.monotonic() - started) * 1000)


class RateLimitMiddleware(BaseMiddleware):
    """Ignores the same button pressed by the same admin again within ``min_interval_sec``."""

    def __init__(self, min_interval_sec: float = 0.4):
        self.min_interval_sec = min_interval_sec
        self._last_press: dict[tuple[int, str], float] = {}

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        callback_data = getattr(event, "data", None)
        from_user = getattr(event, "from_user", None)
        if not callback_data or not from_user:
            return await handler(event, data)

        key = (from_user.id, callback_data)
        now = time.monotonic()
        previous = self._last_press.get(key)
        self._last_press[key] = now
        if previous is not None and now - previous < self.min_interval_sec:
            log.info("callback_throttled data=%s", callback_data)
            return None
        return await handler(event, data)
