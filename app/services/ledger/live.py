from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from app.core.time import utcnow
from app.services.ledger.aggregator import Leaderboards, compute_leaderboards
from app.store.base import Store, Unsubscribe

log = logging.getLogger(__name__)

SOURCES = ("users", "commissions", "orders", "packages")


class LiveLeaderboards:
    """Keeps leaderboards current while subscribed.

    Every change of one of the input collections recomputes all four boards
    from the latest snapshots and hands them to ``on_update``. Windows are
    cut in ``tz``, the same zone ``LedgerService`` uses.
    """

    def __init__(
        self,
        store: Store,
        on_update: Callable[[Leaderboards], None] | None = None,
        *,
        size: int = 10,
        default_percent: int = 58,
        tz: Any = timezone.utc,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._on_update = on_update
        self._size = size
        self._default_percent = default_percent
        self._tz = tz
        self._now = now
        self._snapshots: dict[str, Any] = {}
        self._unsubs: list[Unsubscribe] = []
        self.latest: Leaderboards | None = None

    @property
    def ready(self) -> bool:
        return bool(self._unsubs) and len(self._snapshots) == len(SOURCES)

    async def start(self) -> None:
        if self._unsubs:
            return
        for name in SOURCES:
            self._unsubs.append(await self._store.prime(name, self._listener(name)))
        log.info("live_leaderboards_started sources=%d", len(SOURCES))

    def stop(self) -> None:
        for unsub in self._unsubs:
            unsub()
        self._unsubs.clear()
        self._snapshots.clear()

    def current(self) -> Leaderboards | None:
        """Boards from the cached snapshots against the current clock, or None when not running."""
        if not self.ready:
            return None
        return self._compute()

    def _listener(self, name: str) -> Callable[[Any], None]:
        def on_change(value: Any) -> None:
            self._snapshots[name] = value
            # wait until every source delivered its first snapshot
            if len(self._snapshots) < len(SOURCES):
                return
            self.latest = self._compute()
            if self._on_update is not None:
                self._on_update(self.latest)

        return on_change

    def _compute(self) -> Leaderboards:
        return compute_leaderboards(
            self._snapshots.get("users"),
            self._snapshots.get("commissions"),
            self._snapshots.get("orders"),
            self._snapshots.get("packages"),
            self._now().astimezone(self._tz),
            size=self._size,
            default_percent=self._default_percent,
        )
