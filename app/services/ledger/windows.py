from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

WINDOWS = ("daily", "weekly", "monthly", "lifetime")


def start_of_today(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(now: datetime) -> datetime:
    """Most recent Sunday 00:00 in ``now``'s timezone."""
    # weekday(): Monday=0 .. Sunday=6
    days_since_sunday = (now.weekday() + 1) % 7
    return start_of_today(now) - timedelta(days=days_since_sunday)


def start_of_month(now: datetime) -> datetime:
    return start_of_today(now).replace(day=1)


@dataclass(frozen=True)
class WindowBounds:
    daily: datetime
    weekly: datetime
    monthly: datetime

    @classmethod
    def at(cls, now: datetime) -> "WindowBounds":
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        return cls(daily=start_of_today(now), weekly=start_of_week(now), monthly=start_of_month(now))

    def start(self, window: str) -> datetime | None:
        """Inclusive lower bound of ``window``; ``None`` for lifetime."""
        if window == "lifetime":
            return None
        if window not in WINDOWS:
            raise ValueError(f"unknown window {window!r}")
        return getattr(self, window)
