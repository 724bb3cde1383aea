"""Pure earnings aggregation over the raw store snapshots.

Nothing here touches the store: callers pass the current ``users``,
``commissions``, ``orders`` and ``packages`` nodes and get fresh views back.
Results are recomputed from scratch every time.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from app.services.ledger.normalize import (
    Earner,
    EarningEvent,
    derive_from_orders,
    named_users,
    normalize_cashbacks,
    normalize_commissions,
    special_percent,
    to_decimal,
    visible_users,
)
from app.services.ledger.windows import WINDOWS, WindowBounds, start_of_today


@dataclass(frozen=True)
class LeaderboardEntry:
    user: Earner
    earnings: Decimal


@dataclass(frozen=True)
class Leaderboards:
    daily: list[LeaderboardEntry] = field(default_factory=list)
    weekly: list[LeaderboardEntry] = field(default_factory=list)
    monthly: list[LeaderboardEntry] = field(default_factory=list)
    lifetime: list[LeaderboardEntry] = field(default_factory=list)

    def window(self, name: str) -> list[LeaderboardEntry]:
        if name not in WINDOWS:
            raise ValueError(f"unknown window {name!r}")
        return getattr(self, name)


@dataclass(frozen=True)
class MonthlyTarget:
    goal_amount: Decimal
    prize: str
    image_url: str | None = None


@dataclass(frozen=True)
class Achiever:
    user: Earner
    monthly_earnings: Decimal
    prize_given: bool = False
    prize_given_at: str | None = None


@dataclass(frozen=True)
class DayBucket:
    day: date
    label: str
    earnings: Decimal


@dataclass(frozen=True)
class EarningsSummary:
    user_id: str
    daily: Decimal
    weekly: Decimal
    monthly: Decimal
    lifetime: Decimal
    cashback: Decimal
    last_7_days: list[DayBucket]
    monthly_progress: Decimal


@dataclass(frozen=True)
class AdminStats:
    total_users: int
    active_earners: int
    total_earnings: Decimal
    total_balance: Decimal


def parse_target(raw: Any, *, default_goal: int | Decimal, default_prize: str) -> MonthlyTarget:
    if not isinstance(raw, Mapping):
        return MonthlyTarget(goal_amount=Decimal(default_goal), prize=default_prize)
    goal = to_decimal(raw.get("goalAmount"))
    prize = raw.get("prize") if isinstance(raw.get("prize"), str) and raw.get("prize").strip() else default_prize
    return MonthlyTarget(
        goal_amount=goal if goal is not None else Decimal(default_goal),
        prize=prize,
        image_url=raw.get("imageUrl") or None,
    )


def _package_percent(packages: Mapping[str, Any]):
    def percent_for(_referrer_id: str, order: Mapping[str, Any]) -> Decimal | None:
        pkg = packages.get(order.get("courseId")) if order.get("courseId") else None
        if isinstance(pkg, Mapping):
            return to_decimal(pkg.get("commissionPercent"))
        return None

    return percent_for


def select_events(
    commissions: Mapping[str, Any] | None,
    orders: Mapping[str, Any] | None,
    packages: Mapping[str, Any] | None,
    *,
    default_percent: int | Decimal = 58,
) -> list[EarningEvent]:
    """Commission events when any exist, otherwise ones derived from completed orders.

    Derived amounts use the flat ``default_percent`` for every package; only the
    per-user summary applies package and special-access percents.
    """
    events = normalize_commissions(commissions)
    if events:
        return events
    return derive_from_orders(orders, packages, default_percent=default_percent)


def rank(totals: Mapping[str, Decimal], users: Mapping[str, Earner], size: int | None = 10) -> list[LeaderboardEntry]:
    """Visible earners sorted by earnings desc, then user id asc."""
    entries = [LeaderboardEntry(user=users[uid], earnings=amt) for uid, amt in totals.items() if uid in users]
    entries.sort(key=lambda e: (-e.earnings, e.user.id))
    return entries if size is None else entries[:size]


def totals_since(events: Iterable[EarningEvent], since: datetime | None) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for ev in events:
        if since is None or ev.timestamp >= since:
            totals[ev.earner_id] += ev.amount
    return dict(totals)


def compute_leaderboards(
    users: Mapping[str, Any] | None,
    commission_events: Mapping[str, Any] | None,
    orders_fallback: Mapping[str, Any] | None,
    packages: Mapping[str, Any] | None,
    now: datetime,
    *,
    size: int = 10,
    default_percent: int | Decimal = 58,
) -> Leaderboards:
    visible = visible_users(users)
    events = select_events(commission_events, orders_fallback, packages, default_percent=default_percent)
    bounds = WindowBounds.at(now)
    boards = {w: rank(totals_since(events, bounds.start(w)), visible, size) for w in WINDOWS}
    return Leaderboards(**boards)


def admin_lifetime_board(users: Mapping[str, Any] | None, size: int = 10) -> list[LeaderboardEntry]:
    """Lifetime board by the stored ``totalEarnings`` counters."""
    visible = visible_users(users)
    totals = {uid: u.total_earnings for uid, u in visible.items() if u.total_earnings > 0}
    return rank(totals, visible, size)


def admin_stats(users: Mapping[str, Any] | None) -> AdminStats:
    named = named_users(users).values()
    return AdminStats(
        total_users=len(named),
        active_earners=sum(1 for u in named if u.status == "active" and u.total_earnings > 0),
        total_earnings=sum((u.total_earnings for u in named), Decimal(0)),
        total_balance=sum((u.balance for u in named), Decimal(0)),
    )


def monthly_achievers(
    users: Mapping[str, Any] | None,
    commission_events: Mapping[str, Any] | None,
    orders_fallback: Mapping[str, Any] | None,
    packages: Mapping[str, Any] | None,
    target: MonthlyTarget,
    prize_records: Mapping[str, Any] | None,
    now: datetime,
    *,
    default_percent: int | Decimal = 58,
) -> list[Achiever]:
    """Visible users whose month-to-date earnings reach the target goal.

    ``prize_records`` carry a 0-based ``month``; a record for the current
    month and year marks the achiever as already awarded.
    """
    visible = visible_users(users)
    events = select_events(commission_events, orders_fallback, packages, default_percent=default_percent)
    monthly = totals_since(events, WindowBounds.at(now).monthly)

    given: dict[str, str | None] = {}
    for rec in (prize_records or {}).values():
        if not isinstance(rec, Mapping):
            continue
        if rec.get("month") == now.month - 1 and rec.get("year") == now.year and rec.get("userId"):
            given.setdefault(str(rec["userId"]), rec.get("givenAt"))

    out = [
        Achiever(
            user=e.user,
            monthly_earnings=e.earnings,
            prize_given=e.user.id in given,
            prize_given_at=given.get(e.user.id),
        )
        for e in rank(monthly, visible, size=None)
        if e.earnings >= target.goal_amount
    ]
    return out


def user_earnings_summary(
    user_id: str,
    users: Mapping[str, Any] | None,
    commission_events: Mapping[str, Any] | None,
    orders_fallback: Mapping[str, Any] | None,
    packages: Mapping[str, Any] | None,
    target: MonthlyTarget | None,
    now: datetime,
    *,
    cashbacks: Mapping[str, Any] | None = None,
    default_percent: int | Decimal = 58,
) -> EarningsSummary:
    """Dashboard numbers for one user.

    When the user has no commission events, completed orders they referred are
    used instead, priced with their special-access percent, then the package
    percent, then ``default_percent``.
    """
    raw_user = (users or {}).get(user_id)
    special = special_percent(raw_user) if isinstance(raw_user, Mapping) else None

    events = [e for e in normalize_commissions(commission_events) if e.earner_id == user_id]
    if not events:
        packages = packages or {}
        by_package = _package_percent(packages)

        def percent_for(referrer_id: str, order: Mapping[str, Any]) -> Decimal | None:
            return special if special is not None else by_package(referrer_id, order)

        mine = {
            oid: o
            for oid, o in (orders_fallback or {}).items()
            if isinstance(o, Mapping) and o.get("referrerId") == user_id
        }
        events = derive_from_orders(mine, packages, default_percent=default_percent, percent_for=percent_for)

    bounds = WindowBounds.at(now)
    sums = {w: totals_since(events, bounds.start(w)).get(user_id, Decimal(0)) for w in WINDOWS}

    today = start_of_today(now)
    buckets: list[DayBucket] = []
    for i in range(6, -1, -1):
        start = today - timedelta(days=i)
        end = start + timedelta(days=1)
        amount = sum((e.amount for e in events if start <= e.timestamp < end), Decimal(0))
        buckets.append(DayBucket(day=start.date(), label=start.strftime("%a"), earnings=amount))

    progress = Decimal(0)
    if target is not None and target.goal_amount > 0:
        progress = min(Decimal(100), max(Decimal(0), sums["monthly"] / target.goal_amount * 100))

    cashback = sum(
        (e.amount for e in normalize_cashbacks(cashbacks) if e.earner_id == user_id),
        Decimal(0),
    )

    return EarningsSummary(
        user_id=user_id,
        daily=sums["daily"],
        weekly=sums["weekly"],
        monthly=sums["monthly"],
        lifetime=sums["lifetime"],
        cashback=cashback,
        last_7_days=buckets,
        monthly_progress=progress,
    )


def format_currency(amount: Decimal | int | float) -> str:
    """``Rs 1,500`` (rounded half up to whole rupees)."""
    value = Decimal(str(amount)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return f"Rs {value:,}"
