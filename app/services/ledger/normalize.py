from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Callable, Mapping

from dateutil.parser import isoparse

from app.core.time import ensure_aware_utc, from_epoch_ms

HIDDEN_STATUSES = ("deleted", "rejected")
ORDER_COMPLETED = "Completed"
ORDER_PENDING = "Pending Approval"
ORDER_REJECTED = "Rejected"


@dataclass(frozen=True)
class EarningEvent:
    """One commission (or cashback) amount credited to ``earner_id`` at ``timestamp``.

    For commissions ``earner_id`` is the referrer, for cashbacks it is the buyer.
    """

    earner_id: str
    amount: Decimal
    timestamp: datetime
    source_user_id: str | None = None
    order_id: str | None = None


@dataclass(frozen=True)
class Earner:
    id: str
    name: str
    email: str = ""
    status: str | None = None
    image_url: str | None = None
    total_earnings: Decimal = Decimal(0)
    balance: Decimal = Decimal(0)
    special_percent: Decimal | None = None


def to_decimal(value: Any) -> Decimal | None:
    """Number or numeric string -> finite Decimal; anything else -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
    else:
        return None
    try:
        d = Decimal(raw)
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def to_timestamp(value: Any) -> datetime | None:
    """Epoch milliseconds (number or numeric string) or an ISO-8601 string."""
    if isinstance(value, datetime):
        return ensure_aware_utc(value)
    ms = to_decimal(value)
    if ms is not None:
        try:
            return from_epoch_ms(float(ms))
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return ensure_aware_utc(isoparse(value.strip()))
        except (ValueError, OverflowError):
            return None
    return None


def floor_amount(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_FLOOR)


def special_percent(raw_user: Mapping[str, Any]) -> Decimal | None:
    """Custom commission percent of an active special-access override."""
    sa = raw_user.get("specialAccess")
    if not isinstance(sa, Mapping):
        return None
    active = sa.get("active", sa.get("enabled", True))
    if active is False:
        return None
    return to_decimal(sa.get("commissionPercent"))


def visible_users(raw_users: Mapping[str, Any] | None) -> dict[str, Earner]:
    """Users that may appear in earnings views: named and not deleted/rejected."""
    return {uid: u for uid, u in named_users(raw_users).items() if u.status not in HIDDEN_STATUSES}


def named_users(raw_users: Mapping[str, Any] | None) -> dict[str, Earner]:
    out: dict[str, Earner] = {}
    for uid, u in (raw_users or {}).items():
        if not isinstance(u, Mapping):
            continue
        name = u.get("name").strip() if isinstance(u.get("name"), str) else ""
        if not name:
            continue
        status = u.get("status") if isinstance(u.get("status"), str) else None
        out[str(uid)] = Earner(
            id=str(uid),
            name=name,
            email=u.get("email").strip() if isinstance(u.get("email"), str) else "",
            status=status,
            image_url=u.get("imageUrl") or None,
            total_earnings=to_decimal(u.get("totalEarnings")) or Decimal(0),
            balance=to_decimal(u.get("balance")) or Decimal(0),
            special_percent=special_percent(u),
        )
    return out


def _normalize(raw: Any, earner_key: str, other_key: str) -> EarningEvent | None:
    if not isinstance(raw, Mapping):
        return None
    earner = raw.get(earner_key)
    if not earner:
        return None
    amount = to_decimal(raw.get("amount"))
    ts = to_timestamp(raw.get("timestamp"))
    if amount is None or amount <= 0 or ts is None:
        return None
    other = raw.get(other_key)
    return EarningEvent(
        earner_id=str(earner),
        amount=amount,
        timestamp=ts,
        source_user_id=str(other) if other else None,
        order_id=str(raw["orderId"]) if raw.get("orderId") else None,
    )


def normalize_commissions(raw: Mapping[str, Any] | None) -> list[EarningEvent]:
    """Parse the ``commissions`` node; malformed rows are dropped silently."""
    events = (_normalize(v, "referrerId", "userId") for v in (raw or {}).values())
    return [e for e in events if e is not None]


def normalize_cashbacks(raw: Mapping[str, Any] | None) -> list[EarningEvent]:
    events = (_normalize(v, "userId", "referrerId") for v in (raw or {}).values())
    return [e for e in events if e is not None]


def derive_from_orders(
    raw_orders: Mapping[str, Any] | None,
    packages: Mapping[str, Any] | None,
    *,
    default_percent: Decimal | int = 58,
    percent_for: Callable[[str, Mapping[str, Any]], Decimal | None] | None = None,
) -> list[EarningEvent]:
    """Synthesize commission events from completed orders.

    Used when the ``commissions`` node is empty. ``commissionAmount`` stored on
    the order wins; otherwise ``floor(price * percent / 100)``. ``percent_for``
    may return a referrer/package specific percent, ``None`` means default.
    """
    packages = packages or {}
    out: list[EarningEvent] = []
    for oid, o in (raw_orders or {}).items():
        if not isinstance(o, Mapping):
            continue
        if o.get("status") != ORDER_COMPLETED or not o.get("referrerId") or not o.get("createdAt"):
            continue
        ts = to_timestamp(o.get("createdAt"))
        if ts is None:
            continue

        stored = o.get("commissionAmount")
        amount = to_decimal(stored) if isinstance(stored, (int, float, Decimal)) else None
        if amount is None or amount <= 0:
            pkg = packages.get(o.get("courseId")) if o.get("courseId") else None
            price = to_decimal(pkg.get("price")) if isinstance(pkg, Mapping) else None
            pct = percent_for(str(o["referrerId"]), o) if percent_for else None
            if pct is None:
                pct = Decimal(default_percent)
            amount = floor_amount((price or Decimal(0)) * pct / 100)
        if amount <= 0:
            continue

        out.append(
            EarningEvent(
                earner_id=str(o["referrerId"]),
                amount=amount,
                timestamp=ts,
                source_user_id=str(o["userId"]) if o.get("userId") else None,
                order_id=str(oid),
            )
        )
    return out


def to_number(value: Decimal) -> int | float:
    """Decimal -> plain JSON number for writing back to the store."""
    return int(value) if value == value.to_integral_value() else float(value)
