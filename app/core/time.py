from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    return int(ensure_aware_utc(dt).timestamp() * 1000)


def from_epoch_ms(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def to_iso_z(dt: datetime) -> str:
    """2025-01-31T10:00:00.000Z"""
    return ensure_aware_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")
