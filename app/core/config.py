import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_ids(name: str) -> tuple[int, ...]:
    raw = os.getenv(name) or ""
    return tuple(int(x.strip()) for x in raw.split(",") if x.strip().isdigit())


def make_async_db_url(url: str) -> str:
    """Accepts Railway-style DATABASE_URL and returns sqlalchemy async url."""
    if url.startswith("postgresql+asyncpg://"):
        return url
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    raise RuntimeError("Unsupported DATABASE_URL format")


def make_sync_db_url(url: str) -> str:
    """Same database through the sync psycopg2 driver (alembic migrations)."""
    return "postgresql://" + make_async_db_url(url)[len("postgresql+asyncpg://") :]


@dataclass(frozen=True)
class Settings:
    bot_token: str
    # owner (admin access)
    owner_tg_id: int
    admin_tg_ids: tuple[int, ...] = ()

    # memory: in-process tree (dev/test)
    # sql: store_nodes table in Postgres
    store_backend: str = "memory"
    database_url: str | None = None

    # Ledger
    # windows (today / week / month) are cut at local midnight of this zone
    ledger_timezone: str = "UTC"
    default_commission_percent: int = 58
    cashback_percent: int = 10
    leaderboard_size: int = 10
    monthly_goal_default: int = 30000
    monthly_prize_default: str = "T-Shirt + Gift Hamper"

    # Cleanup: cascade | preserve (what happens to other users' referral maps)
    referral_cleanup_policy: str = "cascade"

    # Identity provider
    identity_provider: str = "mock"  # mock | http
    identity_api_url: str | None = None
    identity_api_key: str | None = None

    # Outbound mail
    mail_transport: str = "mock"  # mock | relay
    mail_relay_url: str | None = None
    mail_relay_secret: str | None = None
    mail_from_email: str | None = None
    mail_from_name: str = "Plex Courses"
    notifications_enabled: bool = True


def _load_settings() -> Settings:
    bot_token = (os.getenv("BOT_TOKEN") or "").strip()
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is missing")

    owner_raw = os.getenv("OWNER_TG_ID", "").strip()
    if not owner_raw.isdigit():
        raise RuntimeError("OWNER_TG_ID is missing or invalid (must be digits)")
    owner_tg_id = int(owner_raw)

    store_backend = os.getenv("STORE_BACKEND", "memory").strip().lower()
    database_url: str | None = None
    if store_backend == "sql":
        database_url_raw = os.getenv("DATABASE_URL", "").strip()
        if not database_url_raw:
            raise RuntimeError("DATABASE_URL is missing (required for STORE_BACKEND=sql)")
        database_url = make_async_db_url(database_url_raw)
    elif store_backend != "memory":
        raise RuntimeError(f"Unsupported STORE_BACKEND={store_backend}")

    policy = os.getenv("REFERRAL_CLEANUP_POLICY", "cascade").strip().lower()
    if policy not in ("cascade", "preserve"):
        raise RuntimeError("REFERRAL_CLEANUP_POLICY must be 'cascade' or 'preserve'")

    return Settings(
        bot_token=bot_token,
        owner_tg_id=owner_tg_id,
        admin_tg_ids=_env_ids("ADMIN_TG_IDS"),
        store_backend=store_backend,
        database_url=database_url,

        # Ledger
        ledger_timezone=os.getenv("LEDGER_TIMEZONE", "UTC").strip(),
        default_commission_percent=int(os.getenv("DEFAULT_COMMISSION_PERCENT", "58")),
        cashback_percent=int(os.getenv("CASHBACK_PERCENT", "10")),
        leaderboard_size=int(os.getenv("LEADERBOARD_SIZE", "10")),
        monthly_goal_default=int(os.getenv("MONTHLY_GOAL_DEFAULT", "30000")),
        monthly_prize_default=(os.getenv("MONTHLY_PRIZE_DEFAULT") or "T-Shirt + Gift Hamper").strip(),
        referral_cleanup_policy=policy,

        # Identity
        identity_provider=os.getenv("IDENTITY_PROVIDER", "mock").strip().lower(),
        identity_api_url=(os.getenv("IDENTITY_API_URL") or "").strip() or None,
        identity_api_key=(os.getenv("IDENTITY_API_KEY") or "").strip() or None,

        # Mail
        mail_transport=os.getenv("MAIL_TRANSPORT", "mock").strip().lower(),
        mail_relay_url=(os.getenv("MAIL_RELAY_URL") or "").strip() or None,
        mail_relay_secret=(os.getenv("MAIL_RELAY_SECRET") or "").strip() or None,
        mail_from_email=(os.getenv("MAIL_FROM_EMAIL") or "").strip() or None,
        mail_from_name=(os.getenv("MAIL_FROM_NAME") or "Plex Courses").strip(),
        notifications_enabled=_env_bool("NOTIFICATIONS_ENABLED", True),
    )


settings = _load_settings()
