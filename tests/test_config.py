import pytest

from app.core.config import _load_settings, make_async_db_url, make_sync_db_url
from app.deps import build_services, get_services, init_services, reset_services
from app.services.identity.provider import HttpIdentityProvider, MockIdentityProvider, build_identity_provider
from app.services.notify.mailer import MockMailer, RelayMailer, build_mailer
from app.store.memory import MemoryStore


class TestDatabaseUrl:
    @pytest.mark.parametrize(
        "raw",
        ["postgres://u:p@h/db", "postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"],
    )
    def test_async_url(self, raw):
        assert make_async_db_url(raw) == "postgresql+asyncpg://u:p@h/db"

    def test_sync_url_for_migrations(self):
        assert make_sync_db_url("postgres://u:p@h/db") == "postgresql://u:p@h/db"
        assert make_sync_db_url("postgresql+asyncpg://u:p@h/db") == "postgresql://u:p@h/db"

    def test_unsupported(self):
        with pytest.raises(RuntimeError):
            make_async_db_url("mysql://h/db")


class TestLoadSettings:
    """Settings come from the environment."""

    def test_defaults(self, monkeypatch):
        for name in ("STORE_BACKEND", "REFERRAL_CLEANUP_POLICY", "LEDGER_TIMEZONE", "DEFAULT_COMMISSION_PERCENT"):
            monkeypatch.delenv(name, raising=False)
        s = _load_settings()
        assert s.owner_tg_id == 1
        assert s.admin_tg_ids == (2, 3)
        assert s.store_backend == "memory"
        assert s.referral_cleanup_policy == "cascade"
        assert s.default_commission_percent == 58
        assert s.ledger_timezone == "UTC"

    def test_missing_token(self, monkeypatch):
        monkeypatch.setenv("BOT_TOKEN", "")
        with pytest.raises(RuntimeError):
            _load_settings()

    def test_sql_needs_database_url(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "sql")
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError):
            _load_settings()

    def test_sql_backend(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "sql")
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@h/db")
        assert _load_settings().database_url == "postgresql+asyncpg://u:p@h/db"

    def test_bad_policy(self, monkeypatch):
        monkeypatch.setenv("REFERRAL_CLEANUP_POLICY", "purge")
        with pytest.raises(RuntimeError):
            _load_settings()

    def test_preserve_policy(self, monkeypatch):
        monkeypatch.setenv("REFERRAL_CLEANUP_POLICY", "Preserve")
        assert _load_settings().referral_cleanup_policy == "preserve"


class TestBuilders:
    """Adapters picked from settings."""

    def test_mock_adapters_by_default(self, monkeypatch):
        s = _load_settings()
        assert isinstance(build_mailer(s), MockMailer)
        assert isinstance(build_identity_provider(s), MockIdentityProvider)

    def test_relay_mailer(self, monkeypatch):
        monkeypatch.setenv("MAIL_TRANSPORT", "relay")
        monkeypatch.setenv("MAIL_RELAY_URL", "https://relay.local/send")
        monkeypatch.setenv("MAIL_RELAY_SECRET", "s3cret")
        monkeypatch.setenv("MAIL_FROM_EMAIL", "noreply@x.com")
        assert isinstance(build_mailer(_load_settings()), RelayMailer)

    def test_relay_mailer_needs_secret(self, monkeypatch):
        monkeypatch.setenv("MAIL_TRANSPORT", "relay")
        monkeypatch.delenv("MAIL_RELAY_SECRET", raising=False)
        with pytest.raises(RuntimeError):
            build_mailer(_load_settings())

    def test_http_identity(self, monkeypatch):
        monkeypatch.setenv("IDENTITY_PROVIDER", "http")
        monkeypatch.setenv("IDENTITY_API_URL", "https://id.local/admin")
        monkeypatch.setenv("IDENTITY_API_KEY", "k")
        assert isinstance(build_identity_provider(_load_settings()), HttpIdentityProvider)

    def test_build_services(self, monkeypatch):
        monkeypatch.setenv("LEDGER_TIMEZONE", "Asia/Kolkata")
        services = build_services(_load_settings(), MemoryStore())
        assert services.ledger.now().utcoffset().total_seconds() == 5.5 * 3600
        assert services.live.current() is None

    def test_service_container_lifecycle(self):
        reset_services()
        with pytest.raises(RuntimeError):
            get_services()
        store = MemoryStore()
        first = init_services(_load_settings(), store)
        assert init_services(_load_settings(), MemoryStore()) is first
        assert get_services().store is store
        reset_services()
