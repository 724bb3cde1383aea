import os

# app.core.config loads settings at import time
os.environ.setdefault("BOT_TOKEN", "123456:test-token")
os.environ.setdefault("OWNER_TG_ID", "1")
os.environ.setdefault("ADMIN_TG_IDS", "2,3")

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402

from tests.fakes import LAST_MONTH, NOW, TODAY, ms  # noqa: E402


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def today_ms() -> int:
    return ms(TODAY)


@pytest.fixture
def last_month_ms() -> int:
    return ms(LAST_MONTH)
