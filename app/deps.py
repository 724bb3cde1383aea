from __future__ import annotations

import logging
from dataclasses import dataclass
from zoneinfo import ZoneInfo

from app.core.config import Settings
from app.services.cleanup.service import UserCleanupService
from app.services.identity.provider import build_identity_provider
from app.services.kyc.service import KycService
from app.services.ledger.live import LiveLeaderboards
from app.services.ledger.service import LedgerConfig, LedgerService
from app.services.notify.broadcast import BroadcastService
from app.services.notify.mailer import Notifier, build_mailer
from app.services.orders.service import OrderService
from app.services.withdrawals.service import WithdrawalService
from app.store.base import Store

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    store: Store
    ledger: LedgerService
    live: LiveLeaderboards
    cleanup: UserCleanupService
    orders: OrderService
    withdrawals: WithdrawalService
    kyc: KycService
    broadcast: BroadcastService


_services: Services | None = None


def build_services(settings: Settings, store: Store, *, identity=None, mailer=None) -> Services:
    notifier = Notifier(mailer or build_mailer(settings), enabled=settings.notifications_enabled)
    ledger_cfg = LedgerConfig(
        tz=ZoneInfo(settings.ledger_timezone),
        default_commission_percent=settings.default_commission_percent,
        leaderboard_size=settings.leaderboard_size,
        monthly_goal_default=settings.monthly_goal_default,
        monthly_prize_default=settings.monthly_prize_default,
    )
    return Services(
        store=store,
        ledger=LedgerService(store, notifier, ledger_cfg),
        live=LiveLeaderboards(
            store,
            size=ledger_cfg.leaderboard_size,
            default_percent=ledger_cfg.default_commission_percent,
            tz=ledger_cfg.tz,
        ),
        cleanup=UserCleanupService(
            store,
            identity or build_identity_provider(settings),
            policy=settings.referral_cleanup_policy,
        ),
        orders=OrderService(
            store,
            notifier,
            default_commission_percent=settings.default_commission_percent,
            cashback_percent=settings.cashback_percent,
        ),
        withdrawals=WithdrawalService(store, notifier),
        kyc=KycService(store, notifier),
        broadcast=BroadcastService(store, notifier),
    )


def init_services(settings: Settings, store: Store, **overrides) -> Services:
    global _services
    if _services is not None:
        return _services
    _services = build_services(settings, store, **overrides)
    log.info("services_initialized store=%s policy=%s", type(store).__name__, settings.referral_cleanup_policy)
    return _services


def get_services() -> Services:
    if _services is None:
        raise RuntimeError("Services not initialized. Call init_services() first.")
    return _services


def reset_services() -> None:
    global _services
    _services = None
