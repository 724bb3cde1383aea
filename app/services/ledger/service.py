from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Mapping

from app.core.time import to_iso_z, utcnow
from app.services.errors import AchieverNotEligible
from app.services.ledger.aggregator import (
    Achiever,
    AdminStats,
    EarningsSummary,
    LeaderboardEntry,
    Leaderboards,
    MonthlyTarget,
    admin_lifetime_board,
    admin_stats,
    compute_leaderboards,
    monthly_achievers,
    parse_target,
    user_earnings_summary,
)
from app.services.ledger.normalize import to_number
from app.services.notify import templates
from app.services.notify.mailer import Notifier
from app.store.base import Store

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerConfig:
    tz: Any
    default_commission_percent: int = 58
    leaderboard_size: int = 10
    monthly_goal_default: int = 30000
    monthly_prize_default: str = "T-Shirt + Gift Hamper"


class LedgerService:
    """Reads the store and hands snapshots to the pure aggregator."""

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        config: LedgerConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._cfg = config
        self._clock = clock

    def now(self) -> datetime:
        return self._clock().astimezone(self._cfg.tz)

    async def _inputs(self) -> tuple[Any, Any, Any, Any]:
        return await asyncio.gather(
            self._store.get("users"),
            self._store.get("commissions"),
            self._store.get("orders"),
            self._store.get("packages"),
        )

    async def leaderboards(self) -> Leaderboards:
        users, commissions, orders, packages = await self._inputs()
        return compute_leaderboards(
            users,
            commissions,
            orders,
            packages,
            self.now(),
            size=self._cfg.leaderboard_size,
            default_percent=self._cfg.default_commission_percent,
        )

    async def admin_lifetime(self) -> list[LeaderboardEntry]:
        return admin_lifetime_board(await self._store.get("users"), size=self._cfg.leaderboard_size)

    async def stats(self) -> AdminStats:
        return admin_stats(await self._store.get("users"))

    async def get_target(self) -> MonthlyTarget:
        return parse_target(
            await self._store.get("monthlyTarget"),
            default_goal=self._cfg.monthly_goal_default,
            default_prize=self._cfg.monthly_prize_default,
        )

    async def set_target(self, *, goal_amount: Decimal | int, prize: str, image_url: str | None = None) -> MonthlyTarget:
        goal = Decimal(goal_amount)
        if not goal.is_finite() or goal <= 0:
            raise ValueError("goal_amount must be positive")
        prize = (prize or "").strip()
        if not prize:
            raise ValueError("prize is required")
        await self._store.set("monthlyTarget", {"goalAmount": to_number(goal), "prize": prize, "imageUrl": image_url or ""})
        log.info("monthly_target_set goal=%s prize=%s", goal, prize)
        return MonthlyTarget(goal_amount=goal, prize=prize, image_url=image_url or None)

    async def user_summary(self, uid: str) -> EarningsSummary:
        (users, commissions, orders, packages), cashbacks, target = await asyncio.gather(
            self._inputs(), self._store.get("cashbacks"), self.get_target()
        )
        return user_earnings_summary(
            uid,
            users,
            commissions,
            orders,
            packages,
            target,
            self.now(),
            cashbacks=cashbacks,
            default_percent=self._cfg.default_commission_percent,
        )

    async def achievers(self) -> list[Achiever]:
        (users, commissions, orders, packages), target, records = await asyncio.gather(
            self._inputs(), self.get_target(), self._store.get("prizeRecords")
        )
        return monthly_achievers(
            users,
            commissions,
            orders,
            packages,
            target,
            records,
            self.now(),
            default_percent=self._cfg.default_commission_percent,
        )

    async def award_prize(self, uid: str) -> str:
        """Record a monthly prize for ``uid`` and mail them.

        There is no lock between the eligibility check and the writes; two
        concurrent awards for one user can both succeed.
        """
        achiever = next((a for a in await self.achievers() if a.user.id == uid), None)
        if achiever is None:
            raise AchieverNotEligible(f"{uid} has not reached this month's target")
        if achiever.prize_given:
            raise AchieverNotEligible(f"{uid} already received this month's prize")

        target = await self.get_target()
        now = self.now()
        given_at = to_iso_z(now)
        month0 = now.month - 1
        record: Mapping[str, Any] = {
            "userId": uid,
            "userName": achiever.user.name,
            "userEmail": achiever.user.email,
            "prize": target.prize,
            "goalAmount": to_number(target.goal_amount),
            "monthlyEarnings": to_number(achiever.monthly_earnings),
            "givenAt": given_at,
            "month": month0,
            "year": now.year,
        }
        key = await self._store.push("prizeRecords", record)
        await self._store.set(
            f"users/{uid}/monthlyPrizes/{now.year}_{month0}",
            {
                "prize": target.prize,
                "collectedAt": given_at,
                "goalAmount": to_number(target.goal_amount),
                "earnings": to_number(achiever.monthly_earnings),
            },
        )
        log.info("prize_awarded uid=%s record=%s", uid, key, extra={"uid": uid})

        mail = templates.prize_awarded(
            user_name=achiever.user.name,
            goal_amount=target.goal_amount,
            prize=target.prize,
            earnings=achiever.monthly_earnings,
        )
        await self._notifier.send_safe(achiever.user.email, mail.subject, mail.html)
        return key
