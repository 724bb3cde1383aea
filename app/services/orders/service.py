from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Mapping

from app.core.time import to_epoch_ms, utcnow
from app.services.errors import InvalidStateTransition, OrderNotFound
from app.services.ledger.normalize import (
    ORDER_COMPLETED,
    ORDER_PENDING,
    ORDER_REJECTED,
    floor_amount,
    to_decimal,
    to_number,
)
from app.services.notify import templates
from app.services.notify.mailer import Notifier
from app.store.base import Store

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalResult:
    order_id: str
    is_upgrade: bool
    commission_amount: Decimal
    cashback_amount: Decimal


def _credit(updates: dict[str, Any], uid: str, user: Mapping[str, Any], amount: Decimal) -> None:
    """Add ``amount`` to balance and totalEarnings, on top of anything already queued."""
    for field in ("balance", "totalEarnings"):
        path = f"users/{uid}/{field}"
        base = updates[path] if path in updates else user.get(field)
        updates[path] = to_number((to_decimal(base) or Decimal(0)) + amount)


def is_upgrade(order: Mapping[str, Any]) -> bool:
    product = order.get("product")
    return isinstance(product, str) and product.startswith("Upgrade")


class OrderService:
    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        *,
        default_commission_percent: int = 58,
        cashback_percent: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._default_pct = Decimal(default_commission_percent)
        self._cashback_pct = Decimal(cashback_percent)
        self._clock = clock

    async def _pending_order(self, order_id: str) -> dict[str, Any]:
        order = await self._store.get(f"orders/{order_id}")
        if not isinstance(order, dict):
            raise OrderNotFound(order_id)
        if order.get("status") != ORDER_PENDING:
            raise InvalidStateTransition(f"order {order_id} is {order.get('status')!r}, expected {ORDER_PENDING!r}")
        return order

    async def _price_and_percent(self, order: Mapping[str, Any]) -> tuple[Decimal, Decimal]:
        price = to_decimal(order.get("coursePrice")) or Decimal(0)
        pkg = await self._store.get(f"packages/{order['courseId']}") if order.get("courseId") else None
        if not isinstance(pkg, Mapping):
            pkg = {}
        if price <= 0:
            price = to_decimal(pkg.get("price")) or Decimal(0)
        pct = to_decimal(pkg.get("commissionPercent"))
        if pct is None or pct <= 0:
            pct = self._default_pct
        return price, pct

    async def approve_order(self, order_id: str) -> ApprovalResult:
        """Complete a pending order, credit commission/cashback, notify the buyer."""
        order = await self._pending_order(order_id)
        upgrade = is_upgrade(order)
        uid = order.get("userId")
        referrer_id = order.get("referrerId")
        course_id = order.get("courseId")

        updates: dict[str, Any] = {f"orders/{order_id}/status": ORDER_COMPLETED}
        if uid:
            if upgrade:
                updates[f"users/{uid}/courseId"] = course_id
            else:
                updates[f"users/{uid}/status"] = "active"
                if course_id:
                    updates[f"users/{uid}/courseId"] = course_id

        price, pct = await self._price_and_percent(order)
        commission = cashback = Decimal(0)
        if price > 0 and referrer_id:
            commission = floor_amount(price * pct / 100)
            cashback = floor_amount(price * self._cashback_pct / 100)

            referrer = await self._store.get(f"users/{referrer_id}")
            if isinstance(referrer, Mapping):
                _credit(updates, referrer_id, referrer, commission)
            updates[f"orders/{order_id}/commissionAmount"] = to_number(commission)

            customer = await self._store.get(f"users/{uid}") if uid else None
            if isinstance(customer, Mapping):
                _credit(updates, uid, customer, cashback)
            updates[f"orders/{order_id}/cashbackAmount"] = to_number(cashback)

        await self._store.update(updates)

        ts = to_epoch_ms(self._clock())
        if referrer_id and commission > 0:
            await self._store.push(
                "commissions",
                {
                    "orderId": order_id,
                    "referrerId": referrer_id,
                    "amount": to_number(commission),
                    "timestamp": ts,
                    "courseId": course_id,
                    "userId": uid,
                },
            )
        if referrer_id and cashback > 0:
            await self._store.push(
                "cashbacks",
                {
                    "orderId": order_id,
                    "userId": uid,
                    "referrerId": referrer_id,
                    "amount": to_number(cashback),
                    "timestamp": ts,
                    "courseId": course_id,
                },
            )

        log.info(
            "order_approved order_id=%s upgrade=%s commission=%s cashback=%s",
            order_id,
            upgrade,
            commission,
            cashback,
        )
        mail = templates.order_approved(
            customer_name=str(order.get("customerName") or ""),
            product=str(order.get("product") or ""),
            is_upgrade=upgrade,
            cashback_credited=bool(referrer_id) and cashback > 0,
        )
        await self._notifier.send_safe(order.get("email"), mail.subject, mail.html)
        return ApprovalResult(order_id=order_id, is_upgrade=upgrade, commission_amount=commission, cashback_amount=cashback)

    async def reject_order(self, order_id: str) -> None:
        order = await self._pending_order(order_id)
        upgrade = is_upgrade(order)
        uid = order.get("userId")

        updates: dict[str, Any] = {f"orders/{order_id}/status": ORDER_REJECTED}
        if not upgrade and uid:
            updates[f"users/{uid}/status"] = "rejected"

        referrer_id = order.get("referrerId")
        if referrer_id:
            referrals = await self._store.get(f"users/{referrer_id}/referrals")
            if isinstance(referrals, Mapping):
                key = next(
                    (k for k, r in referrals.items() if isinstance(r, Mapping) and r.get("email") == order.get("email")),
                    None,
                )
                if key:
                    updates[f"users/{referrer_id}/referrals/{key}"] = None

        await self._store.update(updates)
        log.info("order_rejected order_id=%s upgrade=%s", order_id, upgrade)

        mail = templates.order_rejected(is_upgrade=upgrade)
        await self._notifier.send_safe(order.get("email"), mail.subject, mail.html)
