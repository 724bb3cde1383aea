from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Mapping

from app.core.time import to_iso_z, utcnow
from app.services.errors import InsufficientBalance, InvalidStateTransition, WithdrawalNotFound
from app.services.ledger.normalize import to_decimal, to_number
from app.services.notify import templates
from app.services.notify.mailer import Notifier
from app.store.base import Store
from app.store.keys import make_push_id

log = logging.getLogger(__name__)

PENDING = "Pending"
COMPLETED = "Completed"
REJECTED = "Rejected"


class WithdrawalService:
    def __init__(self, store: Store, notifier: Notifier, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock

    async def process(self, request_id: str, new_status: str) -> str:
        """Move a pending withdrawal request to Completed or Rejected.

        Completing debits the user's balance and appends a ``Withdrawal``
        transaction in the same batch. If the balance does not cover the
        amount the request is rejected instead and ``InsufficientBalance`` is
        raised after the write.
        """
        if new_status not in (COMPLETED, REJECTED):
            raise InvalidStateTransition(f"unsupported withdrawal status {new_status!r}")
        if request_id == "_deleted":
            raise WithdrawalNotFound(request_id)

        req = await self._store.get(f"withdrawalRequests/{request_id}")
        if not isinstance(req, Mapping):
            raise WithdrawalNotFound(request_id)
        if req.get("status") != PENDING:
            raise InvalidStateTransition(f"withdrawal {request_id} is {req.get('status')!r}, expected {PENDING!r}")

        uid = str(req.get("userId") or request_id)
        amount = to_decimal(req.get("amount")) or Decimal(0)
        updates: dict[str, Any] = {f"withdrawalRequests/{request_id}/status": new_status}

        if new_status == COMPLETED:
            balance = to_decimal(await self._store.get(f"users/{uid}/balance")) or Decimal(0)
            if balance < amount:
                updates[f"withdrawalRequests/{request_id}/status"] = REJECTED
                await self._store.update(updates)
                log.warning(
                    "withdrawal_insufficient_balance request_id=%s uid=%s balance=%s amount=%s",
                    request_id,
                    uid,
                    balance,
                    amount,
                    extra={"uid": uid},
                )
                raise InsufficientBalance(f"balance {balance} < {amount}")
            updates[f"users/{uid}/balance"] = to_number(balance - amount)
            updates[f"users/{uid}/transactions/{make_push_id()}"] = {
                "product": "Withdrawal",
                "amount": to_number(-amount),
                "date": to_iso_z(self._clock()),
                "status": "Processed",
            }

        await self._store.update(updates)
        log.info("withdrawal_processed request_id=%s uid=%s status=%s", request_id, uid, new_status, extra={"uid": uid})

        email = await self._store.get(f"users/{uid}/email")
        user_name = req.get("userName") or await self._store.get(f"users/{uid}/name") or ""
        mail = templates.withdrawal_status(user_name=str(user_name), status=new_status, amount=amount)
        await self._notifier.send_safe(email if isinstance(email, str) else None, mail.subject, mail.html)
        return new_status
