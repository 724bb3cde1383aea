from __future__ import annotations

import logging
from typing import Mapping

from app.services.errors import InvalidStateTransition, KycRequestNotFound
from app.services.notify import templates
from app.services.notify.mailer import Notifier
from app.store.base import Store

log = logging.getLogger(__name__)


class KycService:
    def __init__(self, store: Store, notifier: Notifier) -> None:
        self._store = store
        self._notifier = notifier

    async def review(self, uid: str, new_status: str) -> None:
        """Set the KYC status on the request and on the user in one batch, then mail the user."""
        if new_status not in ("Approved", "Rejected"):
            raise InvalidStateTransition(f"unsupported KYC status {new_status!r}")

        req = await self._store.get(f"kycRequests/{uid}")
        if not isinstance(req, Mapping):
            raise KycRequestNotFound(uid)

        await self._store.update(
            {
                f"kycRequests/{uid}/status": new_status,
                f"users/{uid}/kyc/status": new_status,
            }
        )
        log.info("kyc_reviewed uid=%s status=%s", uid, new_status, extra={"uid": uid})

        email = await self._store.get(f"users/{uid}/email")
        user_name = req.get("userName") or await self._store.get(f"users/{uid}/name") or ""
        mail = templates.kyc_status(user_name=str(user_name), status=new_status)
        await self._notifier.send_safe(email if isinstance(email, str) else None, mail.subject, mail.html)
