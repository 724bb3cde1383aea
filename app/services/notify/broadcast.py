from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from app.services.notify.mailer import Notifier
from app.store.base import Store

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CHUNK_SIZE = 50


@dataclass(frozen=True)
class BroadcastResult:
    recipients: int
    sent: int

    @property
    def skipped(self) -> int:
        return self.recipients - self.sent


def _valid_email(value: Any) -> str | None:
    email = str(value or "").strip()
    return email if EMAIL_RE.match(email) else None


def dedupe_emails(emails: Iterable[str | None]) -> list[str]:
    """Valid addresses in first-seen order; duplicates compare case-insensitively."""
    seen: dict[str, str] = {}
    for raw in emails:
        email = _valid_email(raw)
        if email and email.lower() not in seen:
            seen[email.lower()] = email
    return list(seen.values())


class BroadcastService:
    """Mails one admin-written message to every user or to chosen uids.

    Recipients without a valid address are dropped before sending. Sends go
    out ``chunk_size`` at a time; a failed send only counts as skipped.
    """

    def __init__(self, store: Store, notifier: Notifier, *, chunk_size: int = CHUNK_SIZE) -> None:
        self._store = store
        self._notifier = notifier
        self._chunk_size = chunk_size

    async def recipients(self, uids: Iterable[str] | None = None) -> list[str]:
        if uids is None:
            users = await self._store.get("users")
            if not isinstance(users, Mapping):
                return []
            return dedupe_emails(u.get("email") for u in users.values() if isinstance(u, Mapping))

        wanted = list(dict.fromkeys(u.strip() for u in uids if u and u.strip()))
        emails = await asyncio.gather(*(self._store.get(f"users/{uid}/email") for uid in wanted))
        return dedupe_emails(emails)

    async def send(self, subject: str, html: str, *, uids: Iterable[str] | None = None) -> BroadcastResult:
        subject = (subject or "").strip()
        if not subject or not (html or "").strip():
            raise ValueError("subject and html are required")

        emails = await self.recipients(uids)
        if not emails:
            log.info("broadcast_no_recipients subject=%s", subject)
            return BroadcastResult(recipients=0, sent=0)

        sent = 0
        for i in range(0, len(emails), self._chunk_size):
            chunk = emails[i : i + self._chunk_size]
            results = await asyncio.gather(*(self._notifier.send_safe(to, subject, html) for to in chunk))
            sent += sum(1 for ok in results if ok)

        result = BroadcastResult(recipients=len(emails), sent=sent)
        log.info(
            "broadcast_done subject=%s recipients=%d sent=%d skipped=%d",
            subject,
            result.recipients,
            result.sent,
            result.skipped,
        )
        return result
