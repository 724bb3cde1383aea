from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

log = logging.getLogger(__name__)


class MailerError(RuntimeError):
    pass


@dataclass
class SentMail:
    to: str
    subject: str
    html: str


@dataclass
class MockMailer:
    """Keeps messages in memory (dev / tests)."""

    outbox: list[SentMail] = field(default_factory=list)

    async def send(self, to: str, subject: str, html: str) -> None:
        self.outbox.append(SentMail(to=to, subject=subject, html=html))
        log.info("mock_mail_sent to=%s subject=%s", to, subject)


class RelayMailer:
    """Posts mail to the internal relay worker.

    The worker takes ``{to, from: {email, name}, subject, html}`` and checks the
    ``x-internal-key`` header.
    """

    def __init__(
        self,
        *,
        url: str,
        secret: str,
        from_email: str,
        from_name: str = "Plex Courses",
        timeout_seconds: int = 20,
    ) -> None:
        self._url = url
        self._secret = secret
        self._from_email = from_email
        self._from_name = from_name
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    def _headers(self) -> dict[str, str]:
        return {
            "x-internal-key": self._secret,
            "Content-Type": "application/json",
        }

    async def send(self, to: str, subject: str, html: str) -> None:
        if not to or not subject or not html:
            raise MailerError("missing required fields")
        body: dict[str, Any] = {
            "to": to,
            "from": {"email": self._from_email, "name": self._from_name},
            "subject": subject,
            "html": html,
        }
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.post(self._url, json=body, headers=self._headers()) as resp:
                if resp.status >= 400:
                    txt = await resp.text()
                    raise MailerError(f"mail relay failed: HTTP {resp.status}: {txt}")


class Notifier:
    """Best-effort mail: a failed send is logged and never raised."""

    def __init__(self, mailer, *, enabled: bool = True) -> None:
        self._mailer = mailer
        self._enabled = enabled

    async def send_safe(self, to: str | None, subject: str, html: str) -> bool:
        if not self._enabled:
            return False
        if not to or "@" not in to:
            log.info("notify_skipped_no_email subject=%s", subject)
            return False
        try:
            await self._mailer.send(to, subject, html)
            return True
        except Exception:
            log.exception("notify_failed to=%s subject=%s", to, subject)
            return False


def build_mailer(settings):
    if settings.mail_transport == "relay":
        if not settings.mail_relay_url or not settings.mail_relay_secret or not settings.mail_from_email:
            raise RuntimeError("MAIL_RELAY_URL, MAIL_RELAY_SECRET and MAIL_FROM_EMAIL are required for MAIL_TRANSPORT=relay")
        return RelayMailer(
            url=settings.mail_relay_url,
            secret=settings.mail_relay_secret,
            from_email=settings.mail_from_email,
            from_name=settings.mail_from_name,
        )
    if settings.mail_transport != "mock":
        raise RuntimeError(f"Unsupported MAIL_TRANSPORT={settings.mail_transport}")
    return MockMailer()
