from __future__ import annotations

import logging
from dataclasses import dataclass, field

import aiohttp

log = logging.getLogger(__name__)


class IdentityError(RuntimeError):
    pass


@dataclass
class MockIdentityProvider:
    """Records deleted uids; ``fail_with`` makes every call raise (tests)."""

    deleted: list[str] = field(default_factory=list)
    fail_with: Exception | None = None

    async def delete_identity(self, uid: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.deleted.append(uid)
        log.info("mock_identity_deleted uid=%s", uid)


class HttpIdentityProvider:
    """Deletes auth accounts through the identity service admin API.

    ``DELETE {base_url}/users/{uid}`` with a bearer key; 404 counts as done.
    """

    def __init__(self, *, base_url: str, api_key: str, timeout_seconds: int = 20) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def delete_identity(self, uid: str) -> None:
        url = f"{self._base_url}/users/{uid}"
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.delete(url, headers=self._headers()) as resp:
                if resp.status == 404:
                    return
                if resp.status >= 400:
                    txt = await resp.text()
                    raise IdentityError(f"identity delete failed: HTTP {resp.status}: {txt}")


def build_identity_provider(settings):
    if settings.identity_provider == "http":
        if not settings.identity_api_url or not settings.identity_api_key:
            raise RuntimeError("IDENTITY_API_URL and IDENTITY_API_KEY are required for IDENTITY_PROVIDER=http")
        return HttpIdentityProvider(base_url=settings.identity_api_url, api_key=settings.identity_api_key)
    if settings.identity_provider != "mock":
        raise RuntimeError(f"Unsupported IDENTITY_PROVIDER={settings.identity_provider}")
    return MockIdentityProvider()
