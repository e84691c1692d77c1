"""Bearer credential cache for baidu APIs.

Tokens come from the OAuth client-credentials endpoint and are reused
until 60 seconds before their stated expiry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from speech_services.baidu.errors import BaiduCredentialError
from speech_services.monitoring.metrics import credential_refresh_total

if TYPE_CHECKING:
    from collections.abc import Callable

    import aiohttp

    from speech_services.config import BaiduSettings

logger = logging.getLogger(__name__)

REFRESH_MARGIN = 60.0


@dataclass(frozen=True, slots=True)
class AccessToken:
    value: str
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at - REFRESH_MARGIN


class CredentialCache:
    """One cached token per client id; concurrent callers share one fetch."""

    def __init__(
        self,
        settings: BaiduSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()

    @property
    def token(self) -> AccessToken | None:
        return self._token

    async def get(self, session: aiohttp.ClientSession, force: bool = False) -> str:
        """Return a usable token, fetching a new one when stale or ``force``d."""
        stale = self._token
        async with self._lock:
            token = self._token
            fresh = token is not None and token.is_fresh(self._clock())
            # a forced refresh is satisfied by one another caller made meanwhile
            if fresh and (not force or token is not stale):
                return token.value

            reason = "forced" if force else ("expired" if token else "initial")
            self._token = await self._fetch(session)
            credential_refresh_total.labels(service="baidu", reason=reason).inc()
            logger.info("baidu access token refreshed (%s)", reason)
            return self._token.value

    async def _fetch(self, session: aiohttp.ClientSession) -> AccessToken:
        params = {
            "grant_type": "client_credentials",
            "client_id": self._settings.key,
            "client_secret": self._settings.secret,
        }
        async with session.get(self._settings.token_url, params=params) as resp:
            data: dict[str, Any] = await resp.json(content_type=None)

        if "access_token" not in data:
            message = data.get("error_description") or data.get("error") or str(data)
            logger.critical("baidu token request rejected, check BAIDU_KEY/BAIDU_SECRET")
            raise BaiduCredentialError(resp.status, str(message))

        expires_in = float(data.get("expires_in", 0))
        return AccessToken(value=data["access_token"], expires_at=self._clock() + expires_in)
