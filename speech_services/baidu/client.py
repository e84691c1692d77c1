"""Baidu AI HTTP client with token refresh and per-endpoint rate limiting.

Every call goes through the same three steps: obtain a bearer token,
wait for the endpoint's rate limiter, POST. An expired-token reply is
answered with one forced refresh and one retry.

Network errors are not wrapped: aiohttp exceptions reach the caller as-is.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal
from urllib.parse import urlsplit

import aiohttp

from speech_services.baidu.credentials import CredentialCache
from speech_services.baidu.errors import BaiduAPIError, BaiduCredentialError
from speech_services.baidu.rate_limiter import get_rate_limiter
from speech_services.config import RateLimitSettings
from speech_services.monitoring.metrics import http_requests_total

if TYPE_CHECKING:
    from collections.abc import Callable

    from speech_services.baidu.rate_limiter import RateLimiter
    from speech_services.config import BaiduSettings

logger = logging.getLogger(__name__)

BodyType = Literal["json", "form"]

# Token expired / invalid / insufficient (speech APIs use 3302, AI platform 110/111)
EXPIRED_TOKEN_CODES = frozenset({3302, 110, 111})

# Reported for replies whose error code is not a number
UNKNOWN_ERROR_CODE = -1

_MAX_ATTEMPTS = 2

# Hosts that take the token as a query parameter
_QUERY_AUTH_HOST = "aip.baidubce.com"


@dataclass(frozen=True, slots=True)
class BaiduService:
    """One baidu endpoint; ``quota`` names its RateLimitSettings field."""

    name: str
    url: str
    quota: str

    @property
    def host(self) -> str:
        return urlsplit(self.url).hostname or ""


@dataclass(frozen=True, slots=True)
class BaiduResponse:
    status: int
    content_type: str
    body: bytes

    @property
    def is_audio(self) -> bool:
        return self.content_type.startswith("audio/")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> dict[str, Any]:
        try:
            data = json.loads(self.body)
        except ValueError as exc:
            raise BaiduAPIError(self.status, self.text[:200]) from exc
        if not isinstance(data, dict):
            raise BaiduAPIError(self.status, self.text[:200])
        return data

    @property
    def error_code(self) -> int | None:
        """Vendor error code of a JSON reply, None on success or audio."""
        if self.is_audio:
            return None
        try:
            data = self.json()
        except BaiduAPIError:
            return None
        code = data.get("err_no") or data.get("error_code")
        if not code:
            return None
        try:
            return int(code)
        except (TypeError, ValueError):
            logger.warning("baidu reply carries a non-numeric error code: %r", code)
            return UNKNOWN_ERROR_CODE

    @property
    def error_message(self) -> str:
        if self.is_audio:
            return ""
        try:
            data = self.json()
        except BaiduAPIError:
            return self.text[:200]
        return str(data.get("err_msg") or data.get("error_msg") or "")


class BaiduClient:
    """HTTP client for baidu speech and NLP APIs.

    Features:
      - OAuth bearer token cached until 60s before expiry
      - Rate limiter per endpoint, shared process-wide
      - One forced token refresh + retry on expired-token replies
    """

    def __init__(
        self,
        settings: BaiduSettings,
        rate_limits: RateLimitSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._rate_limits = rate_limits or RateLimitSettings()
        self._timeout = aiohttp.ClientTimeout(total=settings.timeout)
        self._session: aiohttp.ClientSession | None = None
        self.credentials = CredentialCache(settings, clock=clock)

    async def open(self) -> None:
        """Open the HTTP session."""
        self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    def limiter(self, service: BaiduService) -> RateLimiter:
        rate = getattr(self._rate_limits, service.quota)
        return get_rate_limiter(service.name, rate)

    async def send(
        self,
        service: BaiduService,
        body: dict[str, Any],
        body_type: BodyType = "json",
    ) -> BaiduResponse:
        """POST ``body`` to ``service`` and return the raw response.

        Raises BaiduCredentialError when the token is rejected twice and
        BaiduAPIError for HTTP errors without a vendor payload.
        """
        if self._session is None:
            raise RuntimeError("BaiduClient not opened, call open() first")

        limiter = self.limiter(service)
        response: BaiduResponse | None = None
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            token = await self.credentials.get(self._session, force=attempt > 1)
            async with limiter.slot():
                response = await self._do_request(service, body, body_type, token)

            code = response.error_code
            if code not in EXPIRED_TOKEN_CODES:
                break
            if attempt < _MAX_ATTEMPTS:
                logger.warning(
                    "baidu %s token rejected (%d), refreshing and retrying",
                    service.name,
                    code,
                    extra={"service": service.name, "code": code, "attempt": attempt},
                )
                continue
            raise BaiduCredentialError(code, response.error_message or "access token rejected")

        assert response is not None
        if response.status >= 400 and response.error_code is None and not response.is_audio:
            raise BaiduAPIError(response.status, response.text[:200])
        return response

    async def _do_request(
        self,
        service: BaiduService,
        body: dict[str, Any],
        body_type: BodyType,
        token: str,
    ) -> BaiduResponse:
        """Execute a single POST with the token placed where the host expects it."""
        assert self._session is not None
        params: dict[str, str] | None = None
        payload = dict(body)
        if service.host == _QUERY_AUTH_HOST:
            params = {"access_token": token, "charset": "UTF-8"}
        elif service.host.endswith("baidu.com"):
            payload["cuid"] = self._settings.app_id
            payload["tok" if body_type == "form" else "token"] = token

        if body_type == "form":
            request = self._session.post(service.url, params=params, data=payload)
        else:
            request = self._session.post(service.url, params=params, json=payload)

        start = time.monotonic()
        async with request as resp:
            raw = await resp.read()
            http_requests_total.labels(service=service.name, status=str(resp.status)).inc()
            logger.debug(
                "baidu %s -> %d (%s, %d bytes)",
                service.name,
                resp.status,
                resp.content_type,
                len(raw),
                extra={
                    "service": service.name,
                    "duration_ms": int((time.monotonic() - start) * 1000),
                },
            )
            return BaiduResponse(status=resp.status, content_type=resp.content_type, body=raw)
