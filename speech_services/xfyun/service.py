"""xfyun service endpoint: signed socket URLs and signed HTTP POST.

One XFYunService per xfyun application (iat, ise, tts, ots). Credentials
come from the settings object passed in, never from module state.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from aiobreaker import CircuitBreaker, CircuitBreakerError

from speech_services.monitoring.metrics import http_requests_total
from speech_services.xfyun.signer import body_digest, sign_request, signed_socket_url

if TYPE_CHECKING:
    from collections.abc import Callable

    import aiohttp

    from speech_services.config import XFYunAppSettings

logger = logging.getLogger(__name__)

# Separate circuit breaker for xfyun HTTP calls
_xfyun_breaker = CircuitBreaker(fail_max=5, timeout_duration=30)


class XFYunAPIError(Exception):
    """Raised when an xfyun call returns a non-zero result code."""

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"xfyun {code}: {message}")


class XFYunService:
    """One xfyun endpoint bound to one application's credentials."""

    def __init__(
        self,
        app: XFYunAppSettings,
        url: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.app = app
        self.url = url or app.url
        self._clock = clock
        parts = urlsplit(self.url)
        self.host = parts.netloc
        self.path = parts.path

    def socket_url(self) -> str:
        """Signed URL for opening a socket now."""
        return signed_socket_url(
            self.url,
            api_key=self.app.api_key,
            secret=self.app.api_secret,
            timestamp=self._clock(),
        )

    def signed_headers(self, payload: bytes) -> dict[str, str]:
        """Date/Digest/Authorization headers for a POST of ``payload``."""
        digest = body_digest(payload)
        material = sign_request(
            host=self.host,
            path=self.path,
            method="POST",
            api_key=self.app.api_key,
            secret=self.app.api_secret,
            timestamp=self._clock(),
            digest=digest,
        )
        return {
            "Date": material.date,
            "Digest": digest,
            "Authorization": material.authorization,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def post(self, session: aiohttp.ClientSession, body: dict[str, Any]) -> dict[str, Any]:
        """Signed POST with circuit breaker. Returns the decoded JSON body.

        ``common.app_id`` is filled in; the caller supplies business/data.
        Non-zero ``code`` in the response raises XFYunAPIError.
        """
        body = {**body, "common": {"app_id": self.app.app_id}}
        try:
            result: dict[str, Any] = await _xfyun_breaker.call_async(
                self._do_request, session, body
            )
        except CircuitBreakerError as err:
            logger.error("Circuit breaker OPEN for xfyun %s", self.path)
            raise XFYunAPIError(503, "xfyun service temporarily unavailable") from err

        code = int(result.get("code", 0))
        if code != 0:
            raise XFYunAPIError(code, str(result.get("message", "")))
        return result

    async def _do_request(
        self, session: aiohttp.ClientSession, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Execute a single signed POST."""
        payload = json.dumps(body, ensure_ascii=False).encode("utf-8")
        headers = self.signed_headers(payload)

        async with session.post(self.url, data=payload, headers=headers) as resp:
            http_requests_total.labels(service=self.host, status=str(resp.status)).inc()
            if resp.status == 401:
                logger.critical("xfyun authentication failed, check api_key/api_secret")

            text = await resp.text()
            try:
                data: dict[str, Any] = json.loads(text)
            except ValueError as exc:
                raise XFYunAPIError(resp.status, text[:200]) from exc
            if resp.status >= 400 and "code" not in data:
                raise XFYunAPIError(resp.status, text[:200])
            return data
