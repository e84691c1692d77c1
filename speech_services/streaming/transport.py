"""WebSocket transport for streaming sessions.

The session only needs three things from a socket: send a text frame,
receive the next frame, close with a code. AiohttpTransport provides them
on top of aiohttp; tests substitute a scripted fake.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import aiohttp

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
INVALID_PAYLOAD = 1007


class FrameKind(enum.Enum):
    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TransportFrame:
    """One item read from the socket."""

    kind: FrameKind
    data: str = ""
    close_code: int | None = None
    error: BaseException | None = None


@runtime_checkable
class Transport(Protocol):
    async def send_str(self, data: str) -> None: ...

    async def receive(self) -> TransportFrame: ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...

    @property
    def closed(self) -> bool: ...


Connector = Callable[[str], Awaitable[Transport]]


class AiohttpTransport:
    """Transport over an aiohttp client WebSocket.

    Owns the ClientSession when it created one itself and closes it
    together with the socket.
    """

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._ws = ws
        self._owned_session = session

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send_str(self, data: str) -> None:
        await self._ws.send_str(data)

    async def receive(self) -> TransportFrame:
        msg = await self._ws.receive()
        if msg.type == aiohttp.WSMsgType.TEXT:
            return TransportFrame(FrameKind.TEXT, data=msg.data)
        if msg.type == aiohttp.WSMsgType.BINARY:
            # xfyun only sends text; binary JSON is decoded the same way
            return TransportFrame(FrameKind.TEXT, data=msg.data.decode("utf-8", errors="replace"))
        if msg.type == aiohttp.WSMsgType.ERROR:
            return TransportFrame(FrameKind.ERROR, error=self._ws.exception())
        # CLOSE / CLOSING / CLOSED
        await self._release()
        return TransportFrame(FrameKind.CLOSED, close_code=self._ws.close_code)

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if not self._ws.closed:
            await self._ws.close(code=code, message=reason.encode("utf-8"))
        await self._release()

    async def _release(self) -> None:
        if self._owned_session is not None:
            await self._owned_session.close()
            self._owned_session = None


class AiohttpConnector:
    """Opens sockets with aiohttp.

    Pass a shared ClientSession to reuse its connection pool; without one,
    every transport gets (and later closes) its own session.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 10.0,
        heartbeat: float | None = None,
    ) -> None:
        self._session = session
        self._timeout = timeout
        self._heartbeat = heartbeat

    async def __call__(self, url: str) -> Transport:
        owned: aiohttp.ClientSession | None = None
        session = self._session
        if session is None:
            owned = session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self._timeout),
            )
        try:
            ws = await session.ws_connect(url, heartbeat=self._heartbeat)
        except BaseException:
            if owned is not None:
                await owned.close()
            raise
        logger.debug("Socket connected to %s", url)
        return AiohttpTransport(ws, owned)
