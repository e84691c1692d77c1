"""Streaming session state machine.

Manages one logical conversation bound to one socket:
  Connecting → Open → Closed
  Connecting → Closed           (handshake failure)

Outgoing frames follow FrameState FIRST → CONTINUE → LAST and are queued to
a writer task in call order; ``send`` never suspends. A reader task decodes
incoming frames in arrival order, hands them to the injected protocol and
emits the normalized result. The session closes itself (code 1000) when the
vendor reports terminal status.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

import aiohttp

from speech_services.monitoring.metrics import (
    active_sessions,
    frames_sent_total,
    messages_received_total,
    session_duration_seconds,
    sessions_total,
)
from speech_services.streaming.base import (
    CallerMisuseError,
    ClosedEvent,
    ErrorEvent,
    FrameState,
    FrameStateError,
    MalformedMessageError,
    MessageEvent,
    NormalizedMessage,
    OpenEvent,
    SessionClosedError,
    SessionErrorKind,
    SessionEvent,
    SessionState,
    TransportError,
)
from speech_services.streaming.transport import (
    INVALID_PAYLOAD,
    NORMAL_CLOSURE,
    FrameKind,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from speech_services.streaming.base import StreamProtocol
    from speech_services.streaming.transport import Connector, Transport

logger = logging.getLogger(__name__)

# 40 ms of 16 kHz 16-bit mono PCM
DEFAULT_CHUNK_SIZE = 1280

# Errors a socket may raise mid-conversation
_TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, TimeoutError)


class StreamingSession:
    """One streaming conversation with a remote recognizer or evaluator.

    The vendor specifics (envelopes, response decoding) come from the
    injected ``protocol``; the state machine itself is vendor-agnostic.
    Events are consumed with ``async for event in session.events()``.
    """

    def __init__(
        self,
        protocol: StreamProtocol,
        url: str | Callable[[], str],
        connector: Connector,
        session_id: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.protocol = protocol
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.chunk_size = chunk_size
        self.state = SessionState.CONNECTING
        self.frame_state = FrameState.FIRST
        self.sid: str | None = None
        self._url = url
        self._connector = connector
        self._transport: Transport | None = None
        self._opening = True
        self._closing = False
        self._opened_at: float | None = None
        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._outgoing: asyncio.Queue[str | None] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._terminal: SessionEvent | None = None
        self._terminated = asyncio.Event()

    @property
    def service(self) -> str:
        return self.protocol.service

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    @property
    def terminal_event(self) -> SessionEvent | None:
        return self._terminal

    # --- Lifecycle ---

    async def open(self) -> None:
        """Connect and wait for the handshake.

        Raises TransportError when the handshake fails; the session is then
        Closed and its only event is an ErrorEvent. Raises SessionClosedError
        when ``close()`` was called before the handshake completed.
        """
        if self.state is not SessionState.CONNECTING or self._transport is not None:
            raise CallerMisuseError(f"session {self.session_id} was already opened")

        url = self._url() if callable(self._url) else self._url
        try:
            self._transport = await self._connector(url)
        except _TRANSPORT_ERRORS as exc:
            logger.warning(
                "Session %s (%s) handshake failed: %s",
                self.session_id,
                self.service,
                exc,
                extra={"session_id": self.session_id, "service": self.service},
            )
            self._closing = True
            self._finish(ErrorEvent(SessionErrorKind.TRANSPORT, exc), outcome="error")
            raise TransportError(f"connect failed: {exc}") from exc

        if self._closing:
            # close() won the race with the handshake
            logger.info(
                "Session %s (%s) closed during handshake",
                self.session_id,
                self.service,
                extra={"session_id": self.session_id, "service": self.service},
            )
            try:
                await self._transport.close(NORMAL_CLOSURE)
            except _TRANSPORT_ERRORS as exc:
                logger.debug("Session %s close failed: %s", self.session_id, exc)
            raise SessionClosedError(f"session {self.session_id} was closed while connecting")

        self.state = SessionState.OPEN
        self._opened_at = time.monotonic()
        active_sessions.labels(service=self.service).inc()
        self._emit(OpenEvent())
        self._reader_task = asyncio.create_task(self._read_loop())
        self._writer_task = asyncio.create_task(self._write_loop())
        logger.info(
            "Session %s (%s) open",
            self.session_id,
            self.service,
            extra={"session_id": self.session_id, "service": self.service},
        )

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "closed by caller") -> None:
        """Caller-initiated close; valid in any state, idempotent."""
        if self._closing:
            return
        if self._transport is None:
            self._closing = True
            self._finish(ClosedEvent(code=code, reason=reason), outcome="closed")
            return
        await self._terminate(ClosedEvent(code=code, reason=reason), "closed", code)

    async def wait_closed(self) -> SessionEvent:
        """Wait for the terminal event (ClosedEvent or ErrorEvent) and return it."""
        await self._terminated.wait()
        assert self._terminal is not None
        return self._terminal

    async def __aenter__(self) -> StreamingSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Outgoing ---

    def send(self, payload: bytes) -> None:
        """Queue one audio chunk. Does not suspend.

        Raises SessionClosedError when not open and FrameStateError after
        the last frame.
        """
        self._check_sendable()
        frames = self.protocol.build_frames(self.frame_state, payload, opening=self._opening)
        self._enqueue(frames)
        if self.frame_state is FrameState.FIRST:
            self.frame_state = FrameState.CONTINUE

    def end(self, payload: bytes = b"") -> None:
        """Send the LAST frame. At most once per session."""
        self._check_sendable()
        if payload and not self.protocol.last_frame_carries_audio:
            raise CallerMisuseError(f"{self.service} streams end with an empty frame")
        self.frame_state = FrameState.LAST
        frames = self.protocol.build_frames(FrameState.LAST, payload, opening=self._opening)
        self._enqueue(frames)

    def _check_sendable(self) -> None:
        if self.state is not SessionState.OPEN:
            raise SessionClosedError(f"session {self.session_id} is {self.state.value}")
        if self.frame_state is FrameState.LAST:
            raise FrameStateError(f"session {self.session_id} already sent its last frame")

    def _enqueue(self, frames: list[dict[str, Any]]) -> None:
        self._opening = False
        for frame in frames:
            self._outgoing.put_nowait(json.dumps(frame, ensure_ascii=False))
        frames_sent_total.labels(service=self.service).inc(len(frames))

    async def _write_loop(self) -> None:
        assert self._transport is not None
        while True:
            data = await self._outgoing.get()
            if data is None:
                return
            try:
                await self._transport.send_str(data)
            except _TRANSPORT_ERRORS as exc:
                logger.warning("Session %s send failed: %s", self.session_id, exc)
                await self._terminate(
                    ErrorEvent(SessionErrorKind.TRANSPORT, exc), "error", NORMAL_CLOSURE
                )
                return

    # --- Incoming ---

    async def _read_loop(self) -> None:
        assert self._transport is not None
        while True:
            try:
                frame = await self._transport.receive()
            except _TRANSPORT_ERRORS as exc:
                await self._terminate(
                    ErrorEvent(SessionErrorKind.TRANSPORT, exc), "error", NORMAL_CLOSURE
                )
                return

            if frame.kind is FrameKind.CLOSED:
                logger.info(
                    "Session %s closed by peer (code=%s)",
                    self.session_id,
                    frame.close_code,
                    extra={"session_id": self.session_id, "sid": self.sid},
                )
                await self._terminate(ClosedEvent(code=frame.close_code), "closed", NORMAL_CLOSURE)
                return

            if frame.kind is FrameKind.ERROR:
                await self._terminate(
                    ErrorEvent(SessionErrorKind.TRANSPORT, frame.error), "error", NORMAL_CLOSURE
                )
                return

            try:
                message = self._decode(frame.data)
            except MalformedMessageError as exc:
                logger.error(
                    "Session %s received undecodable message: %s",
                    self.session_id,
                    exc,
                    extra={"session_id": self.session_id, "sid": self.sid},
                )
                await self._terminate(
                    ErrorEvent(SessionErrorKind.MALFORMED, exc), "error", INVALID_PAYLOAD
                )
                return

            self._handle_message(message)

            if message.is_terminal:
                logger.info(
                    "[completed] session %s sid=%s",
                    self.session_id,
                    self.sid,
                    extra={"session_id": self.session_id, "sid": self.sid},
                )
                # The vendor closes with a delay (iat at once, ise ~5s); close on our end
                await self._terminate(
                    ClosedEvent(code=NORMAL_CLOSURE, reason="completed"),
                    "completed",
                    NORMAL_CLOSURE,
                )
                return

    def _decode(self, data: str) -> NormalizedMessage:
        try:
            parsed = json.loads(data)
        except ValueError as exc:
            raise MalformedMessageError(f"invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise MalformedMessageError(f"expected a JSON object, got {type(parsed).__name__}")
        try:
            return self.protocol.translate(parsed)
        except MalformedMessageError:
            raise
        except Exception as exc:
            # A message the protocol cannot translate still ends the session
            raise MalformedMessageError(f"untranslatable message: {exc!r}") from exc

    def _handle_message(self, message: NormalizedMessage) -> None:
        if message.sid:
            self.sid = message.sid
        if message.is_error:
            messages_received_total.labels(service=self.service, result="error").inc()
            logger.warning(
                "Session %s vendor error %d: %s",
                self.session_id,
                message.code,
                message.message,
                extra={"session_id": self.session_id, "sid": self.sid, "code": message.code},
            )
        else:
            messages_received_total.labels(service=self.service, result="ok").inc()
        self._emit(MessageEvent(message))

    # --- Events ---

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Yield events in order; stops after the terminal event."""
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, (ClosedEvent, ErrorEvent)):
                return

    def _emit(self, event: SessionEvent) -> None:
        if self._terminal is None:
            self._events.put_nowait(event)

    async def _terminate(self, event: SessionEvent, outcome: str, close_code: int) -> None:
        """Move to Closed exactly once: stop tasks, close the socket, emit ``event``."""
        if self._closing:
            return
        self._closing = True
        self.state = SessionState.CLOSED

        self._outgoing.put_nowait(None)
        current = asyncio.current_task()
        others = [
            task
            for task in (self._reader_task, self._writer_task)
            if task is not None and task is not current and not task.done()
        ]
        for task in others:
            task.cancel()
        if others:
            await asyncio.gather(*others, return_exceptions=True)

        if self._transport is not None and not self._transport.closed:
            try:
                await self._transport.close(close_code)
            except _TRANSPORT_ERRORS as exc:
                logger.debug("Session %s close failed: %s", self.session_id, exc)

        self._finish(event, outcome)

    def _finish(self, event: SessionEvent, outcome: str) -> None:
        if self._terminal is not None:
            return
        self.state = SessionState.CLOSED
        self._terminal = event
        self._events.put_nowait(event)
        self._terminated.set()
        sessions_total.labels(service=self.service, outcome=outcome).inc()
        if self._opened_at is not None:
            active_sessions.labels(service=self.service).dec()
            session_duration_seconds.labels(service=self.service).observe(
                time.monotonic() - self._opened_at
            )
