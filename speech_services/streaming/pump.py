"""Helpers that drive a session from an audio source and await its outcome."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable
from typing import TYPE_CHECKING

from speech_services.scoring.engine import EvaluationResult
from speech_services.streaming.base import (
    ClosedEvent,
    ErrorEvent,
    MessageEvent,
    NormalizedMessage,
    RecognitionResult,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from speech_services.streaming.session import StreamingSession

logger = logging.getLogger(__name__)


AudioSource = bytes | bytearray | memoryview | AsyncIterable[bytes]


async def _chunks(source: AudioSource, chunk_size: int) -> AsyncIterator[bytes]:
    """Re-chunk ``source`` into ``chunk_size`` pieces; the tail may be short."""
    if isinstance(source, AsyncIterable):
        pending = b""
        async for block in source:
            pending += block
            while len(pending) >= chunk_size:
                yield pending[:chunk_size]
                pending = pending[chunk_size:]
        if pending:
            yield pending
        return

    data = bytes(source)
    for offset in range(0, len(data), chunk_size):
        yield data[offset : offset + chunk_size]


async def pump(
    session: StreamingSession,
    source: AudioSource,
    chunk_size: int | None = None,
    interval: float = 0.0,
) -> int:
    """Send ``source`` through an open session, then end the stream.

    ``chunk_size`` defaults to the session's own. ``interval`` paces chunks
    (0.04 approximates real time for 1280-byte 16 kHz frames). Streams whose
    last frame carries audio end on the final chunk; the others end with an
    empty frame. Stops early if the session closes under it.
    Returns the number of chunks sent.
    """
    carries = session.protocol.last_frame_carries_audio
    sent = 0
    held: bytes | None = None

    async for chunk in _chunks(source, chunk_size or session.chunk_size):
        if not session.is_open:
            logger.info("Session %s closed while pumping audio", session.session_id)
            return sent
        if carries:
            # hold one chunk back so the final one can go out as LAST
            if held is not None:
                session.send(held)
                sent += 1
            held = chunk
        else:
            session.send(chunk)
            sent += 1
        if interval:
            await asyncio.sleep(interval)

    if not session.is_open:
        return sent
    if carries:
        session.end(held or b"")
        sent += 1 if held is not None else 0
    else:
        session.end()
    return sent


async def collect(session: StreamingSession) -> list[NormalizedMessage]:
    """Consume the session's events; returns every message once it closes.

    Raises the session's error when it ends with an ErrorEvent.
    """
    messages: list[NormalizedMessage] = []
    async for event in session.events():
        if isinstance(event, MessageEvent):
            messages.append(event.message)
        elif isinstance(event, ErrorEvent):
            raise event.as_exception()
        elif isinstance(event, ClosedEvent):
            break
    return messages


def final_text(messages: Iterable[NormalizedMessage]) -> str:
    """Caller-visible recognition text after the last applied result."""
    text = ""
    for message in messages:
        payload = message.payload
        if isinstance(payload, RecognitionResult):
            text = payload.visible_text
    return text


def evaluation_result(messages: Iterable[NormalizedMessage]) -> EvaluationResult | None:
    """The scored result of an evaluation session, if one arrived."""
    for message in messages:
        if isinstance(message.payload, EvaluationResult):
            return message.payload
    return None
