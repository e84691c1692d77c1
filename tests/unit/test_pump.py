"""Unit tests for driving sessions from an audio source."""

from __future__ import annotations

import base64
from collections.abc import AsyncIterator
from typing import Any

import pytest

from speech_services.scoring.engine import Granularity
from speech_services.streaming.base import MalformedMessageError, NormalizedMessage
from speech_services.streaming.evaluation import EvaluationOptions, EvaluationProtocol
from speech_services.streaming.pump import (
    collect,
    evaluation_result,
    final_text,
    pump,
)
from speech_services.streaming.recognition import RecognitionProtocol
from speech_services.streaming.session import StreamingSession
from tests.unit.mocks.mock_transport import MockConnector, MockTransport


def _audio(frame: dict[str, Any]) -> bytes:
    data = frame["data"]
    return base64.b64decode(data.get("audio", data.get("data", "")))


async def _blocks(*blocks: bytes) -> AsyncIterator[bytes]:
    for block in blocks:
        yield block


async def _recognition(transport: MockTransport) -> StreamingSession:
    session = StreamingSession(
        RecognitionProtocol("app"), "wss://h/v2/iat", MockConnector(transport)
    )
    await session.open()
    return session


class TestPump:
    @pytest.mark.asyncio
    async def test_recognition_ends_with_empty_frame(self, transport: MockTransport) -> None:
        session = await _recognition(transport)

        sent = await pump(session, b"x" * 3000, chunk_size=1280)

        assert sent == 3
        frames = await transport.wait_sent(4)
        assert [len(_audio(f)) for f in frames] == [1280, 1280, 440, 0]
        assert [f["data"]["status"] for f in frames] == [0, 1, 1, 2]
        await session.close()

    @pytest.mark.asyncio
    async def test_evaluation_last_chunk_is_last_frame(self, transport: MockTransport) -> None:
        protocol = EvaluationProtocol("app", EvaluationOptions("一", Granularity.SYLLABLE))
        session = StreamingSession(protocol, "wss://h/v2/open-ise", MockConnector(transport))
        await session.open()

        sent = await pump(session, b"y" * 2560, chunk_size=1280)

        assert sent == 2
        ssb, first, last = await transport.wait_sent(3)
        assert ssb["business"]["cmd"] == "ssb"
        assert first["business"]["aus"] == 1
        assert last["business"]["aus"] == 4
        assert len(_audio(last)) == 1280
        await session.close()

    @pytest.mark.asyncio
    async def test_async_source_is_rechunked(self, transport: MockTransport) -> None:
        session = await _recognition(transport)

        sent = await pump(session, _blocks(b"a" * 700, b"b" * 700, b"c" * 100), chunk_size=1000)

        assert sent == 2
        frames = await transport.wait_sent(3)
        assert _audio(frames[0]) == b"a" * 700 + b"b" * 300
        assert _audio(frames[1]) == b"b" * 400 + b"c" * 100
        await session.close()

    @pytest.mark.asyncio
    async def test_defaults_to_session_chunk_size(self, transport: MockTransport) -> None:
        session = StreamingSession(
            RecognitionProtocol("app"), "wss://h/v2/iat", MockConnector(transport), chunk_size=640
        )
        await session.open()

        sent = await pump(session, b"x" * 1500)

        assert sent == 3
        frames = await transport.wait_sent(4)
        assert [len(_audio(f)) for f in frames] == [640, 640, 220, 0]
        await session.close()

    @pytest.mark.asyncio
    async def test_stops_when_session_closes(self, transport: MockTransport) -> None:
        session = await _recognition(transport)
        await session.close()

        assert await pump(session, b"z" * 5000) == 0
        assert transport.sent == []


class TestCollect:
    @pytest.mark.asyncio
    async def test_messages_until_terminal(self, transport: MockTransport) -> None:
        session = await _recognition(transport)
        for text, status in (("你好", 1), ("世界", 2)):
            transport.push_message(
                {
                    "code": 0,
                    "sid": "iat1",
                    "data": {
                        "status": status,
                        "result": {"pgs": "apd", "ws": [{"cw": [{"w": text}]}]},
                    },
                }
            )

        messages = await collect(session)

        assert len(messages) == 2
        assert final_text(messages) == "你好世界"
        assert evaluation_result(messages) is None

    @pytest.mark.asyncio
    async def test_error_event_raises(self, transport: MockTransport) -> None:
        session = await _recognition(transport)
        transport.push_message("{{")

        with pytest.raises(MalformedMessageError):
            await collect(session)

    def test_final_text_without_results(self) -> None:
        assert final_text([NormalizedMessage(code=0, status=1)]) == ""
