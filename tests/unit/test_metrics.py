"""Unit tests for session and HTTP metrics."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from speech_services.monitoring.metrics import get_metrics
from speech_services.streaming.recognition import RecognitionProtocol
from speech_services.streaming.session import StreamingSession
from tests.unit.mocks.mock_transport import MockConnector, MockTransport


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestSessionMetrics:
    @pytest.mark.asyncio
    async def test_completed_session_counted(self, transport: MockTransport) -> None:
        before = _sample("speech_sessions_total", service="iat", outcome="completed")
        frames_before = _sample("speech_frames_sent_total", service="iat")

        session = StreamingSession(
            RecognitionProtocol("app"), "wss://h/v2/iat", MockConnector(transport)
        )
        await session.open()
        assert _sample("speech_active_sessions", service="iat") >= 1
        session.send(b"x")
        session.end()
        transport.push_message({"code": 0, "data": {"status": 2}})
        await session.wait_closed()

        assert _sample("speech_sessions_total", service="iat", outcome="completed") == before + 1
        assert _sample("speech_frames_sent_total", service="iat") == frames_before + 2

    def test_exposition_lists_metrics(self) -> None:
        output = get_metrics().decode()
        assert "speech_sessions_total" in output
        assert "speech_rate_limit_wait_seconds" in output
