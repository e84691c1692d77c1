"""xfyun online text-to-speech over a signed socket.

One request frame carries the whole text; the reply is a run of audio
frames ending with status 2.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from speech_services.monitoring.metrics import http_requests_total
from speech_services.streaming.base import (
    TERMINAL_STATUS,
    MalformedMessageError,
    TransportError,
)
from speech_services.streaming.recognition import AUDIO_FORMAT
from speech_services.streaming.transport import AiohttpConnector, FrameKind
from speech_services.tts.base import AudioFormat, Gender
from speech_services.xfyun.service import XFYunAPIError, XFYunService

if TYPE_CHECKING:
    from speech_services.config import XFYunTTSSettings
    from speech_services.streaming.transport import Connector, Transport

logger = logging.getLogger(__name__)

_DEFAULT_VOICES = {Gender.FEMALE: "xiaoyan"}
_FALLBACK_VOICE = "aisjiuxu"
_AUE = {AudioFormat.WAV: "raw", AudioFormat.MP3: "lame"}


@dataclass(frozen=True, slots=True)
class XFYunTTSOptions:
    """``speed`` is 0-10; ``vcn`` overrides the gender's default voice."""

    gender: Gender = Gender.FEMALE
    vcn: str | None = None
    speed: float = 5
    volume: int = 50
    fmt: AudioFormat = AudioFormat.MP3

    @property
    def voice(self) -> str:
        return self.vcn or _DEFAULT_VOICES.get(self.gender, _FALLBACK_VOICE)

    def business(self) -> dict[str, Any]:
        return {
            "ent": "intp65",
            "aue": _AUE[self.fmt],
            "auf": AUDIO_FORMAT,
            "vcn": self.voice,
            "speed": int(self.speed * 10),
            "volume": self.volume,
            "tte": "UTF8",
        }


class XFYunTTSEngine:
    """xfyun TTS; one socket per synthesize call."""

    def __init__(
        self,
        settings: XFYunTTSSettings,
        options: XFYunTTSOptions | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._service = XFYunService(settings)
        self._options = options or XFYunTTSOptions()
        self._connector = connector or AiohttpConnector(timeout=settings.timeout)

    def request_frame(self, text: str, options: XFYunTTSOptions | None = None) -> dict[str, Any]:
        return {
            "common": {"app_id": self._service.app.app_id},
            "business": (options or self._options).business(),
            "data": {
                "text": base64.b64encode(text.encode("utf-8")).decode("ascii"),
                "status": TERMINAL_STATUS,
            },
        }

    async def synthesize(self, text: str, options: XFYunTTSOptions | None = None) -> bytes:
        """Synthesize ``text``; raises XFYunAPIError on a non-zero reply code."""
        transport = await self._connector(self._service.socket_url())
        try:
            await transport.send_str(json.dumps(self.request_frame(text, options)))
            audio = await self._receive_audio(transport)
        finally:
            await transport.close()

        http_requests_total.labels(service="xfyun_tts", status="200").inc()
        logger.debug("xfyun tts: %d chars -> %d bytes", len(text), len(audio))
        return audio

    async def _receive_audio(self, transport: Transport) -> bytes:
        chunks: list[bytes] = []
        while True:
            frame = await transport.receive()
            if frame.kind is FrameKind.CLOSED:
                raise TransportError(f"tts socket closed early (code={frame.close_code})")
            if frame.kind is FrameKind.ERROR:
                raise TransportError(f"tts socket error: {frame.error}")

            try:
                reply = json.loads(frame.data)
                code = int(reply.get("code", 0))
                if code != 0:
                    http_requests_total.labels(service="xfyun_tts", status=str(code)).inc()
                    raise XFYunAPIError(code, str(reply.get("message", "")))
                data = reply.get("data") or {}
                chunks.append(base64.b64decode(data.get("audio") or ""))
            except (ValueError, AttributeError, binascii.Error) as exc:
                raise MalformedMessageError(f"bad tts reply: {exc}") from exc

            if data.get("status") == TERMINAL_STATUS:
                return b"".join(chunks)
