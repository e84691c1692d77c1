"""Pronunciation evaluation (xfyun ise) protocol.

Frames:
  FIRST     {common, business: {cmd: "ssb", ...options}, data: {status: 0}}
            then {business: {cmd: "auw", aus: 1}, data: {status: 1, data}}
  CONTINUE  {business: {cmd: "auw", aus: 2}, data: {status: 1, data}}
  LAST      {business: {cmd: "auw", aus: 4}, data: {status: 2, data}}

Intermediate replies carry no result. The terminal reply (status 2) carries
the base64 scoring XML, which is parsed and scored before it is emitted.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from speech_services.scoring.document import ScoringError, parse_scoring_document
from speech_services.scoring.engine import Granularity, evaluate
from speech_services.streaming.base import (
    TERMINAL_STATUS,
    FrameState,
    MalformedMessageError,
    NormalizedMessage,
)
from speech_services.streaming.recognition import AUDIO_ENCODING, AUDIO_FORMAT
from speech_services.streaming.session import StreamingSession
from speech_services.streaming.transport import AiohttpConnector
from speech_services.xfyun.service import XFYunService

if TYPE_CHECKING:
    from speech_services.config import EvaluationSettings, Settings
    from speech_services.streaming.transport import Connector

logger = logging.getLogger(__name__)

# Audio status inside auw frames
AUS_FIRST = 1
AUS_CONTINUE = 2
AUS_LAST = 4

_BOM = "\ufeff"


@dataclass(frozen=True, slots=True)
class EvaluationOptions:
    """What is being read and how it is scored."""

    reference_text: str
    granularity: Granularity = Granularity.SENTENCE
    reference_phonetic: str | None = None
    ent: str = "cn_vip"

    @classmethod
    def from_settings(
        cls,
        settings: EvaluationSettings,
        reference_text: str,
        reference_phonetic: str | None = None,
    ) -> EvaluationOptions:
        return cls(
            reference_text=reference_text,
            granularity=Granularity(settings.category.removeprefix("read_")),
            reference_phonetic=reference_phonetic,
            ent=settings.ent,
        )

    @property
    def category(self) -> str:
        return self.granularity.category

    def text(self) -> str:
        if self.reference_phonetic:
            return f"{_BOM}{self.reference_text}\n{self.reference_phonetic}"
        return f"{_BOM}{self.reference_text}"

    def business(self) -> dict[str, Any]:
        return {
            "sub": "ise",
            "ent": self.ent,
            "category": self.category,
            "cmd": "ssb",
            "text": self.text(),
            "tte": "utf-8",
            "ttp_skip": True,
            "aue": AUDIO_ENCODING,
            "auf": AUDIO_FORMAT,
        }


class EvaluationProtocol:
    """xfyun ise framing and terminal-result scoring."""

    service = "ise"
    last_frame_carries_audio = True

    def __init__(self, app_id: str, options: EvaluationOptions) -> None:
        self.app_id = app_id
        self.options = options

    def build_frames(
        self, state: FrameState, payload: bytes, *, opening: bool
    ) -> list[dict[str, Any]]:
        frames: list[dict[str, Any]] = []
        if opening:
            frames.append(
                {
                    "common": {"app_id": self.app_id},
                    "business": self.options.business(),
                    "data": {"status": int(FrameState.FIRST), "data": ""},
                }
            )

        if state is FrameState.LAST:
            aus, status = AUS_LAST, int(FrameState.LAST)
        elif opening:
            aus, status = AUS_FIRST, int(FrameState.CONTINUE)
        else:
            aus, status = AUS_CONTINUE, int(FrameState.CONTINUE)

        frames.append(
            {
                "business": {"cmd": "auw", "aus": aus},
                "data": {"status": status, "data": base64.b64encode(payload).decode("ascii")},
            }
        )
        return frames

    def translate(self, parsed: Any) -> NormalizedMessage:
        try:
            code = int(parsed.get("code", 0))
            message = parsed.get("message")
            sid = parsed.get("sid")
            data = parsed.get("data") or {}
            status = data.get("status")
            encoded = data.get("data")
        except (AttributeError, TypeError, ValueError) as exc:
            raise MalformedMessageError(f"bad ise envelope: {exc}") from exc

        if code != 0 or status != TERMINAL_STATUS or not encoded:
            return NormalizedMessage(code=code, message=message, status=status, sid=sid)

        try:
            xml = base64.b64decode(encoded, validate=True)
            document = parse_scoring_document(xml)
            result = evaluate(document, self.options.granularity)
        except (binascii.Error, TypeError, ValueError, ScoringError) as exc:
            raise MalformedMessageError(f"bad ise result: {exc}") from exc

        logger.info(
            "Evaluation %s scored %.2f (pass=%s)",
            sid,
            result.weighted_score,
            result.passed,
            extra={"sid": sid, "service": self.service},
        )
        return NormalizedMessage(
            code=code, message=message, status=status, sid=sid, payload=result
        )


async def open_evaluation_session(
    settings: Settings,
    options: EvaluationOptions,
    connector: Connector | None = None,
) -> StreamingSession:
    """Sign, connect and return an open evaluation session."""
    service = XFYunService(settings.xfyun_ise)
    protocol = EvaluationProtocol(settings.xfyun_ise.app_id, options)
    session = StreamingSession(
        protocol,
        service.socket_url,
        connector or AiohttpConnector(timeout=settings.streaming.connect_timeout),
        chunk_size=settings.streaming.chunk_size,
    )
    await session.open()
    return session
