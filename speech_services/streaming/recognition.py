"""Streaming speech recognition (xfyun iat) protocol.

Frames:
  FIRST     {common: {app_id}, business: {...options}, data: {status: 0, audio, ...}}
  CONTINUE  {data: {status: 1, audio, ...}}
  LAST      {data: {status: 2, audio: ""}}

Incoming results carry ``pgs``: "apd" appends a fragment, "rpl" supersedes
the fragments in ``rg`` (1-based, inclusive) and appends its own text as
the revised hypothesis. Superseded fragments stay in the buffer so later
ranges keep pointing at the same positions.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from speech_services.streaming.base import (
    FrameState,
    MalformedMessageError,
    NormalizedMessage,
    RecognitionResult,
    ResultKind,
)
from speech_services.streaming.session import StreamingSession
from speech_services.streaming.transport import AiohttpConnector
from speech_services.xfyun.service import XFYunService

if TYPE_CHECKING:
    from speech_services.config import RecognitionSettings, Settings
    from speech_services.streaming.transport import Connector

logger = logging.getLogger(__name__)

AUDIO_FORMAT = "audio/L16;rate=16000"
AUDIO_ENCODING = "raw"


@dataclass(frozen=True, slots=True)
class RecognitionOptions:
    """Business parameters sent with the first frame."""

    punctuation: bool = True
    vad_eos: int = 5000
    nunum: bool = False
    language: str = "zh_cn"
    domain: str = "iat"
    accent: str = "mandarin"

    @classmethod
    def from_settings(cls, settings: RecognitionSettings) -> RecognitionOptions:
        return cls(
            punctuation=settings.punctuation,
            vad_eos=settings.vad_eos,
            nunum=settings.nunum,
            language=settings.language,
            domain=settings.domain,
            accent=settings.accent,
        )

    def business(self) -> dict[str, Any]:
        return {
            "ptt": 1 if self.punctuation else 0,
            "vad_eos": self.vad_eos,
            "nunum": 1 if self.nunum else 0,
            "language": self.language,
            "domain": self.domain,
            "accent": self.accent,
            # dynamic correction: enables pgs/rg in results
            "dwa": "wpgs",
        }


@dataclass(slots=True)
class Fragment:
    text: str
    superseded: bool = False


class FragmentBuffer:
    """Every fragment emitted so far, in emission order."""

    def __init__(self) -> None:
        self._fragments: list[Fragment] = []

    def __len__(self) -> int:
        return len(self._fragments)

    def append(self, text: str) -> int:
        """Push a fragment; returns its 1-based position."""
        self._fragments.append(Fragment(text))
        return len(self._fragments)

    def supersede(self, lo: int, hi: int) -> None:
        """Hide positions lo..hi (1-based, inclusive). Idempotent.

        Positions not emitted yet are ignored.
        """
        if lo > hi:
            lo, hi = hi, lo
        if lo < 1 or hi > len(self._fragments):
            logger.warning(
                "Replace range [%d, %d] outside %d emitted fragments", lo, hi, len(self._fragments)
            )
        for i in range(max(lo, 1), min(hi, len(self._fragments)) + 1):
            self._fragments[i - 1].superseded = True

    def is_superseded(self, position: int) -> bool:
        return self._fragments[position - 1].superseded

    @property
    def text(self) -> str:
        return "".join(f.text for f in self._fragments if not f.superseded)


class RecognitionProtocol:
    """xfyun iat framing and incremental-result translation."""

    service = "iat"
    last_frame_carries_audio = False

    def __init__(self, app_id: str, options: RecognitionOptions | None = None) -> None:
        self.app_id = app_id
        self.options = options or RecognitionOptions()
        self.fragments = FragmentBuffer()

    def build_frames(
        self, state: FrameState, payload: bytes, *, opening: bool
    ) -> list[dict[str, Any]]:
        data = {
            "status": int(state),
            "format": AUDIO_FORMAT,
            "audio": base64.b64encode(payload).decode("ascii"),
            "encoding": AUDIO_ENCODING,
        }
        if not opening:
            return [{"data": data}]
        return [
            {
                "common": {"app_id": self.app_id},
                "business": self.options.business(),
                "data": data,
            }
        ]

    def translate(self, parsed: Any) -> NormalizedMessage:
        try:
            code = int(parsed.get("code", 0))
            message = parsed.get("message")
            sid = parsed.get("sid")
            data = parsed.get("data")
        except (AttributeError, TypeError, ValueError) as exc:
            raise MalformedMessageError(f"bad iat envelope: {exc}") from exc

        if not data:
            return NormalizedMessage(code=code, message=message, sid=sid)

        try:
            status = data.get("status")
            raw = data.get("result")
            if raw is None:
                return NormalizedMessage(code=code, message=message, status=status, sid=sid)
            text = "".join(cw["w"] for ws in raw["ws"] for cw in ws["cw"])
            kind = ResultKind(raw.get("pgs", ResultKind.APPEND.value))
            rg = raw.get("rg")
            span = (int(rg[0]), int(rg[1])) if kind is ResultKind.REPLACE_RANGE else None
        except (AttributeError, KeyError, TypeError, ValueError, IndexError) as exc:
            raise MalformedMessageError(f"bad iat result: {exc}") from exc

        if code != 0:
            return NormalizedMessage(code=code, message=message, status=status, sid=sid)

        result = self.apply(kind, text, span)
        return NormalizedMessage(
            code=code, message=message, status=status, sid=sid, payload=result
        )

    def apply(
        self, kind: ResultKind, text: str, span: tuple[int, int] | None = None
    ) -> RecognitionResult:
        """Apply one result to the fragment buffer."""
        if kind is ResultKind.REPLACE_RANGE and span is not None:
            self.fragments.supersede(*span)
        position = self.fragments.append(text)
        return RecognitionResult(
            kind=kind,
            text=text,
            position=position,
            range=span,
            visible_text=self.fragments.text,
        )


async def open_recognition_session(
    settings: Settings,
    options: RecognitionOptions | None = None,
    connector: Connector | None = None,
) -> StreamingSession:
    """Sign, connect and return an open recognition session."""
    service = XFYunService(settings.xfyun_iat)
    protocol = RecognitionProtocol(
        settings.xfyun_iat.app_id,
        options or RecognitionOptions.from_settings(settings.recognition),
    )
    session = StreamingSession(
        protocol,
        service.socket_url,
        connector or AiohttpConnector(timeout=settings.streaming.connect_timeout),
        chunk_size=settings.streaming.chunk_size,
    )
    await session.open()
    return session
