"""Streaming session data types: frame/session states, events, errors.

A session emits an ordered sequence of events:
  OpenEvent, MessageEvent*, then exactly one of ClosedEvent / ErrorEvent.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from speech_services.scoring.engine import EvaluationResult

# Vendor status value carried by a message that ends the conversation
TERMINAL_STATUS = 2


class FrameState(enum.IntEnum):
    """Envelope shape of the next outgoing frame (wire value of data.status)."""

    FIRST = 0
    CONTINUE = 1
    LAST = 2


class SessionState(enum.StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class SessionErrorKind(enum.StrEnum):
    TRANSPORT = "transport"
    MALFORMED = "malformed"


# --- Errors ---


class SessionError(Exception):
    """Base class for streaming session failures."""


class TransportError(SessionError):
    """Connect failure or abrupt socket close."""


class MalformedMessageError(SessionError):
    """Incoming frame could not be decoded into a normalized message."""


class CallerMisuseError(SessionError):
    """The caller used the session in a way its state does not allow."""


class SessionClosedError(CallerMisuseError):
    """Send attempted while the session is not open."""


class FrameStateError(CallerMisuseError):
    """Send attempted after the last frame was already sent."""


# --- Normalized incoming message ---


class ResultKind(enum.StrEnum):
    APPEND = "apd"
    REPLACE_RANGE = "rpl"


@dataclass(frozen=True, slots=True)
class RecognitionResult:
    """One incremental recognition hypothesis.

    ``range`` is the 1-based inclusive span of earlier fragments this one
    supersedes (REPLACE_RANGE only). ``visible_text`` is the caller-visible
    rendering after this result was applied.
    """

    kind: ResultKind
    text: str
    position: int
    range: tuple[int, int] | None = None
    visible_text: str = ""


@dataclass(frozen=True, slots=True)
class NormalizedMessage:
    """Vendor-agnostic form of one incoming wire message."""

    code: int
    message: str | None = None
    status: int | None = None
    sid: str | None = None
    payload: RecognitionResult | EvaluationResult | None = None

    @property
    def is_error(self) -> bool:
        return self.code != 0

    @property
    def is_terminal(self) -> bool:
        return self.status == TERMINAL_STATUS

    @property
    def is_pending(self) -> bool:
        return self.payload is None and not self.is_error


# --- Events ---


@dataclass(frozen=True, slots=True)
class OpenEvent:
    pass


@dataclass(frozen=True, slots=True)
class MessageEvent:
    message: NormalizedMessage


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Fatal session error; always the last event."""

    kind: SessionErrorKind
    error: BaseException | None = None

    def as_exception(self) -> SessionError:
        if isinstance(self.error, SessionError):
            return self.error
        if self.kind is SessionErrorKind.MALFORMED:
            return MalformedMessageError(str(self.error))
        return TransportError(str(self.error) if self.error else "transport failure")


@dataclass(frozen=True, slots=True)
class ClosedEvent:
    code: int | None = None
    reason: str = ""


SessionEvent = OpenEvent | MessageEvent | ErrorEvent | ClosedEvent


@runtime_checkable
class StreamProtocol(Protocol):
    """Vendor capability injected into a StreamingSession.

    Builds outgoing envelopes for a frame state and translates decoded
    incoming JSON into normalized messages. One instance per session.
    """

    service: str
    # False: the LAST frame is an empty sentinel; True: it carries the final chunk
    last_frame_carries_audio: bool

    def build_frames(
        self, state: FrameState, payload: bytes, *, opening: bool
    ) -> list[dict[str, Any]]:
        """Envelopes to send for one payload; ``opening`` is True for the first send."""
        ...

    def translate(self, parsed: Any) -> NormalizedMessage:
        """Normalize one decoded message. Raises MalformedMessageError."""
        ...
