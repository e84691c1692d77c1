"""TTS engine interface and shared data types."""

from __future__ import annotations

import enum
from typing import Protocol, runtime_checkable


class Gender(enum.StrEnum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class AudioFormat(enum.StrEnum):
    WAV = "wav"
    MP3 = "mp3"


@runtime_checkable
class TTSEngine(Protocol):
    """Protocol for text-to-speech engines.

    Implementations return the complete encoded audio of ``text``.
    """

    async def synthesize(self, text: str) -> bytes:
        """Synthesize text into audio bytes."""
        ...
