"""Azure neural text-to-speech with SSML dialogue lines.

Each DialogLine becomes one <voice> element. Lines given as numeric pinyin
are spoken through <phoneme alphabet="sapi"> so the tones are exact:

  "zu3 zhi1 xi"  ->  <phoneme alphabet="sapi" ph="zu 3 - zhi 1 - xi 5" />
"""

from __future__ import annotations

import enum
import logging
import re
import xml.sax.saxutils
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiohttp
from aiobreaker import CircuitBreaker, CircuitBreakerError

from speech_services.monitoring.metrics import http_requests_total
from speech_services.tts.base import Gender

if TYPE_CHECKING:
    from collections.abc import Iterable

    from speech_services.config import AzureSettings

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "audio-24khz-48kbitrate-mono-mp3"

# Separate circuit breaker for Azure TTS
_azure_breaker = CircuitBreaker(fail_max=5, timeout_duration=30)

_CHINESE_RE = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fa5]")
_PINYIN_TOKEN_RE = re.compile(r"[a-zü]+[0-5]?", re.IGNORECASE)
_SYLLABLE_RE = re.compile(
    r"^(?:zh|ch|sh|[bpmfdtnlgkhjqxrzcsyw])?"
    r"(?:iang|iong|uang|ueng|ang|eng|ing|ong|ian|iao|uai|uan|üan|van"
    r"|ai|ei|ao|ou|an|en|er|in|un|ün|vn|ia|ie|iu|ua|uo|ui|üe|ve|ue"
    r"|a|o|e|i|u|ü|v|ng|n|m)$"
)
NEUTRAL_TONE = 5


class AzureAPIError(Exception):
    """Raised when an Azure TTS call fails."""

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"Azure TTS {status}: {message}")


class Voice(enum.StrEnum):
    YUNXI = "zh-CN-YunxiNeural"
    XIAOXUAN = "zh-CN-XiaoxuanNeural"
    XIAOHAN = "zh-CN-XiaohanNeural"
    XIAOMO = "zh-CN-XiaomoNeural"
    XIAORUI = "zh-CN-XiaoruiNeural"


# Speaker letters used in dialogue scripts
PREFERRED_VOICES: dict[str, Voice] = {
    "A": Voice.XIAOHAN,
    "B": Voice.YUNXI,
    "C": Voice.XIAOXUAN,
    "D": Voice.XIAOMO,
    "E": Voice.XIAORUI,
}

GENDER_VOICES: dict[Gender, Voice] = {
    Gender.MALE: Voice.YUNXI,
    Gender.FEMALE: Voice.XIAOHAN,
    Gender.OTHER: Voice.XIAOHAN,
}


def resolve_voice(voice_or_gender: str) -> str:
    """Speaker letter, gender or explicit voice name -> voice name."""
    if voice_or_gender in PREFERRED_VOICES:
        return PREFERRED_VOICES[voice_or_gender]
    if voice_or_gender in {g.value for g in Gender}:
        return GENDER_VOICES[Gender(voice_or_gender)]
    return voice_or_gender


def assign_voices(names: Iterable[str]) -> dict[str, str]:
    """Give every speaker a voice, distinct while the preferred set lasts.

    Speakers named by a preferred letter keep its voice; the others take
    the remaining voices round-robin.
    """
    names = list(names)
    assigned: dict[str, str] = {}
    remaining = list(PREFERRED_VOICES.values())
    for name in names:
        voice = PREFERRED_VOICES.get(name)
        if voice is not None:
            if voice in remaining:
                remaining.remove(voice)
            assigned[name] = voice

    for name in names:
        if name not in assigned:
            voice = remaining.pop(0) if remaining else Voice.XIAOXUAN
            assigned[name] = voice
            remaining.append(voice)
    return assigned


def numeric_tone(token: str) -> tuple[str, int]:
    """Split "zhi1" into ("zhi", 1); no digit or 0 is the neutral tone."""
    if token[-1].isdigit():
        tone = int(token[-1])
        return token[:-1], tone if 1 <= tone <= 4 else NEUTRAL_TONE
    return token, NEUTRAL_TONE


def is_valid_syllable(phone: str) -> bool:
    return bool(_SYLLABLE_RE.match(phone.lower()))


@dataclass(slots=True)
class _Group:
    is_pinyin: bool
    text: str


def group_pinyin(text: str) -> list[tuple[bool, str]]:
    """Split text into runs of sapi pinyin ("zu 3 - zhi 1") and plain text."""
    groups: list[_Group] = []
    previous = 0
    for match in _PINYIN_TOKEN_RE.finditer(text):
        between = text[previous : match.start()]
        token = match.group()
        previous = match.end()

        phone, tone = numeric_tone(token)
        is_pinyin = is_valid_syllable(phone)
        rendered = f"{phone.lower()} {tone}" if is_pinyin else token

        last = groups[-1] if groups else None
        if last is not None and is_pinyin and last.is_pinyin and not between.strip():
            last.text += " - " + rendered
            continue
        if between:
            if last is not None and not last.is_pinyin:
                last.text += between
            else:
                groups.append(_Group(False, between))
            last = groups[-1]
        if not is_pinyin and last is not None and not last.is_pinyin:
            last.text += rendered
        else:
            groups.append(_Group(is_pinyin, rendered))

    if previous < len(text):
        tail = text[previous:]
        if groups and not groups[-1].is_pinyin:
            groups[-1].text += tail
        else:
            groups.append(_Group(False, tail))
    return [(g.is_pinyin, g.text) for g in groups]


class DialogLine:
    """One utterance in one voice, given as text or as numeric pinyin."""

    def __init__(
        self,
        voice_or_gender: str,
        text: str | None = None,
        pinyin: str | None = None,
    ) -> None:
        if text is None and pinyin is None:
            raise ValueError("DialogLine needs text or pinyin")
        self.voice = resolve_voice(voice_or_gender)
        self.text = text
        self.pinyin = pinyin

    @property
    def material(self) -> str:
        return self.pinyin if self.pinyin is not None else self.text or ""

    def prosody_rate(self) -> str:
        # single syllables are read slowly so the tone is audible
        material = self.material
        length = len(_PINYIN_TOKEN_RE.findall(material)) + len(_CHINESE_RE.findall(material))
        return "x-slow" if length <= 1 else "0.75"

    def phoneme_xml(self) -> str:
        if self.pinyin is None:
            return xml.sax.saxutils.escape(self.text or "")
        parts = []
        for is_pinyin, group in group_pinyin(self.pinyin):
            if is_pinyin:
                parts.append(f'<phoneme alphabet="sapi" ph="{group}" />')
            else:
                parts.append(xml.sax.saxutils.escape(group))
        return "".join(parts)

    def to_ssml(self) -> str:
        return (
            f"<voice name='{self.voice}'>"
            f'<prosody rate="{self.prosody_rate()}">{self.phoneme_xml()}</prosody>'
            "</voice>"
        )


def build_ssml(lines: Iterable[DialogLine]) -> str:
    body = "\n".join(line.to_ssml() for line in lines)
    return (
        "<speak version='1.0' xmlns='http://www.w3.org/2001/10/synthesis' xml:lang='en-US'>"
        f"{body}</speak>"
    )


class AzureTTSEngine:
    """Azure TTS over REST; returns mp3 bytes."""

    def __init__(self, settings: AzureSettings, voice: str = Gender.FEMALE) -> None:
        self._settings = settings
        self._voice = voice
        self._timeout = aiohttp.ClientTimeout(total=settings.timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def url(self) -> str:
        return f"https://{self._settings.region}.tts.speech.microsoft.com/cognitiveservices/v1"

    async def open(self) -> None:
        """Open the HTTP session."""
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            headers={
                "Ocp-Apim-Subscription-Key": self._settings.subscription_key,
                "Content-Type": "application/ssml+xml",
                "X-Microsoft-OutputFormat": OUTPUT_FORMAT,
            },
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def synthesize(self, text: str) -> bytes:
        """Speak plain text in the engine's default voice."""
        return await self.synthesize_dialog(DialogLine(self._voice, text=text))

    async def synthesize_dialog(self, *lines: DialogLine) -> bytes:
        """Speak every line in order, each in its own voice."""
        if self._session is None:
            raise RuntimeError("AzureTTSEngine not opened, call open() first")
        ssml = build_ssml(lines)
        try:
            return await _azure_breaker.call_async(self._do_request, ssml)
        except CircuitBreakerError as err:
            logger.error("Circuit breaker OPEN for Azure TTS")
            raise AzureAPIError(503, "Azure TTS temporarily unavailable") from err

    async def _do_request(self, ssml: str) -> bytes:
        assert self._session is not None
        async with self._session.post(self.url, data=ssml.encode("utf-8")) as resp:
            http_requests_total.labels(service="azure_tts", status=str(resp.status)).inc()
            if resp.status == 401:
                logger.critical("Azure TTS authentication failed, check subscription key")
            if resp.status >= 400:
                text = await resp.text()
                raise AzureAPIError(resp.status, text[:200])
            return await resp.read()
