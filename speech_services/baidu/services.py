"""Baidu speech and NLP endpoints.

Each call is a thin mapping from arguments to the endpoint's request body
and from its reply to a plain result. Pacing, tokens and the expired-token
retry live in BaiduClient.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from speech_services.baidu.client import BaiduService
from speech_services.baidu.errors import BaiduAPIError

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from speech_services.baidu.client import BaiduClient, BaiduResponse

logger = logging.getLogger(__name__)

ASR = BaiduService("asr", "http://vop.baidu.com/server_api", quota="baidu_asr")
TTS = BaiduService("tts", "https://tsn.baidu.com/text2audio", quota="baidu_tts")
# Premium voices (per > 4) have a lower quota on the same endpoint
TTS_PREMIUM = BaiduService(
    "tts_premium", "https://tsn.baidu.com/text2audio", quota="baidu_tts_premium"
)
DEPPARSER = BaiduService(
    "depparser", "https://aip.baidubce.com/rpc/2.0/nlp/v1/depparser", quota="baidu_nlp"
)
LEXER = BaiduService("lexer", "https://aip.baidubce.com/rpc/2.0/nlp/v1/lexer", quota="baidu_nlp")
OPENQA = BaiduService("openqa", "https://aip.baidubce.com/rpc/2.0/kg/v2/openqa", quota="baidu_nlp")

MAX_TTS_TEXT = 2048
_STANDARD_VOICE_MAX = 4
_AUE = {"wav": 6, "mp3": 3}

# CJK Extension A characters are not understood by the lexer
_CJK_EXT_A_RE = re.compile(r"[\u3400-\u4dbf]+")

# "A：..." / "张三、李四：..." at the start of a line; 说 (U+8BF4) is excluded
_DIALOG_LINE_RE = re.compile(
    r"^([A-Z]|[\u4e00-\u8bf3 \u8bf5-\u9fa5]{1,5})"
    r"(、([A-Z]|[\u4e00-\u8bf3 \u8bf5-\u9fa5]{1,5}))*：(?!$)",
    re.MULTILINE,
)

# Dependency-parse tag sequences that read as a speaker name
SPEAKER_TAGS = frozenset(
    {
        "aa", "ab", "an", "ann", "anv", "at", "bn", "j", "jj", "jn", "n", "nr",
        "na", "nd", "nm", "nmm", "nn", "nvn", "r", "rr", "tt", "van", "x", "z",
    }
)  # fmt: skip


@dataclass(frozen=True, slots=True)
class ConllItem:
    id: str
    word: str
    postag: str
    head: str
    deprel: str


@dataclass(frozen=True, slots=True)
class LexerItem:
    item: str
    pos: str | None


def _raise_for_error(response: BaiduResponse) -> dict[str, Any]:
    data = response.json()
    code = response.error_code
    if code:
        raise BaiduAPIError(code, response.error_message or str(data))
    return data


# --- Speech ---


async def recognize(client: BaiduClient, audio: bytes) -> str | None:
    """Recognize 16 kHz mono wav; returns the best hypothesis or None."""
    response = await client.send(
        ASR,
        {
            "format": "wav",
            "rate": 16000,
            "dev_pid": 1536,
            "channel": 1,
            "speech": base64.b64encode(audio).decode("ascii"),
            "len": len(audio),
        },
    )
    result = _raise_for_error(response).get("result")
    return result[0] if result else None


async def synthesize(
    client: BaiduClient,
    text: str,
    per: int = 0,
    speed: int = 4,
    fmt: Literal["wav", "mp3"] = "mp3",
) -> bytes:
    """Text to speech. ``per`` picks the voice, ``speed`` is 0-15.

    Raises BaiduAPIError carrying the reply when no audio comes back.
    """
    service = TTS_PREMIUM if per > _STANDARD_VOICE_MAX else TTS
    response = await client.send(
        service,
        {
            "tex": text[:MAX_TTS_TEXT],
            "ctp": 1,
            "lan": "zh",
            "per": per,
            "spd": speed,
            "aue": _AUE[fmt],
        },
        body_type="form",
    )
    if response.is_audio:
        return response.body
    logger.error("baidu tts returned %s instead of audio", response.content_type)
    raise BaiduAPIError(response.error_code or response.status, response.text)


# --- NLP ---


async def depparse(client: BaiduClient, text: str) -> list[ConllItem]:
    """Dependency parse, one CoNLL row per word."""
    data = _raise_for_error(await client.send(DEPPARSER, {"text": text, "mode": 0}))
    return [
        ConllItem(
            id=str(item.get("id", "")),
            word=item.get("word", ""),
            postag=item.get("postag", ""),
            head=str(item.get("head", "")),
            deprel=item.get("deprel", ""),
        )
        for item in data.get("items") or []
    ]


async def _lex(client: BaiduClient, text: str) -> list[LexerItem]:
    if not text.strip():
        return []
    data = _raise_for_error(await client.send(LEXER, {"text": text}))
    return [LexerItem(item=i["item"], pos=i.get("pos")) for i in data.get("items") or []]


async def _untagged(run: str) -> list[LexerItem]:
    return [LexerItem(item=run, pos=None)]


async def lexer(client: BaiduClient, text: str) -> list[LexerItem]:
    """Lexical analysis that passes CJK Extension A runs through untagged.

    The text between those runs is lexed concurrently; items come back
    in text order.
    """
    parts: list[Awaitable[list[LexerItem]]] = []
    prev = 0
    for match in _CJK_EXT_A_RE.finditer(text):
        if match.start() != prev:
            parts.append(_lex(client, text[prev : match.start()]))
        parts.append(_untagged(match.group()))
        prev = match.end()
    if prev < len(text):
        parts.append(_lex(client, text[prev:]))

    return [item for part in await asyncio.gather(*parts) for item in part]


async def openqa(client: BaiduClient, query: str) -> list[dict[str, Any]]:
    """Knowledge-graph question answering; raw result entries."""
    logger.debug("baidu openqa: %s", query)
    data = _raise_for_error(await client.send(OPENQA, {"query": query}))
    return data.get("result") or []


async def definition(client: BaiduClient, term: str) -> str | None:
    """First ``definition`` attribute of the entities openqa finds for ``term``."""
    for result in await openqa(client, term):
        for entity in result.get("response", {}).get("entity", []):
            for attr in entity.get("attrs", []):
                if attr.get("key") == "definition" and attr.get("objects"):
                    return attr["objects"][0].get("@value")
    return None


async def identify_speakers(client: BaiduClient, text: str) -> dict[int, str]:
    """Find dialogue speaker labels ("A：", "张三、李四：") at line starts.

    A candidate is kept only if its dependency-parse tags read as a name.
    Returns {offset in text: speaker}.
    """
    speakers: dict[int, str] = {}
    for match in _DIALOG_LINE_RE.finditer(text):
        label = match.group()
        for segment in label.removesuffix("：").split("、"):
            tags = "".join(item.postag.lower() for item in await depparse(client, segment))
            if tags in SPEAKER_TAGS:
                speakers[match.start() + label.index(segment)] = segment
    return speakers
