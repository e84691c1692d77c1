"""Pronunciation-evaluation scoring document (xfyun ise XML result).

Shape of a cn result:
  xml_result / read_sentence / rec_paper / read_sentence (paper scores)
    sentence (scores) / word / syll (dp_message, symbol) / phone
      phone is_yun="0": initial (perr_msg)
      phone is_yun="1": final (perr_msg, mono_tone)

Parsed once per terminal message into frozen dataclasses.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass

# mono_tone value -> tone class; anything else is neutral
_TONE_CLASSES = {"TONE1": 1, "TONE2": 2, "TONE3": 3, "TONE4": 4}
NEUTRAL_TONE = 5

_SILENCE_NODE = "sil"


class ScoringError(Exception):
    """Raised when a scoring XML document cannot be interpreted."""


def tone_class(mono_tone: str | None) -> int:
    """TONE1..TONE4 → 1..4, anything else (TONE0, CONTEXT, missing) → 5."""
    return _TONE_CLASSES.get(mono_tone or "", NEUTRAL_TONE)


@dataclass(frozen=True, slots=True)
class Scores:
    tone_score: float = 0.0
    phone_score: float = 0.0
    total_score: float = 0.0


@dataclass(frozen=True, slots=True)
class Phone:
    content: str
    is_final: bool
    perr_msg: str
    dp_message: str = "0"
    mono_tone: str | None = None


@dataclass(frozen=True, slots=True)
class Syllable:
    content: str  # recognized character
    symbol: str  # reference pinyin, e.g. "jin1"
    dp_message: str
    initial: Phone | None = None
    final: Phone | None = None

    @property
    def tone(self) -> int:
        return tone_class(self.final.mono_tone if self.final else None)


@dataclass(frozen=True, slots=True)
class Word:
    content: str
    symbol: str
    scores: Scores
    syllables: tuple[Syllable, ...] = ()


@dataclass(frozen=True, slots=True)
class Sentence:
    content: str
    scores: Scores
    words: tuple[Word, ...] = ()


@dataclass(frozen=True, slots=True)
class ScoringDocument:
    """Top-level paper node of one evaluation."""

    category: str  # read_syllable | read_word | read_sentence | read_chapter
    content: str
    scores: Scores
    accuracy_score: float = 0.0
    emotion_score: float = 0.0
    fluency_score: float = 0.0
    integrity_score: float = 0.0
    is_rejected: bool = False
    except_info: str = "0"
    sentences: tuple[Sentence, ...] = ()


def parse_scoring_document(xml: bytes | str) -> ScoringDocument:
    """Parse a result XML into a ScoringDocument. Raises ScoringError."""
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as exc:
        raise ScoringError(f"Invalid scoring XML: {exc}") from exc

    paper = root if root.tag == "rec_paper" else root.find(".//rec_paper")
    if paper is None or len(paper) == 0:
        raise ScoringError("Scoring XML has no rec_paper node")

    top = paper[0]
    if not top.tag.startswith("read_"):
        raise ScoringError(f"Unexpected paper node <{top.tag}>")

    return ScoringDocument(
        category=top.tag,
        content=top.get("content", ""),
        scores=_scores(top),
        accuracy_score=_float(top, "accuracy_score"),
        emotion_score=_float(top, "emotion_score"),
        fluency_score=_float(top, "fluency_score"),
        integrity_score=_float(top, "integrity_score"),
        is_rejected=top.get("is_rejected", "false").lower() == "true",
        except_info=top.get("except_info", "0"),
        sentences=tuple(_sentence(el) for el in top.findall("sentence")),
    )


def _sentence(element: ET.Element) -> Sentence:
    return Sentence(
        content=element.get("content", ""),
        scores=_scores(element),
        words=tuple(_word(el) for el in element.findall("word")),
    )


def _word(element: ET.Element) -> Word:
    return Word(
        content=element.get("content", ""),
        symbol=element.get("symbol", ""),
        scores=_scores(element),
        syllables=tuple(
            _syllable(el)
            for el in element.findall("syll")
            if el.get("rec_node_type") != _SILENCE_NODE
        ),
    )


def _syllable(element: ET.Element) -> Syllable:
    initial: Phone | None = None
    final: Phone | None = None
    for el in element.findall("phone"):
        phone = Phone(
            content=el.get("content", ""),
            is_final=el.get("is_yun") == "1",
            perr_msg=el.get("perr_msg", ""),
            dp_message=el.get("dp_message", "0"),
            mono_tone=el.get("mono_tone"),
        )
        if phone.is_final and final is None:
            final = phone
        elif not phone.is_final and initial is None:
            initial = phone
    return Syllable(
        content=element.get("content", ""),
        symbol=element.get("symbol", ""),
        dp_message=element.get("dp_message", ""),
        initial=initial,
        final=final,
    )


def _scores(element: ET.Element) -> Scores:
    return Scores(
        tone_score=_float(element, "tone_score"),
        phone_score=_float(element, "phone_score"),
        total_score=_float(element, "total_score"),
    )


def _float(element: ET.Element, name: str) -> float:
    raw = element.get(name)
    if not raw:
        return 0.0
    try:
        return float(raw)
    except ValueError as exc:
        raise ScoringError(f"<{element.tag}> {name}={raw!r} is not a number") from exc
