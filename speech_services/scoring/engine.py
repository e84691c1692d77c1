"""Pronunciation scoring engine.

The vendor reports per-phoneme correctness flags rather than scores. They
are converted to the same 0/100 scale the aggregate levels use so that
pass/fail is uniform:

  initial  phone_score = 100 if perr_msg == "0"
  final    phone_score = 100 if perr_msg in {"0", "2"}
           tone_score  = 100 if perr_msg in {"0", "1"}

  weighted_score = 0.6 * phone_score + 0.4 * tone_score
  pass           = weighted_score > 50
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from speech_services.scoring.document import ScoringError, tone_class

if TYPE_CHECKING:
    from speech_services.scoring.document import (
        Phone,
        ScoringDocument,
        Sentence,
        Syllable,
        Word,
    )

PHONE_WEIGHT = 0.6
TONE_WEIGHT = 0.4
PASS_THRESHOLD = 50

FULL_SCORE = 100
ZERO_SCORE = 0

_INITIAL_CORRECT = {"0"}
_FINAL_PHONE_CORRECT = {"0", "2"}
_FINAL_TONE_CORRECT = {"0", "1"}


class DiffClass(enum.StrEnum):
    """Mismatch between what was spoken and the reference."""

    NONE = "none"
    MISSED = "missed"
    EXTRA = "extra"
    REPEATED = "repeated"
    REPLACED = "replaced"
    UNDEFINED = "undefined"


_DIFF_CODES: dict[str, DiffClass] = {
    "0": DiffClass.NONE,
    "16": DiffClass.MISSED,
    "32": DiffClass.EXTRA,
    "64": DiffClass.REPEATED,
    "128": DiffClass.REPLACED,
}


class Granularity(enum.StrEnum):
    SYLLABLE = "syllable"
    WORD = "word"
    SENTENCE = "sentence"

    @property
    def category(self) -> str:
        return f"read_{self.value}"


def classify_diff(code: str | None) -> DiffClass:
    """dp_message → DiffClass; unknown codes are UNDEFINED (not an error)."""
    if code is None:
        return DiffClass.UNDEFINED
    return _DIFF_CODES.get(code, DiffClass.UNDEFINED)


def weighted_score(phone_score: float, tone_score: float) -> float:
    return PHONE_WEIGHT * phone_score + TONE_WEIGHT * tone_score


def is_pass(score: float) -> bool:
    return score > PASS_THRESHOLD


@dataclass(frozen=True, slots=True)
class InitialScore:
    phone: str
    phone_score: int


@dataclass(frozen=True, slots=True)
class FinalScore:
    phone: str
    tone: int
    phone_score: int
    tone_score: int


@dataclass(frozen=True, slots=True)
class SyllableScore:
    character: str
    phonetic: str
    tone: int
    error: DiffClass
    initial: InitialScore | None = None
    final: FinalScore | None = None


@dataclass(frozen=True, slots=True)
class WordScore:
    content: str
    phonetic: str
    tone_score: float
    phone_score: float
    total_score: float
    syllables: tuple[SyllableScore, ...] = ()


@dataclass(frozen=True, slots=True)
class SentenceScore:
    content: str
    tone_score: float
    phone_score: float
    total_score: float
    words: tuple[WordScore, ...] = ()


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    """Top-level score node with its pass/fail verdict and full breakdown."""

    granularity: Granularity
    content: str
    tone_score: float
    phone_score: float
    total_score: float
    weighted_score: float
    passed: bool
    accuracy_score: float = 0.0
    emotion_score: float = 0.0
    fluency_score: float = 0.0
    integrity_score: float = 0.0
    is_rejected: bool = False
    sentences: tuple[SentenceScore, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        """Plain dict for JSON output; the verdict is keyed ``pass``."""
        data = dataclasses.asdict(self)
        data["pass"] = data.pop("passed")
        return data


def score_initial(phone: Phone) -> InitialScore:
    return InitialScore(
        phone=phone.content,
        phone_score=FULL_SCORE if phone.perr_msg in _INITIAL_CORRECT else ZERO_SCORE,
    )


def score_final(phone: Phone) -> FinalScore:
    return FinalScore(
        phone=phone.content,
        tone=tone_class(phone.mono_tone),
        phone_score=FULL_SCORE if phone.perr_msg in _FINAL_PHONE_CORRECT else ZERO_SCORE,
        tone_score=FULL_SCORE if phone.perr_msg in _FINAL_TONE_CORRECT else ZERO_SCORE,
    )


def score_syllable(syllable: Syllable) -> SyllableScore:
    return SyllableScore(
        character=syllable.content,
        phonetic=syllable.symbol,
        tone=syllable.tone,
        error=classify_diff(syllable.dp_message),
        initial=score_initial(syllable.initial) if syllable.initial else None,
        final=score_final(syllable.final) if syllable.final else None,
    )


def score_word(word: Word) -> WordScore:
    return WordScore(
        content=word.content,
        phonetic=word.symbol,
        tone_score=word.scores.tone_score,
        phone_score=word.scores.phone_score,
        total_score=word.scores.total_score,
        syllables=tuple(score_syllable(s) for s in word.syllables),
    )


def score_sentence(sentence: Sentence) -> SentenceScore:
    return SentenceScore(
        content=sentence.content,
        tone_score=sentence.scores.tone_score,
        phone_score=sentence.scores.phone_score,
        total_score=sentence.scores.total_score,
        words=tuple(score_word(w) for w in sentence.words),
    )


def evaluate(document: ScoringDocument, granularity: Granularity | str) -> EvaluationResult:
    """Score a document at the requested granularity.

    Raises ScoringError when the document was produced for another category.
    """
    granularity = Granularity(granularity)
    if document.category != granularity.category:
        raise ScoringError(
            f"Requested {granularity.category}, document is {document.category}"
        )

    scores = document.scores
    weighted = weighted_score(scores.phone_score, scores.tone_score)
    return EvaluationResult(
        granularity=granularity,
        content=document.content,
        tone_score=scores.tone_score,
        phone_score=scores.phone_score,
        total_score=scores.total_score,
        weighted_score=weighted,
        passed=is_pass(weighted),
        accuracy_score=document.accuracy_score,
        emotion_score=document.emotion_score,
        fluency_score=document.fluency_score,
        integrity_score=document.integrity_score,
        is_rejected=document.is_rejected,
        sentences=tuple(score_sentence(s) for s in document.sentences),
    )
