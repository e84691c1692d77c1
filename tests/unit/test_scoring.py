"""Unit tests for the scoring document parser and scoring engine."""

from __future__ import annotations

import pytest

from speech_services.scoring.document import (
    NEUTRAL_TONE,
    Phone,
    ScoringError,
    parse_scoring_document,
    tone_class,
)
from speech_services.scoring.engine import (
    DiffClass,
    Granularity,
    classify_diff,
    evaluate,
    is_pass,
    score_final,
    score_initial,
    weighted_score,
)

SENTENCE_XML = """<?xml version="1.0" encoding="utf-8"?>
<xml_result>
  <read_sentence lan="cn" type="study" version="7,0,0,1024">
    <rec_paper>
      <read_sentence accuracy_score="88.5" emotion_score="80.0" fluency_score="76.25"
          integrity_score="100" is_rejected="false" except_info="0"
          content="今天" tone_score="70.0" phone_score="60.0" total_score="75.4"
          beg_pos="0" end_pos="160">
        <sentence content="今天" tone_score="70.0" phone_score="60.0" total_score="75.4">
          <word content="今天" symbol="jin1tian1" tone_score="70" phone_score="60"
              total_score="75.4" beg_pos="0" end_pos="160">
            <syll content="sil" rec_node_type="sil" dp_message="0" symbol="sil">
              <phone content="sil" rec_node_type="sil" dp_message="0"/>
            </syll>
            <syll content="今" symbol="jin1" dp_message="0" rec_node_type="paper">
              <phone content="j" is_yun="0" perr_msg="0" dp_message="0"/>
              <phone content="in" is_yun="1" perr_msg="1" mono_tone="TONE1" dp_message="0"/>
            </syll>
            <syll content="天" symbol="tian1" dp_message="128" rec_node_type="paper">
              <phone content="t" is_yun="0" perr_msg="2" dp_message="0"/>
              <phone content="ian" is_yun="1" perr_msg="3" mono_tone="TONE0" dp_message="0"/>
            </syll>
          </word>
        </sentence>
      </read_sentence>
    </rec_paper>
  </read_sentence>
</xml_result>
"""


def _syllable_xml(category: str = "read_syllable", phone: str = "60", tone: str = "70") -> str:
    return (
        f"<xml_result><{category}><rec_paper>"
        f'<{category} content="一" phone_score="{phone}" tone_score="{tone}" total_score="66">'
        "</" + category + "></rec_paper></" + category + "></xml_result>"
    )


class TestToneClass:
    @pytest.mark.parametrize(
        ("mono_tone", "expected"),
        [("TONE1", 1), ("TONE2", 2), ("TONE3", 3), ("TONE4", 4), ("TONE0", 5), (None, 5)],
    )
    def test_mapping(self, mono_tone: str | None, expected: int) -> None:
        assert tone_class(mono_tone) == expected

    def test_unparsed_is_neutral(self) -> None:
        assert tone_class("CONTEXT") == NEUTRAL_TONE


class TestParseScoringDocument:
    def test_sentence_tree(self) -> None:
        document = parse_scoring_document(SENTENCE_XML.encode("utf-8"))

        assert document.category == "read_sentence"
        assert document.content == "今天"
        assert document.scores.phone_score == 60.0
        assert document.fluency_score == 76.25
        assert document.is_rejected is False

        (sentence,) = document.sentences
        (word,) = sentence.words
        assert word.symbol == "jin1tian1"
        # silence is not part of the breakdown
        assert [s.content for s in word.syllables] == ["今", "天"]

        jin = word.syllables[0]
        assert jin.initial is not None and jin.initial.content == "j"
        assert jin.final is not None and jin.final.content == "in"
        assert jin.tone == 1

    def test_missing_aggregate_defaults_to_zero(self) -> None:
        document = parse_scoring_document(
            "<xml_result><read_word><rec_paper><read_word content='x'/>"
            "</rec_paper></read_word></xml_result>"
        )
        assert document.scores.total_score == 0.0
        assert document.accuracy_score == 0.0

    @pytest.mark.parametrize(
        "xml",
        [
            "<not-closed",
            "<xml_result/>",
            "<xml_result><rec_paper/></xml_result>",
            "<xml_result><rec_paper><other/></rec_paper></xml_result>",
            "<rec_paper><read_word phone_score='abc'/></rec_paper>",
        ],
    )
    def test_unusable_document(self, xml: str) -> None:
        with pytest.raises(ScoringError):
            parse_scoring_document(xml)


class TestDiffMapping:
    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("0", DiffClass.NONE),
            ("16", DiffClass.MISSED),
            ("32", DiffClass.EXTRA),
            ("64", DiffClass.REPEATED),
            ("128", DiffClass.REPLACED),
        ],
    )
    def test_known_codes(self, code: str, expected: DiffClass) -> None:
        assert classify_diff(code) is expected

    @pytest.mark.parametrize("code", ["1", "256", "", "00", " 0", "-16", "abc", None])
    def test_other_codes_are_undefined(self, code: str | None) -> None:
        assert classify_diff(code) is DiffClass.UNDEFINED


class TestWeightedScore:
    @pytest.mark.parametrize(
        ("phone", "tone", "expected"),
        [(100, 100, 100.0), (0, 0, 0.0), (100, 0, 60.0), (0, 100, 40.0), (50, 25, 40.0)],
    )
    def test_formula(self, phone: float, tone: float, expected: float) -> None:
        assert weighted_score(phone, tone) == pytest.approx(expected)

    def test_boundary_fifty_fails(self) -> None:
        assert is_pass(50) is False
        assert is_pass(50.0001) is True

    def test_evaluated_boundary_fails(self) -> None:
        # 0.6 * 50 + 0.4 * 50 == 50
        document = parse_scoring_document(_syllable_xml(phone="50", tone="50"))
        result = evaluate(document, Granularity.SYLLABLE)
        assert result.weighted_score == pytest.approx(50.0)
        assert result.passed is False


class TestPhonemeScores:
    @pytest.mark.parametrize(("perr", "score"), [("0", 100), ("1", 0), ("2", 0), ("3", 0)])
    def test_initial(self, perr: str, score: int) -> None:
        phone = Phone(content="j", is_final=False, perr_msg=perr)
        assert score_initial(phone).phone_score == score

    @pytest.mark.parametrize(
        ("perr", "phone_score", "tone_score"),
        [("0", 100, 100), ("1", 0, 100), ("2", 100, 0), ("3", 0, 0)],
    )
    def test_final(self, perr: str, phone_score: int, tone_score: int) -> None:
        phone = Phone(content="in", is_final=True, perr_msg=perr, mono_tone="TONE3")
        final = score_final(phone)
        assert final.phone_score == phone_score
        assert final.tone_score == tone_score
        assert final.tone == 3


class TestEvaluate:
    def test_sentence_breakdown(self) -> None:
        result = evaluate(parse_scoring_document(SENTENCE_XML), "sentence")

        assert result.granularity is Granularity.SENTENCE
        assert result.weighted_score == pytest.approx(0.6 * 60 + 0.4 * 70)
        assert result.passed is True
        assert result.accuracy_score == 88.5

        (word,) = result.sentences[0].words
        jin, tian = word.syllables
        assert jin.character == "今"
        assert jin.phonetic == "jin1"
        assert jin.error is DiffClass.NONE
        assert jin.initial is not None and jin.initial.phone_score == 100
        assert jin.final is not None
        assert (jin.final.phone_score, jin.final.tone_score, jin.final.tone) == (0, 100, 1)

        assert tian.error is DiffClass.REPLACED
        assert tian.initial is not None and tian.initial.phone_score == 0
        assert tian.final is not None and tian.final.tone == 5

    def test_granularity_mismatch(self) -> None:
        document = parse_scoring_document(SENTENCE_XML)
        with pytest.raises(ScoringError, match="read_word"):
            evaluate(document, Granularity.WORD)

    def test_as_dict_uses_pass_key(self) -> None:
        data = evaluate(parse_scoring_document(_syllable_xml()), "syllable").as_dict()
        assert data["pass"] is True
        assert "passed" not in data
        assert data["weighted_score"] == pytest.approx(64.0)
