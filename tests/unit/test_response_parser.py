"""
Unit Tests for the Response Parser
==================================

Covers each recovery stage, per-entry sanitization and metric clamping.
The parser must never raise, whatever the model produced.
"""

import json

import pytest

from core.enums import Impact, ParseStage, ReadabilityMetricType, Severity, StyleCategory
from intelligence.response_parser import ResponseParser
from tests.factories import make_model_output, make_suggestion


@pytest.fixture
def parser():
    return ResponseParser(max_suggestions=20, min_confidence=0.1)


def _payload(**arrays) -> str:
    return json.dumps(arrays)


class TestStages:
    def test_clean_json(self, parser):
        parsed = parser.parse(make_model_output(grammar=2, style=1, readability=1))

        assert parsed.stage is ParseStage.JSON
        assert len(parsed.grammar_suggestions) == 2
        assert len(parsed.style_suggestions) == 1
        assert len(parsed.readability_suggestions) == 1
        assert parsed.total_suggestions == 4
        assert parsed.readability_metrics.flesch_score == 62
        assert parsed.metadata.fallbacks_used == []

    def test_fenced_json_with_prose_and_trailing_commas(self, parser):
        raw = (
            "Here is the analysis:\n```json\n"
            '{"grammarSuggestions": [{"id": "g1", "originalText": "teh", "suggestedText": "the",}],'
            ' "styleSuggestions": [], "readabilitySuggestions": [],}\n```'
        )

        parsed = parser.parse(raw)

        assert parsed.stage is ParseStage.JSON
        assert parsed.grammar_suggestions[0].suggested_text == "the"

    def test_regex_stage_salvages_valid_arrays(self, parser):
        raw = (
            'Sure! {"grammarSuggestions": [{"id": "g1", "originalText": "teh", '
            '"suggestedText": "the", "startOffset": 0, "endOffset": 3}], '
            '"styleSuggestions": [ oops ], "readabilityMetrics": {"fleschScore": 65}'
        )

        parsed = parser.parse(raw)

        assert parsed.stage is ParseStage.REGEX_ARRAYS
        assert [s.id for s in parsed.grammar_suggestions] == ["g1"]
        assert parsed.style_suggestions == []
        assert parsed.readability_metrics.flesch_score == 65
        assert "regex_arrays" in parsed.metadata.fallbacks_used
        assert parsed.metadata.parse_attempts == 2

    def test_truncated_output_is_repaired(self, parser):
        raw = '{"readabilityMetrics": {"fleschScore": 70, "gradeLevel": 8'

        parsed = parser.parse(raw)

        assert parsed.stage is ParseStage.REPAIRED_JSON
        assert parsed.readability_metrics.flesch_score == 70
        assert parsed.readability_metrics.grade_level == 8
        assert parsed.total_suggestions == 0

    @pytest.mark.parametrize("raw", ["", "I cannot help with that", None, "<<<>>>", "[1, 2, 3]"])
    def test_unrecoverable_output_yields_empty_fallback(self, parser, raw):
        parsed = parser.parse(raw)

        assert parsed.is_complete_failure
        assert parsed.total_suggestions == 0
        assert parsed.metadata.warnings == ["Complete parse failure - using emergency fallback"]
        assert parsed.metadata.fallbacks_used == ["Emergency empty response"]


class TestEntrySanitization:
    def test_entries_missing_required_fields_are_dropped(self, parser):
        raw = _payload(
            grammarSuggestions=[
                make_suggestion("grammar", 1),
                make_suggestion("grammar", 2, originalText=""),
                {"id": "g3", "suggestedText": "x"},
                "not an object",
            ]
        )

        parsed = parser.parse(raw)

        assert [s.id for s in parsed.grammar_suggestions] == ["grammar_1"]
        assert any("missing required fields" in w for w in parsed.metadata.warnings)
        assert any("not an object" in w for w in parsed.metadata.warnings)

    def test_confidence_rules(self, parser):
        raw = _payload(
            grammarSuggestions=[
                make_suggestion("grammar", 1, confidence=0.05),
                make_suggestion("grammar", 2, confidence="0.9"),
                make_suggestion("grammar", 3, confidence=1.7),
                make_suggestion("grammar", 4, confidence=None),
                make_suggestion("grammar", 5, confidence=0.1),
            ]
        )

        parsed = parser.parse(raw)
        by_id = {s.id: s.confidence for s in parsed.grammar_suggestions}

        assert "grammar_1" not in by_id
        assert by_id["grammar_2"] == 0.5
        assert by_id["grammar_3"] == 1.0
        assert by_id["grammar_4"] == 0.5
        assert by_id["grammar_5"] == 0.1

    def test_offsets_are_normalized(self, parser):
        raw = _payload(
            grammarSuggestions=[
                make_suggestion("grammar", 1, startOffset=-4, endOffset=3),
                make_suggestion("grammar", 2, startOffset=10, endOffset=2),
                make_suggestion("grammar", 3, startOffset="12abc", endOffset="15"),
                make_suggestion("grammar", 4, startOffset="x", endOffset=None),
            ]
        )

        spans = {
            s.id: (s.start_offset, s.end_offset)
            for s in parser.parse(raw).grammar_suggestions
        }

        assert spans["grammar_1"] == (0, 3)
        assert spans["grammar_2"] == (10, 10)
        assert spans["grammar_3"] == (12, 15)
        assert spans["grammar_4"] == (0, 0)

    def test_unknown_enum_values_take_defaults(self, parser):
        raw = _payload(
            grammarSuggestions=[make_suggestion("grammar", 1, severity="catastrophic")],
            styleSuggestions=[
                make_suggestion("style", 1, styleCategory="vibes", impact="huge", explanation="")
            ],
            readabilitySuggestions=[make_suggestion("readability", 1, metric="length")],
        )

        parsed = parser.parse(raw)

        assert parsed.grammar_suggestions[0].severity is Severity.MEDIUM
        assert parsed.grammar_suggestions[0].grammar_rule == "General Grammar"
        style = parsed.style_suggestions[0]
        assert style.style_category is StyleCategory.CLARITY
        assert style.impact is Impact.MEDIUM
        assert style.explanation == "Style improvement suggested"
        readability = parsed.readability_suggestions[0]
        assert readability.metric is ReadabilityMetricType.SENTENCE_LENGTH
        assert readability.target_level == "College level"

    def test_lists_are_truncated(self):
        parser = ResponseParser(max_suggestions=2)

        parsed = parser.parse(make_model_output(grammar=3))

        assert len(parsed.grammar_suggestions) == 2
        assert any("truncated from 3 to 2" in w for w in parsed.metadata.warnings)

    def test_non_list_arrays_become_empty(self, parser):
        parsed = parser.parse(_payload(grammarSuggestions={"id": "g1"}, styleSuggestions=None))

        assert parsed.grammar_suggestions == []
        assert parsed.style_suggestions == []
        assert any("Grammar suggestions not found" in w for w in parsed.metadata.warnings)


class TestMetrics:
    def test_values_are_clamped_into_range(self, parser):
        parsed = parser.parse(
            make_model_output(
                grammar=0,
                fleschScore=150,
                gradeLevel=-3,
                avgSyllablesPerWord=0.5,
                complexWordsPercent=240,
                wordCount="42 words",
                sentenceCount=3.9,
            )
        )
        metrics = parsed.readability_metrics

        assert metrics.flesch_score == 100
        assert metrics.grade_level == 0
        assert metrics.avg_syllables_per_word == 1
        assert metrics.complex_words_percent == 100
        assert metrics.word_count == 42
        assert metrics.sentence_count == 3

    def test_zero_is_a_valid_value(self, parser):
        parsed = parser.parse(make_model_output(grammar=0, fleschScore=0, wordCount=0))

        assert parsed.readability_metrics.flesch_score == 0
        assert parsed.readability_metrics.word_count == 0

    def test_invalid_values_take_defaults(self, parser):
        parsed = parser.parse(
            make_model_output(grammar=0, fleschScore="n/a", gradeLevel=None, avgSentenceLength=True)
        )
        metrics = parsed.readability_metrics

        assert metrics.flesch_score == 50
        assert metrics.grade_level == 12
        assert metrics.avg_sentence_length == 15

    def test_missing_metrics_use_defaults(self, parser):
        parsed = parser.parse(_payload(grammarSuggestions=[]))

        assert parsed.readability_metrics.flesch_score == 50
        assert any("Readability metrics missing" in w for w in parsed.metadata.warnings)
