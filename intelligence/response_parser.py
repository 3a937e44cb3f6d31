"""
Response Parser - Staged Recovery Decoder
=========================================

Turns raw completion text into validated suggestion lists and metrics.

Stages, from most to least complete output:
1. JSON: fences stripped, JSON span sliced, trailing commas removed, decoded
2. REGEX_ARRAYS: each suggestion array located and decoded in isolation
3. REPAIRED_JSON: truncated output closed by brace balancing
4. EMPTY_FALLBACK: canonical empty result

Every entry is sanitized independently so one bad field never discards
the response. ``parse`` never raises.
"""

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from config.constants import (
    DEFAULT_CONFIDENCE,
    GRAMMAR_KEY,
    METRICS_KEY,
    READABILITY_KEY,
    READABILITY_METRIC_BOUNDS,
    REQUIRED_SUGGESTION_FIELDS,
    STYLE_KEY,
    SUGGESTION_ARRAY_KEYS,
    SUGGESTION_DEFAULTS,
)
from core.enums import Impact, ParseStage, ReadabilityMetricType, Severity, StyleCategory
from core.models import (
    GrammarSuggestion,
    ParseMetadata,
    ReadabilityMetrics,
    ReadabilitySuggestion,
    StyleSuggestion,
)

_FENCE_OPEN = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*$")
_TRAILING_COMMA_OBJECT = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY = re.compile(r",\s*]")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_LEADING_FLOAT = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")

_ARRAY_PATTERNS = {
    key: re.compile(rf'"{key}"\s*:\s*(\[[^\]]*\])') for key in SUGGESTION_ARRAY_KEYS
}
_METRICS_PATTERN = re.compile(rf'"{METRICS_KEY}"\s*:\s*(\{{[^}}]*\}})')


@dataclass
class ParsedResponse:
    """Decoder output; always structurally valid."""

    grammar_suggestions: List[GrammarSuggestion] = field(default_factory=list)
    style_suggestions: List[StyleSuggestion] = field(default_factory=list)
    readability_suggestions: List[ReadabilitySuggestion] = field(default_factory=list)
    readability_metrics: ReadabilityMetrics = field(default_factory=ReadabilityMetrics)
    metadata: ParseMetadata = field(default_factory=ParseMetadata)
    stage: ParseStage = ParseStage.JSON

    @property
    def total_suggestions(self) -> int:
        return (
            len(self.grammar_suggestions)
            + len(self.style_suggestions)
            + len(self.readability_suggestions)
        )

    @property
    def is_complete_failure(self) -> bool:
        return self.stage is ParseStage.EMPTY_FALLBACK


# =============================================================================
# COERCION HELPERS
# =============================================================================


def _to_int(value: Any) -> Optional[int]:
    """Leading integer of a number or numeric string, like ``parseInt``."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(1)) if match else None
    return None


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_FLOAT.match(value)
        if match:
            number = float(match.group(1))
            return number if math.isfinite(number) else None
    return None


def _coerce_enum(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _text(value: Any, default: str) -> str:
    return str(value) if value else default


class ResponseParser:
    """
    Recovery decoder for model output.

    Usage:
        parser = ResponseParser(max_suggestions=20, min_confidence=0.1)
        parsed = parser.parse(raw_text)
    """

    def __init__(self, max_suggestions: int = 20, min_confidence: float = 0.1):
        self.max_suggestions = max_suggestions
        self.min_confidence = min_confidence

    def parse(self, raw: Optional[str]) -> ParsedResponse:
        """
        Decode ``raw`` into a sanitized response.

        Never raises; unexpected failures yield the empty result.
        """
        raw = raw if isinstance(raw, str) else ""
        try:
            return self._parse(raw)
        except Exception as e:
            logger.error(f"[ResponseParser] Complete parse failure, using empty result: {e}")
            return self.empty_result(len(raw))

    def empty_result(self, original_length: int = 0) -> ParsedResponse:
        return ParsedResponse(
            metadata=ParseMetadata(
                original_length=original_length,
                cleaned_length=0,
                parse_attempts=1,
                warnings=["Complete parse failure - using emergency fallback"],
                fallbacks_used=["Emergency empty response"],
            ),
            stage=ParseStage.EMPTY_FALLBACK,
        )

    # =========================================================================
    # STAGES
    # =========================================================================

    def _parse(self, raw: str) -> ParsedResponse:
        metadata = ParseMetadata(original_length=len(raw))
        cleaned = self.clean(raw)
        metadata.cleaned_length = len(cleaned)
        metadata.parse_attempts = 1

        data = self._decode_object(cleaned)
        stage = ParseStage.JSON

        if data is None:
            logger.warning("[ResponseParser] Primary JSON parse failed, attempting recovery")
            metadata.parse_attempts += 1
            data = self._extract_arrays(cleaned)
            stage = ParseStage.REGEX_ARRAYS

            if data is None:
                metadata.parse_attempts += 1
                data = self._repair_truncated(cleaned)
                stage = ParseStage.REPAIRED_JSON

            if data is None:
                return self.empty_result(len(raw))

            metadata.fallbacks_used.append(stage.value)
            metadata.warnings.append(f"Recovered response using {stage.value}")

        parsed = ParsedResponse(metadata=metadata, stage=stage)
        parsed.grammar_suggestions = self._sanitize_list(
            data.get(GRAMMAR_KEY), self._grammar, "Grammar", metadata
        )
        parsed.style_suggestions = self._sanitize_list(
            data.get(STYLE_KEY), self._style, "Style", metadata
        )
        parsed.readability_suggestions = self._sanitize_list(
            data.get(READABILITY_KEY), self._readability, "Readability", metadata
        )
        parsed.readability_metrics = self.sanitize_metrics(data.get(METRICS_KEY), metadata)

        logger.debug(
            f"[ResponseParser] stage={stage.value} | grammar={len(parsed.grammar_suggestions)} "
            f"| style={len(parsed.style_suggestions)} "
            f"| readability={len(parsed.readability_suggestions)} "
            f"| warnings={len(metadata.warnings)}"
        )
        return parsed

    @staticmethod
    def clean(raw: str) -> str:
        """Strip fences and surrounding prose, drop trailing commas."""
        cleaned = raw.strip()
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)

        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end > start:
            cleaned = cleaned[start : end + 1]

        cleaned = _TRAILING_COMMA_OBJECT.sub("}", cleaned)
        cleaned = _TRAILING_COMMA_ARRAY.sub("]", cleaned)
        return cleaned

    @staticmethod
    def _decode_object(text: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, RecursionError):
            return None
        return data if isinstance(data, dict) else None

    def _extract_arrays(self, text: str) -> Optional[Dict[str, Any]]:
        """Decode each suggestion array on its own; None when none is located."""
        located = False
        data: Dict[str, Any] = {}

        for key, pattern in _ARRAY_PATTERNS.items():
            match = pattern.search(text)
            if not match:
                continue
            located = True
            try:
                data[key] = json.loads(match.group(1))
            except json.JSONDecodeError:
                logger.warning(f"[ResponseParser] Failed to parse {key} array")
                data[key] = []

        if not located:
            return None

        metrics_match = _METRICS_PATTERN.search(text)
        if metrics_match:
            metrics = self._decode_object(metrics_match.group(1))
            if metrics is not None:
                data[METRICS_KEY] = metrics
        return data

    def _repair_truncated(self, text: str) -> Optional[Dict[str, Any]]:
        """Close unbalanced braces; failing that, cut at the last comma."""
        missing = text.count("{") - text.count("}")
        fixed = text + "}" * max(0, missing)

        data = self._decode_object(fixed)
        if data is not None:
            return data

        last_comma = fixed.rfind(",")
        if last_comma > 0:
            return self._decode_object(fixed[:last_comma] + "}")
        return None

    # =========================================================================
    # SANITIZATION
    # =========================================================================

    def _sanitize_list(self, entries: Any, build, label: str, metadata: ParseMetadata) -> list:
        if not isinstance(entries, list):
            metadata.warnings.append(f"{label} suggestions not found or invalid format")
            return []

        sanitized = []
        for raw in entries:
            suggestion = self._sanitize_entry(raw, build, label, metadata)
            if suggestion is not None:
                sanitized.append(suggestion)

        if len(sanitized) > self.max_suggestions:
            metadata.warnings.append(
                f"{label} suggestions truncated from {len(sanitized)} to {self.max_suggestions}"
            )
        return sanitized[: self.max_suggestions]

    def _sanitize_entry(self, raw: Any, build, label: str, metadata: ParseMetadata):
        if not isinstance(raw, dict):
            metadata.warnings.append(f"{label} suggestion is not an object")
            return None

        if any(not raw.get(name) for name in REQUIRED_SUGGESTION_FIELDS):
            metadata.warnings.append(f"{label} suggestion missing required fields")
            return None

        # Only JSON numbers count; numeric strings take the default
        raw_confidence = raw.get("confidence")
        confidence = _to_float(raw_confidence) if isinstance(raw_confidence, (int, float)) else None
        if confidence is None:
            confidence = DEFAULT_CONFIDENCE
        if confidence < self.min_confidence:
            metadata.warnings.append(f"{label} suggestion confidence too low: {confidence}")
            return None
        confidence = min(1.0, confidence)

        start = max(0, _to_int(raw.get("startOffset")) or 0)
        end_value = _to_int(raw.get("endOffset"))
        end = max(start, end_value if end_value is not None else start)

        specific = raw.get("documentSpecificCategory")
        common = {
            "id": str(raw["id"]),
            "severity": _coerce_enum(Severity, raw.get("severity"), Severity.MEDIUM),
            "start_offset": start,
            "end_offset": end,
            "original_text": str(raw["originalText"]),
            "suggested_text": str(raw["suggestedText"]),
            "category": _text(raw.get("category"), SUGGESTION_DEFAULTS.CATEGORY),
            "document_specific_category": str(specific) if specific else None,
            "confidence": confidence,
        }

        try:
            return build(raw, common)
        except ValueError as e:
            metadata.warnings.append(f"Failed to validate {label.lower()} suggestion: {e}")
            return None

    @staticmethod
    def _grammar(raw: Dict[str, Any], common: Dict[str, Any]) -> GrammarSuggestion:
        return GrammarSuggestion(
            **common,
            explanation=_text(raw.get("explanation"), SUGGESTION_DEFAULTS.GRAMMAR_EXPLANATION),
            grammar_rule=_text(raw.get("grammarRule"), SUGGESTION_DEFAULTS.GRAMMAR_RULE),
            esl_explanation=_text(raw.get("eslExplanation"), ""),
        )

    @staticmethod
    def _style(raw: Dict[str, Any], common: Dict[str, Any]) -> StyleSuggestion:
        return StyleSuggestion(
            **common,
            explanation=_text(raw.get("explanation"), SUGGESTION_DEFAULTS.STYLE_EXPLANATION),
            style_category=_coerce_enum(StyleCategory, raw.get("styleCategory"), StyleCategory.CLARITY),
            impact=_coerce_enum(Impact, raw.get("impact"), Impact.MEDIUM),
        )

    @staticmethod
    def _readability(raw: Dict[str, Any], common: Dict[str, Any]) -> ReadabilitySuggestion:
        return ReadabilitySuggestion(
            **common,
            explanation=_text(raw.get("explanation"), SUGGESTION_DEFAULTS.READABILITY_EXPLANATION),
            metric=_coerce_enum(
                ReadabilityMetricType, raw.get("metric"), ReadabilityMetricType.SENTENCE_LENGTH
            ),
            target_level=_text(raw.get("targetLevel"), SUGGESTION_DEFAULTS.TARGET_LEVEL),
        )

    @staticmethod
    def sanitize_metrics(raw: Any, metadata: ParseMetadata) -> ReadabilityMetrics:
        """Clamp each metric independently; invalid values take their default."""
        if not isinstance(raw, dict):
            metadata.warnings.append("Readability metrics missing or invalid, using defaults")
            return ReadabilityMetrics()

        values: Dict[str, Any] = {}
        for wire_name, bounds in READABILITY_METRIC_BOUNDS.items():
            number: Optional[float]
            if bounds.integral:
                as_int = _to_int(raw.get(wire_name))
                number = float(as_int) if as_int is not None else None
            else:
                number = _to_float(raw.get(wire_name))

            value = bounds.clamp(bounds.default if number is None else number)
            values[wire_name] = int(value) if bounds.integral else value

        return ReadabilityMetrics.model_validate(values)


__all__ = ["ResponseParser", "ParsedResponse"]
