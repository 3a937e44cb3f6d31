"""
System Constants & Invariants
==============================
Immutable domain constants defining the model response contract,
plausible metric ranges, store key layout and failure heuristics.

Architecture: Value Objects + Namespace Organization
"""

from dataclasses import dataclass
from typing import Final, Optional

# =============================================================================
# MODEL RESPONSE CONTRACT
# =============================================================================

GRAMMAR_KEY: Final = "grammarSuggestions"
STYLE_KEY: Final = "styleSuggestions"
READABILITY_KEY: Final = "readabilitySuggestions"
METRICS_KEY: Final = "readabilityMetrics"

SUGGESTION_ARRAY_KEYS: Final = (GRAMMAR_KEY, STYLE_KEY, READABILITY_KEY)

# A suggestion lacking any of these cannot be applied to the document
REQUIRED_SUGGESTION_FIELDS: Final = ("id", "originalText", "suggestedText")

DEFAULT_CONFIDENCE: Final = 0.5


# =============================================================================
# READABILITY METRIC BOUNDS
# =============================================================================


@dataclass(frozen=True)
class MetricBounds:
    """Plausible range and substitute value for one readability metric."""

    default: float
    minimum: float
    maximum: Optional[float] = None
    integral: bool = False

    def clamp(self, value: float) -> float:
        value = max(self.minimum, value)
        if self.maximum is not None:
            value = min(self.maximum, value)
        return value


# Keyed by the wire name the model is instructed to emit
READABILITY_METRIC_BOUNDS: Final[dict[str, MetricBounds]] = {
    "fleschScore": MetricBounds(default=50, minimum=0, maximum=100),
    "gradeLevel": MetricBounds(default=12, minimum=0, maximum=20),
    "avgSentenceLength": MetricBounds(default=15, minimum=0),
    "avgSyllablesPerWord": MetricBounds(default=1.5, minimum=1),
    "wordCount": MetricBounds(default=0, minimum=0, integral=True),
    "sentenceCount": MetricBounds(default=0, minimum=0, integral=True),
    "complexWordsPercent": MetricBounds(default=15, minimum=0, maximum=100),
}


# =============================================================================
# SUGGESTION DEFAULTS
# =============================================================================


@dataclass(frozen=True)
class SuggestionDefaults:
    """Substitutes for optional fields the model leaves out."""

    GRAMMAR_EXPLANATION: str = "Grammar correction suggested"
    STYLE_EXPLANATION: str = "Style improvement suggested"
    READABILITY_EXPLANATION: str = "Readability improvement suggested"
    CATEGORY: str = "general"
    GRAMMAR_RULE: str = "General Grammar"
    TARGET_LEVEL: str = "College level"


SUGGESTION_DEFAULTS: Final = SuggestionDefaults()


# =============================================================================
# STORE KEY LAYOUT
# =============================================================================


@dataclass(frozen=True)
class StoreKeys:
    """
    Redis key templates; every key is namespaced by the configured prefix.

    Sorted-set indexes live under ``{prefix}:idx:`` and record keys never
    do, so no user or error ID can name an index.
    """

    RATE_WINDOW: str = "{prefix}:rate:{user_id}"
    CACHE_ENTRY: str = "{prefix}:cache:{user_id}:{fingerprint}"
    ERROR_REPORT: str = "{prefix}:errors:{error_id}"

    RATE_ACTIVITY_INDEX: str = "{prefix}:idx:rate-activity"
    CACHE_EXPIRY_INDEX: str = "{prefix}:idx:cache-expiry"
    ERROR_TIME_INDEX: str = "{prefix}:idx:error-timeline"


STORE_KEYS: Final = StoreKeys()


# =============================================================================
# FAILURE HEURISTICS
# =============================================================================

TIMEOUT_SOCKET_CODES: Final = frozenset({"ETIMEDOUT", "ECONNRESET"})
NETWORK_SOCKET_CODES: Final = frozenset({"ENOTFOUND", "ECONNREFUSED"})
PARSE_MESSAGE_MARKERS: Final = ("JSON", "parse", "validation")

# Fixed retry hint returned when the model provider itself throttles us
PROVIDER_RATE_LIMIT_RETRY_AFTER: Final = 60

# Number of messages reported in error statistics
TOP_ERRORS_LIMIT: Final = 10
