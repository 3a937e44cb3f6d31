"""
Domain Enumerations & Type Taxonomy
====================================
Closed enumerations for analysis options, suggestion payloads and the
failure taxonomy. String enums serialize to the wire values clients
already understand.

Architecture: Type-Driven Design + ADT (Algebraic Data Types)
"""

from enum import Enum


class Severity(str, Enum):
    """Suggestion severity as presented to the writer."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Impact(str, Enum):
    """Expected effect of applying a style suggestion."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SuggestionType(str, Enum):
    GRAMMAR = "grammar"
    STYLE = "style"
    READABILITY = "readability"


class StyleCategory(str, Enum):
    CLARITY = "clarity"
    CONCISENESS = "conciseness"
    TONE = "tone"
    FORMALITY = "formality"
    WORD_CHOICE = "word-choice"


class ReadabilityMetricType(str, Enum):
    """Readability dimension a suggestion targets."""

    SENTENCE_LENGTH = "sentence-length"
    WORD_COMPLEXITY = "word-complexity"
    PARAGRAPH_STRUCTURE = "paragraph-structure"
    TRANSITIONS = "transitions"


class AudienceLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class DocumentType(str, Enum):
    """
    Kind of document being analyzed.

    Several types share the general prompt profile; the profile lookup
    lives on the enum so prompt code never handles unknown members.
    """

    ESSAY = "essay"
    EMAIL = "email"
    LETTER = "letter"
    REPORT = "report"
    ACADEMIC = "academic"
    BUSINESS = "business"
    CREATIVE_WRITING = "creative-writing"
    SCRIPT = "script"
    GENERAL = "general"
    OTHER = "other"

    @property
    def prompt_profile(self) -> "DocumentType":
        """Document type whose prompt profile applies to this type."""
        if self in (DocumentType.LETTER, DocumentType.REPORT, DocumentType.OTHER):
            return DocumentType.GENERAL
        return self


class AnalysisMode(str, Enum):
    FULL = "full"
    REALTIME = "realtime"

    @property
    def request_id_prefix(self) -> str:
        return "rt" if self is AnalysisMode.REALTIME else "req"


class CacheTier(str, Enum):
    """Where a cached result was found."""

    CLIENT = "client"
    SERVER = "server"


class ParseStage(str, Enum):
    """
    Terminal state reached by the response decoder.

    Ordered from most to least complete output.
    """

    JSON = "json"
    REGEX_ARRAYS = "regex_arrays"
    REPAIRED_JSON = "repaired_json"
    EMPTY_FALLBACK = "empty_fallback"

    @property
    def is_recovery(self) -> bool:
        return self is not ParseStage.JSON


class ErrorCategory(str, Enum):
    """
    Closed taxonomy of failure causes.

    Every failure observed by the gateway lands in exactly one category.
    """

    PARSE_ERROR = "parse_error"
    API_ERROR = "api_error"
    VALIDATION_ERROR = "validation_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    TIMEOUT_ERROR = "timeout_error"
    NETWORK_ERROR = "network_error"

    @property
    def is_transient(self) -> bool:
        """Categories that may succeed when the same call is repeated."""
        return self in (
            ErrorCategory.API_ERROR,
            ErrorCategory.TIMEOUT_ERROR,
            ErrorCategory.NETWORK_ERROR,
        )


class ErrorSeverity(str, Enum):
    """
    Error classification by impact severity.

    Used for alerting and fallback decisions, never for retry decisions.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANKS[self]

    @property
    def should_alert(self) -> bool:
        """Determine if severity warrants immediate alert."""
        return self.rank >= _SEVERITY_RANKS[ErrorSeverity.HIGH]


_SEVERITY_RANKS = {
    ErrorSeverity.LOW: 1,
    ErrorSeverity.MEDIUM: 2,
    ErrorSeverity.HIGH: 3,
    ErrorSeverity.CRITICAL: 4,
}


class ErrorCode(str, Enum):
    """Stable error codes exposed to callers."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    INVALID_CONTENT = "INVALID_CONTENT"
    CONTENT_TOO_LONG = "CONTENT_TOO_LONG"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    API_ERROR = "API_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    @property
    def is_validation(self) -> bool:
        """Codes produced by request validation or quota checks."""
        return self in (
            ErrorCode.RATE_LIMIT_EXCEEDED,
            ErrorCode.CONTENT_TOO_LONG,
            ErrorCode.INVALID_CONTENT,
        )
