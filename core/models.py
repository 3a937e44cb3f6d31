"""
Domain Models: Analysis Requests, Results and Audit Records
============================================================
Pydantic models shared by every layer of the gateway. Python code uses
snake_case attributes; the wire format (model output, API payloads and
stored JSON) uses camelCase through the alias generator.

Architecture: Value Objects + Validated Data Transfer Objects
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from core.enums import (
    AudienceLevel,
    DocumentType,
    ErrorCategory,
    ErrorCode,
    ErrorSeverity,
    Impact,
    ReadabilityMetricType,
    Severity,
    StyleCategory,
    SuggestionType,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GatewayModel(BaseModel):
    """Base model with camelCase wire aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict using wire field names, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# REQUEST MODELS
# =============================================================================


class AnalysisOptions(GatewayModel):
    """
    Which analyses to run and how to tailor them.

    Unknown fields (client request IDs, UI state) are dropped on
    validation so they can never leak into the content fingerprint.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    include_grammar: bool = False
    include_style: bool = False
    include_readability: bool = False
    audience_level: Optional[AudienceLevel] = None
    document_type: Optional[DocumentType] = None

    @property
    def has_enabled_analysis(self) -> bool:
        return self.include_grammar or self.include_style or self.include_readability

    @property
    def effective_document_type(self) -> DocumentType:
        return self.document_type or DocumentType.GENERAL

    def fingerprint_fields(self) -> dict[str, Any]:
        """Exactly the option values that change model output."""
        return {
            "includeGrammar": self.include_grammar,
            "includeStyle": self.include_style,
            "includeReadability": self.include_readability,
            "audienceLevel": self.audience_level.value if self.audience_level else None,
            "documentType": self.document_type.value if self.document_type else None,
        }


class AnalysisRequest(GatewayModel):
    """Authenticated analysis request as handed to the gateway."""

    user_id: str
    text: str
    options: AnalysisOptions
    request_id: Optional[str] = None
    content_hash: Optional[str] = None


# =============================================================================
# SUGGESTIONS & METRICS
# =============================================================================


class Suggestion(GatewayModel):
    """Fields shared by every suggestion kind."""

    id: str
    type: SuggestionType
    severity: Severity = Severity.MEDIUM
    start_offset: int = Field(default=0, ge=0)
    end_offset: int = Field(default=0, ge=0)
    original_text: str
    suggested_text: str
    explanation: str = ""
    category: str = ""
    document_specific_category: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_span(self) -> "Suggestion":
        if self.end_offset < self.start_offset:
            raise ValueError("end_offset must not precede start_offset")
        return self


class GrammarSuggestion(Suggestion):
    type: SuggestionType = SuggestionType.GRAMMAR
    grammar_rule: str = "General Grammar"
    esl_explanation: str = ""


class StyleSuggestion(Suggestion):
    type: SuggestionType = SuggestionType.STYLE
    style_category: StyleCategory = StyleCategory.CLARITY
    impact: Impact = Impact.MEDIUM


class ReadabilitySuggestion(Suggestion):
    type: SuggestionType = SuggestionType.READABILITY
    metric: ReadabilityMetricType = ReadabilityMetricType.SENTENCE_LENGTH
    target_level: str = "College level"


class ReadabilityMetrics(GatewayModel):
    """Document-level readability figures, each bounded to a plausible range."""

    flesch_score: float = Field(default=50, ge=0, le=100)
    grade_level: float = Field(default=12, ge=0, le=20)
    avg_sentence_length: float = Field(default=15, ge=0)
    avg_syllables_per_word: float = Field(default=1.5, ge=1)
    word_count: int = Field(default=0, ge=0)
    sentence_count: int = Field(default=0, ge=0)
    complex_words_percent: float = Field(default=15, ge=0, le=100)


class ParseMetadata(GatewayModel):
    """How much recovery the response decoder needed."""

    original_length: int = 0
    cleaned_length: int = 0
    parse_attempts: int = 0
    warnings: list[str] = Field(default_factory=list)
    fallbacks_used: list[str] = Field(default_factory=list)


class AnalysisResult(GatewayModel):
    """Validated, bounded outcome of one analysis."""

    analysis_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    content_hash: str = ""
    grammar_suggestions: list[GrammarSuggestion] = Field(default_factory=list)
    style_suggestions: list[StyleSuggestion] = Field(default_factory=list)
    readability_suggestions: list[ReadabilitySuggestion] = Field(default_factory=list)
    readability_metrics: ReadabilityMetrics = Field(default_factory=ReadabilityMetrics)
    total_suggestions: int = 0
    processing_time_ms: int = 0
    is_lightweight: bool = False
    is_fallback: bool = False
    parse_metadata: Optional[ParseMetadata] = None

    @model_validator(mode="after")
    def count_suggestions(self) -> "AnalysisResult":
        self.total_suggestions = (
            len(self.grammar_suggestions)
            + len(self.style_suggestions)
            + len(self.readability_suggestions)
        )
        return self


# =============================================================================
# STORE RECORDS
# =============================================================================


class RateWindow(GatewayModel):
    """Per-user quota counters; timestamps are epoch milliseconds."""

    user_id: str
    window_start: int
    request_count: int = Field(default=0, ge=0)
    character_count: int = Field(default=0, ge=0)
    last_request: int = 0


class CacheEntry(GatewayModel):
    """Cached analysis for one (user, fingerprint) pair; times in epoch ms."""

    fingerprint: str
    user_id: str
    result: AnalysisResult
    cached_at: int
    expires_at: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at


# =============================================================================
# ERRORS & AUDIT
# =============================================================================


class AnalysisError(GatewayModel):
    """Caller-facing error payload."""

    code: ErrorCode
    message: str
    details: Optional[str] = None
    retry_after: Optional[int] = None


class ErrorResolution(GatewayModel):
    recovery_method: str
    successful: bool
    fallback_used: bool
    resolved_at: datetime = Field(default_factory=utc_now)


class ErrorReport(GatewayModel):
    """Audit record for one failed attempt."""

    error_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    user_id: str
    request_id: str
    category: ErrorCategory
    severity: ErrorSeverity
    processed_error: AnalysisError
    retry_attempt: int = 0
    content_length: int = 0
    options: Optional[AnalysisOptions] = None
    resolution: Optional[ErrorResolution] = None


class TopError(GatewayModel):
    message: str
    count: int


class ErrorStatistics(GatewayModel):
    total_errors: int = 0
    errors_by_category: dict[ErrorCategory, int] = Field(default_factory=dict)
    errors_by_severity: dict[ErrorSeverity, int] = Field(default_factory=dict)
    recovery_rate: float = 0.0
    top_errors: list[TopError] = Field(default_factory=list)


# =============================================================================
# RESPONSES
# =============================================================================


class AnalyzeResponse(GatewayModel):
    """Result envelope returned for every analysis call."""

    success: bool
    data: Optional[AnalysisResult] = None
    error: Optional[AnalysisError] = None
    request_id: str

    @classmethod
    def ok(cls, result: AnalysisResult, request_id: str) -> "AnalyzeResponse":
        return cls(success=True, data=result, request_id=request_id)

    @classmethod
    def failed(cls, error: AnalysisError, request_id: str) -> "AnalyzeResponse":
        return cls(success=False, error=error, request_id=request_id)


class RateLimitStatus(GatewayModel):
    requests_used: int
    requests_remaining: int
    characters_used: int
    characters_remaining: int
    window_reset_time: int


__all__ = [
    "GatewayModel",
    "AnalysisOptions",
    "AnalysisRequest",
    "Suggestion",
    "GrammarSuggestion",
    "StyleSuggestion",
    "ReadabilitySuggestion",
    "ReadabilityMetrics",
    "ParseMetadata",
    "AnalysisResult",
    "RateWindow",
    "CacheEntry",
    "AnalysisError",
    "ErrorResolution",
    "ErrorReport",
    "TopError",
    "ErrorStatistics",
    "AnalyzeResponse",
    "RateLimitStatus",
    "utc_now",
]
