"""
Failure Policy: Classification, Retry, Fallback and Audit
=========================================================

Maps arbitrary call failures onto a closed category taxonomy and decides
what happens next:

- RETRY: transient categories (API, timeout, network) within the attempt budget
- FALLBACK: parse failures and high/critical severity once retries are exhausted
- SURFACE: everything else, as a caller-facing ``AnalysisError``

Every failed attempt is recorded as an ``ErrorReport``. Serving a fallback
updates the report with its resolution. Audit failures are logged and
swallowed; they never affect the analysis outcome.

Architecture: Strategy Pattern + Immutable Decision Values
"""

import asyncio
import math
import random
import secrets
import time
from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional, Union

import httpx
from loguru import logger

from config.constants import (
    NETWORK_SOCKET_CODES,
    PARSE_MESSAGE_MARKERS,
    PROVIDER_RATE_LIMIT_RETRY_AFTER,
    TIMEOUT_SOCKET_CODES,
    TOP_ERRORS_LIMIT,
)
from config.settings import RetrySettings
from core.enums import ErrorCategory, ErrorCode, ErrorSeverity
from core.models import (
    AnalysisError,
    AnalysisOptions,
    AnalysisResult,
    ErrorReport,
    ErrorResolution,
    ErrorStatistics,
    ParseMetadata,
    TopError,
    utc_now,
)
from infrastructure.monitoring import MetricsCollector
from infrastructure.stores import ErrorReportStore

Failure = Union[BaseException, AnalysisError]

_VALIDATION_CODES = {code.value for code in ErrorCode if code.is_validation}


# =============================================================================
# CLASSIFICATION
# =============================================================================


@dataclass(frozen=True)
class ClassifiedFailure:
    """One failed attempt after classification."""

    category: ErrorCategory
    severity: ErrorSeverity
    error: AnalysisError
    cause: str


def _socket_code(error: Failure) -> Optional[str]:
    code = getattr(error, "socket_code", None) or getattr(error, "code", None)
    if isinstance(code, Enum):
        code = code.value
    return code if isinstance(code, str) else None


def _status_code(error: Failure) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    return status if isinstance(status, int) and not isinstance(status, bool) else None


def _message(error: Failure) -> str:
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) if isinstance(error, BaseException) else ""


class FailureClassifier:
    """
    Closed taxonomy for call failures.

    Checks run in a fixed order: socket codes and transport exception
    types, then HTTP status, then message markers, then gateway
    validation codes. Anything unmatched is an API failure.
    """

    def classify(self, error: Failure) -> ErrorCategory:
        socket_code = _socket_code(error)
        if socket_code in TIMEOUT_SOCKET_CODES:
            return ErrorCategory.TIMEOUT_ERROR
        if socket_code in NETWORK_SOCKET_CODES:
            return ErrorCategory.NETWORK_ERROR

        if isinstance(
            error, (TimeoutError, asyncio.TimeoutError, ConnectionResetError, httpx.TimeoutException)
        ):
            return ErrorCategory.TIMEOUT_ERROR
        if isinstance(error, (ConnectionError, httpx.NetworkError)):
            return ErrorCategory.NETWORK_ERROR

        status = _status_code(error)
        if status is not None:
            if status == 429:
                return ErrorCategory.RATE_LIMIT_ERROR
            if status >= 400:
                return ErrorCategory.API_ERROR

        message = _message(error)
        if any(marker in message for marker in PARSE_MESSAGE_MARKERS):
            return ErrorCategory.PARSE_ERROR

        if socket_code in _VALIDATION_CODES:
            return ErrorCategory.VALIDATION_ERROR

        return ErrorCategory.API_ERROR

    def severity(self, category: ErrorCategory, error: Failure) -> ErrorSeverity:
        if category is ErrorCategory.RATE_LIMIT_ERROR:
            return ErrorSeverity.HIGH
        if category is ErrorCategory.VALIDATION_ERROR:
            return ErrorSeverity.LOW
        if category is ErrorCategory.API_ERROR:
            status = _status_code(error)
            return ErrorSeverity.HIGH if status is not None and status >= 500 else ErrorSeverity.MEDIUM
        # Parse, timeout and network failures
        return ErrorSeverity.MEDIUM

    def to_analysis_error(self, category: ErrorCategory, error: Failure) -> AnalysisError:
        """Caller-facing error for a category."""
        if category is ErrorCategory.RATE_LIMIT_ERROR:
            return AnalysisError(
                code=ErrorCode.RATE_LIMIT_EXCEEDED,
                message="Analysis service is temporarily busy. Please try again in a moment.",
                retry_after=PROVIDER_RATE_LIMIT_RETRY_AFTER,
            )
        if category is ErrorCategory.PARSE_ERROR:
            return AnalysisError(
                code=ErrorCode.API_ERROR,
                message="Unable to process the analysis response. Please try again.",
                details="Response parsing failed",
            )
        if category is ErrorCategory.VALIDATION_ERROR:
            code = _socket_code(error)
            return AnalysisError(
                code=ErrorCode(code) if code in _VALIDATION_CODES else ErrorCode.INVALID_CONTENT,
                message=_message(error) or "Content validation failed",
                details=getattr(error, "details", None)
                or "Content does not meet analysis requirements",
            )
        if category is ErrorCategory.TIMEOUT_ERROR:
            return AnalysisError(
                code=ErrorCode.TIMEOUT_ERROR,
                message="Analysis request timed out. Please try again with shorter text.",
                details="Request timeout",
            )
        if category is ErrorCategory.NETWORK_ERROR:
            return AnalysisError(
                code=ErrorCode.CONNECTION_ERROR,
                message="Network connection issue. Please check your connection and try again.",
                details="Network error",
            )
        return AnalysisError(
            code=ErrorCode.API_ERROR,
            message="Analysis service temporarily unavailable. Please try again.",
            details=_message(error) or "API error",
        )

    def describe(self, error: Failure) -> ClassifiedFailure:
        category = self.classify(error)
        return ClassifiedFailure(
            category=category,
            severity=self.severity(category, error),
            error=self.to_analysis_error(category, error),
            cause=_message(error) or type(error).__name__,
        )


# =============================================================================
# RETRY POLICY
# =============================================================================


class RetryAction(str, Enum):
    RETRY = "retry"
    FALLBACK = "fallback"
    SURFACE = "surface"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    delay_ms: float = 0.0


class RetryPolicy:
    """
    Attempt budget and backoff schedule.

    ``attempt`` counts the attempts already made, so with the default
    budget of 3 the model is called at most three times.
    """

    def __init__(self, config: RetrySettings, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.Random()

    def should_retry(
        self, category: ErrorCategory, attempt: int, max_attempts: Optional[int] = None
    ) -> bool:
        limit = self.config.max_attempts if max_attempts is None else max_attempts
        return category.is_transient and attempt < limit

    def backoff_delay_ms(self, attempt: int) -> float:
        """``min(base * 2^attempt, max)`` plus uniform jitter."""
        delay = min(self.config.base_delay_ms * math.pow(2, attempt), self.config.max_delay_ms)
        return delay + self.rng.uniform(0, self.config.jitter_ms)

    @staticmethod
    def should_fallback(category: ErrorCategory, severity: ErrorSeverity) -> bool:
        return category is ErrorCategory.PARSE_ERROR or severity in (
            ErrorSeverity.HIGH,
            ErrorSeverity.CRITICAL,
        )

    def decide(self, failure: ClassifiedFailure, attempt: int) -> RetryDecision:
        if self.should_retry(failure.category, attempt):
            return RetryDecision(RetryAction.RETRY, self.backoff_delay_ms(attempt - 1))
        if self.should_fallback(failure.category, failure.severity):
            return RetryDecision(RetryAction.FALLBACK)
        return RetryDecision(RetryAction.SURFACE)


def fallback_result(
    analysis_id: str,
    *,
    content_hash: str = "",
    is_lightweight: bool = False,
    processing_time_ms: int = 0,
) -> AnalysisResult:
    """Canonical empty result served in place of an error."""
    return AnalysisResult(
        analysis_id=analysis_id,
        content_hash=content_hash,
        processing_time_ms=processing_time_ms,
        is_lightweight=is_lightweight,
        is_fallback=True,
        parse_metadata=ParseMetadata(
            warnings=["Fallback response due to analysis failure"],
            fallbacks_used=["Error recovery fallback"],
        ),
    )


# =============================================================================
# AUDIT TRAIL
# =============================================================================


def generate_error_id() -> str:
    return f"err_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class ErrorReporter:
    """
    Records failed attempts and their resolutions.

    ``record`` and ``resolve`` never raise. Both sit inside the request
    deadline, so each store write is cut off after ``write_timeout_seconds``
    and the report is dropped with an error log instead.
    """

    def __init__(
        self,
        store: ErrorReportStore,
        metrics: Optional[MetricsCollector] = None,
        write_timeout_seconds: float = 0.5,
    ):
        self.store = store
        self.metrics = metrics
        self.write_timeout_seconds = write_timeout_seconds

    async def record(
        self,
        *,
        user_id: str,
        request_id: str,
        failure: ClassifiedFailure,
        retry_attempt: int,
        content_length: int,
        options: Optional[AnalysisOptions] = None,
    ) -> Optional[str]:
        """
        Persist one failed attempt.

        Returns:
            The report ID, or None when the audit store failed
        """
        if self.metrics:
            self.metrics.record_error_report(failure.category.value, failure.severity.value)

        report = ErrorReport(
            error_id=generate_error_id(),
            user_id=user_id,
            request_id=request_id,
            category=failure.category,
            severity=failure.severity,
            processed_error=failure.error,
            retry_attempt=retry_attempt,
            content_length=content_length,
            options=options,
        )

        log = logger.error if failure.severity.should_alert else logger.warning
        log(
            f"[{request_id}] Analysis attempt failed | category={failure.category.value} "
            f"| severity={failure.severity.value} | attempt={retry_attempt} | cause={failure.cause}"
        )

        try:
            await asyncio.wait_for(self.store.add(report), timeout=self.write_timeout_seconds)
        except Exception as e:
            logger.error(f"[{request_id}] Failed to log error report: {e!r}")
            return None
        return report.error_id

    async def resolve(self, error_id: Optional[str], resolution: ErrorResolution) -> bool:
        """Attach a resolution to an existing report."""
        if error_id is None:
            return False
        try:
            return await asyncio.wait_for(
                self.store.attach_resolution(error_id, resolution),
                timeout=self.write_timeout_seconds,
            )
        except Exception as e:
            logger.error(f"Failed to update error report {error_id}: {e!r}")
            return False

    async def statistics(self, time_range_hours: int = 24) -> ErrorStatistics:
        """Aggregate reports recorded in the last ``time_range_hours``."""
        reports = await self.store.list_since(utc_now() - timedelta(hours=time_range_hours))

        by_category = Counter(report.category for report in reports)
        by_severity = Counter(report.severity for report in reports)
        messages = Counter(report.processed_error.message for report in reports)
        recovered = sum(
            1 for report in reports if report.resolution is not None and report.resolution.successful
        )

        return ErrorStatistics(
            total_errors=len(reports),
            errors_by_category={category: by_category.get(category, 0) for category in ErrorCategory},
            errors_by_severity={severity: by_severity.get(severity, 0) for severity in ErrorSeverity},
            recovery_rate=recovered / len(reports) if reports else 0.0,
            top_errors=[
                TopError(message=message, count=count)
                for message, count in messages.most_common(TOP_ERRORS_LIMIT)
            ],
        )


def fallback_resolution() -> ErrorResolution:
    return ErrorResolution(recovery_method="fallback_response", successful=True, fallback_used=True)


__all__ = [
    "ClassifiedFailure",
    "FailureClassifier",
    "RetryAction",
    "RetryDecision",
    "RetryPolicy",
    "ErrorReporter",
    "fallback_result",
    "fallback_resolution",
    "generate_error_id",
]
