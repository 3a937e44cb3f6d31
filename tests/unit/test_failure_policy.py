"""
Unit Tests for Failure Classification, Retry Decisions and Audit
================================================================

Covers the category taxonomy, backoff bounds, the retry/fallback/surface
decision table and the error reporter's never-raise contract.
"""

import asyncio
import random
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from config.settings import RetrySettings
from core.enums import ErrorCategory, ErrorCode, ErrorSeverity
from core.exceptions import (
    LLMConnectionError,
    LLMEmptyResponseError,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
    ResponseParseError,
    StoreError,
    ValidationException,
)
from core.models import AnalysisError, ErrorReport, utc_now
from orchestration.failure_policy import (
    ErrorReporter,
    FailureClassifier,
    RetryAction,
    RetryPolicy,
    fallback_resolution,
    fallback_result,
)


@pytest.fixture
def classifier():
    return FailureClassifier()


# =============================================================================
# CLASSIFICATION
# =============================================================================


class TestClassification:
    @pytest.mark.parametrize(
        "error, category, severity",
        [
            (LLMRateLimitError(), ErrorCategory.RATE_LIMIT_ERROR, ErrorSeverity.HIGH),
            (LLMProviderError("Service Unavailable", status_code=503), ErrorCategory.API_ERROR, ErrorSeverity.HIGH),
            (LLMProviderError("Bad Request", status_code=400), ErrorCategory.API_ERROR, ErrorSeverity.MEDIUM),
            (LLMTimeoutError(), ErrorCategory.TIMEOUT_ERROR, ErrorSeverity.MEDIUM),
            (LLMConnectionError(), ErrorCategory.NETWORK_ERROR, ErrorSeverity.MEDIUM),
            (ResponseParseError(), ErrorCategory.PARSE_ERROR, ErrorSeverity.MEDIUM),
            (LLMEmptyResponseError(), ErrorCategory.API_ERROR, ErrorSeverity.MEDIUM),
            (asyncio.TimeoutError(), ErrorCategory.TIMEOUT_ERROR, ErrorSeverity.MEDIUM),
            (ConnectionRefusedError(), ErrorCategory.NETWORK_ERROR, ErrorSeverity.MEDIUM),
            (httpx.ReadTimeout("read timed out"), ErrorCategory.TIMEOUT_ERROR, ErrorSeverity.MEDIUM),
            (RuntimeError("something odd"), ErrorCategory.API_ERROR, ErrorSeverity.MEDIUM),
        ],
    )
    def test_category_and_severity(self, classifier, error, category, severity):
        failure = classifier.describe(error)

        assert failure.category is category
        assert failure.severity is severity

    def test_validation_failures_keep_their_code(self, classifier):
        error = ValidationException(
            "Text too long for analysis",
            code=ErrorCode.CONTENT_TOO_LONG,
            details="Maximum 10000 characters allowed",
        )

        failure = classifier.describe(error)

        assert failure.category is ErrorCategory.VALIDATION_ERROR
        assert failure.severity is ErrorSeverity.LOW
        assert failure.error.code is ErrorCode.CONTENT_TOO_LONG
        assert failure.error.details == "Maximum 10000 characters allowed"

    def test_analysis_error_values_are_classified(self, classifier):
        error = AnalysisError(code=ErrorCode.INVALID_CONTENT, message="Text content is required")

        assert classifier.classify(error) is ErrorCategory.VALIDATION_ERROR

    def test_parse_markers_in_message(self, classifier):
        assert classifier.classify(ValueError("Unexpected token in JSON at position 3")) is (
            ErrorCategory.PARSE_ERROR
        )

    def test_caller_facing_errors(self, classifier):
        rate = classifier.describe(LLMRateLimitError()).error
        timeout = classifier.describe(LLMTimeoutError()).error
        network = classifier.describe(LLMConnectionError()).error
        parse = classifier.describe(ResponseParseError()).error

        assert rate.code is ErrorCode.RATE_LIMIT_EXCEEDED
        assert rate.retry_after == 60
        assert timeout.code is ErrorCode.TIMEOUT_ERROR
        assert network.code is ErrorCode.CONNECTION_ERROR
        assert parse.code is ErrorCode.API_ERROR
        assert parse.details == "Response parsing failed"


# =============================================================================
# RETRY POLICY
# =============================================================================


class TestRetryPolicy:
    @pytest.fixture
    def policy(self):
        return RetryPolicy(RetrySettings(), rng=random.Random(7))

    def test_backoff_bounds(self, policy):
        for _ in range(50):
            assert 1000 <= policy.backoff_delay_ms(0) <= 2000
            assert 2000 <= policy.backoff_delay_ms(1) <= 3000
            assert 10_000 <= policy.backoff_delay_ms(8) <= 11_000

    def test_backoff_without_jitter_is_exact(self):
        policy = RetryPolicy(RetrySettings(jitter_ms=0))

        assert policy.backoff_delay_ms(2) == 4000

    def test_transient_failure_retries_within_budget(self, policy, classifier):
        failure = classifier.describe(LLMProviderError("Bad Gateway", status_code=502))

        first = policy.decide(failure, attempt=1)
        second = policy.decide(failure, attempt=2)
        last = policy.decide(failure, attempt=3)

        assert first.action is RetryAction.RETRY
        assert 1000 <= first.delay_ms <= 2000
        assert second.action is RetryAction.RETRY
        assert 2000 <= second.delay_ms <= 3000
        # Exhausted high-severity failures fall back
        assert last.action is RetryAction.FALLBACK

    def test_exhausted_medium_failure_surfaces(self, policy, classifier):
        failure = classifier.describe(LLMProviderError("Bad Request", status_code=400))

        assert policy.decide(failure, attempt=3).action is RetryAction.SURFACE

    def test_parse_failure_falls_back_immediately(self, policy, classifier):
        failure = classifier.describe(ResponseParseError())

        assert policy.decide(failure, attempt=1).action is RetryAction.FALLBACK

    def test_provider_throttling_falls_back_without_retry(self, policy, classifier):
        failure = classifier.describe(LLMRateLimitError())

        assert policy.decide(failure, attempt=1).action is RetryAction.FALLBACK

    def test_validation_failure_surfaces(self, policy, classifier):
        failure = classifier.describe(ValidationException("Text content is required"))

        assert policy.decide(failure, attempt=1).action is RetryAction.SURFACE

    def test_should_retry_respects_explicit_limit(self, policy):
        assert policy.should_retry(ErrorCategory.TIMEOUT_ERROR, 1, max_attempts=2)
        assert not policy.should_retry(ErrorCategory.TIMEOUT_ERROR, 2, max_attempts=2)
        assert not policy.should_retry(ErrorCategory.RATE_LIMIT_ERROR, 0)


def test_fallback_result_shape():
    result = fallback_result("req_1", content_hash="abc", is_lightweight=True)

    assert result.is_fallback
    assert result.is_lightweight
    assert result.total_suggestions == 0
    assert result.parse_metadata.fallbacks_used == ["Error recovery fallback"]


# =============================================================================
# ERROR REPORTER
# =============================================================================


class TestErrorReporter:
    @pytest.mark.asyncio
    async def test_record_and_resolve(self, reporter, error_store, classifier, metrics):
        failure = classifier.describe(ResponseParseError())

        error_id = await reporter.record(
            user_id="user-1",
            request_id="req_1",
            failure=failure,
            retry_attempt=1,
            content_length=42,
        )

        assert error_id.startswith("err_")
        assert await reporter.resolve(error_id, fallback_resolution()) is True

        [report] = await error_store.list_since(utc_now() - timedelta(minutes=1))
        assert report.category is ErrorCategory.PARSE_ERROR
        assert report.content_length == 42
        assert report.resolution.fallback_used is True
        assert (
            metrics.registry.get_sample_value(
                "error_reports_total", {"category": "parse_error", "severity": "medium"}
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_resolving_unknown_report(self, reporter):
        assert await reporter.resolve("err_missing", fallback_resolution()) is False
        assert await reporter.resolve(None, fallback_resolution()) is False

    @pytest.mark.asyncio
    async def test_store_failures_are_swallowed(self, classifier):
        store = AsyncMock()
        store.add.side_effect = StoreError("down")
        store.attach_resolution.side_effect = StoreError("down")
        reporter = ErrorReporter(store)
        failure = classifier.describe(LLMTimeoutError())

        assert (
            await reporter.record(
                user_id="u", request_id="r", failure=failure, retry_attempt=1, content_length=1
            )
            is None
        )
        assert await reporter.resolve("err_1", fallback_resolution()) is False

    @pytest.mark.asyncio
    async def test_slow_store_writes_are_cut_off(self, classifier):
        async def stall(*args):
            await asyncio.sleep(3600)

        store = AsyncMock()
        store.add.side_effect = stall
        store.attach_resolution.side_effect = stall
        reporter = ErrorReporter(store, write_timeout_seconds=0.01)
        failure = classifier.describe(LLMTimeoutError())

        error_id = await asyncio.wait_for(
            reporter.record(
                user_id="u", request_id="r", failure=failure, retry_attempt=0, content_length=1
            ),
            timeout=1.0,
        )
        resolved = await asyncio.wait_for(
            reporter.resolve("err_1", fallback_resolution()), timeout=1.0
        )

        assert error_id is None
        assert resolved is False

    @pytest.mark.asyncio
    async def test_statistics(self, reporter, error_store, classifier):
        for error in (LLMTimeoutError(), LLMTimeoutError(), ResponseParseError()):
            error_id = await reporter.record(
                user_id="u",
                request_id="r",
                failure=classifier.describe(error),
                retry_attempt=1,
                content_length=10,
            )
        await reporter.resolve(error_id, fallback_resolution())

        # Outside the window
        stale = ErrorReport(
            error_id="err_old",
            timestamp=utc_now() - timedelta(hours=30),
            user_id="u",
            request_id="r",
            category=ErrorCategory.API_ERROR,
            severity=ErrorSeverity.HIGH,
            processed_error=AnalysisError(code=ErrorCode.API_ERROR, message="old"),
        )
        await error_store.add(stale)

        stats = await reporter.statistics(24)

        assert stats.total_errors == 3
        assert stats.errors_by_category[ErrorCategory.TIMEOUT_ERROR] == 2
        assert stats.errors_by_category[ErrorCategory.PARSE_ERROR] == 1
        assert stats.errors_by_category[ErrorCategory.API_ERROR] == 0
        assert stats.errors_by_severity[ErrorSeverity.MEDIUM] == 3
        assert stats.recovery_rate == pytest.approx(1 / 3)
        assert stats.top_errors[0].count == 2
        assert stats.top_errors[0].message.startswith("Analysis request timed out")

    @pytest.mark.asyncio
    async def test_statistics_when_empty(self, reporter):
        stats = await reporter.statistics()

        assert stats.total_errors == 0
        assert stats.recovery_rate == 0.0
        assert stats.top_errors == []
