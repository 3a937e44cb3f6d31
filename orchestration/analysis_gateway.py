"""
Analysis Gateway - Request Orchestration
========================================

Single entry point that turns ``(user_id, text, options)`` into an
``AnalyzeResponse``:

1. Validate the request (length, options)
2. Admit against the per-user quota
3. Look up the result cache (full analyses only)
4. Build prompts, call the model, decode the output
5. On failure: classify, then retry with backoff, fall back or surface
6. Cache successful results worth keeping

Timing: each model call is bounded by a per-attempt timeout and the
whole pipeline after admission by an overall deadline. A cancelled or
timed-out request never writes to the cache.

``analyze`` never raises except for task cancellation.

Architecture: Pipeline + Tagged Results through the retry loop
"""

import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from loguru import logger
from pydantic import ValidationError

from config.settings import AnalysisSettings, LLMSettings
from core.enums import AnalysisMode, ErrorCode
from core.exceptions import LLMTimeoutError, ResponseParseError, ValidationException
from core.models import AnalysisError, AnalysisOptions, AnalysisResult, AnalyzeResponse
from core.result import Err, Ok, Result
from infrastructure.llm_client import LLMClient
from infrastructure.monitoring import MetricsCollector
from intelligence.prompt_builder import PromptBuilder
from intelligence.response_parser import ParsedResponse, ResponseParser
from optimization.cache_manager import ResultCache
from optimization.fingerprint import fingerprint
from optimization.rate_limiter import AdmissionController, Reject
from orchestration.failure_policy import (
    ClassifiedFailure,
    ErrorReporter,
    FailureClassifier,
    RetryAction,
    RetryPolicy,
    fallback_resolution,
    fallback_result,
)


@dataclass
class AnalysisContext:
    """Per-request state threaded through the pipeline."""

    user_id: str
    text: str
    options: AnalysisOptions
    mode: AnalysisMode
    request_id: str
    fingerprint: str
    content_hash: str
    started_at: float
    attempts: int = 0

    @property
    def realtime(self) -> bool:
        return self.mode is AnalysisMode.REALTIME

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)


def generate_request_id(mode: AnalysisMode) -> str:
    return f"{mode.request_id_prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def validate_request(text: Any, options: AnalysisOptions, max_length: int, realtime: bool) -> None:
    """
    Reject requests that must not reach the quota or the model.

    Raises:
        ValidationException: With INVALID_CONTENT or CONTENT_TOO_LONG
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationException("Text content cannot be empty.", details="Empty content provided")

    if len(text) > max_length:
        message = (
            f"Content too long for real-time analysis. Maximum {max_length} characters."
            if realtime
            else f"Text content is too long. Please limit to {max_length:,} characters."
        )
        raise ValidationException(
            message,
            code=ErrorCode.CONTENT_TOO_LONG,
            details=f"Content length: {len(text)} characters",
        )

    if not options.has_enabled_analysis:
        raise ValidationException(
            "At least one analysis type must be enabled.",
            details="All analysis options are disabled",
        )


class AnalysisGateway:
    """
    Rate-limited, cached, fault-tolerant text analysis.

    Usage:
        gateway = AnalysisGateway(llm_client, admission, cache, ...)
        response = await gateway.analyze(user_id, text, {"includeGrammar": True})
    """

    def __init__(
        self,
        llm_client: LLMClient,
        admission: AdmissionController,
        cache: ResultCache,
        reporter: ErrorReporter,
        retry_policy: RetryPolicy,
        config: AnalysisSettings,
        llm_config: LLMSettings,
        prompt_builder: Optional[PromptBuilder] = None,
        parser: Optional[ResponseParser] = None,
        classifier: Optional[FailureClassifier] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.llm_client = llm_client
        self.admission = admission
        self.cache = cache
        self.reporter = reporter
        self.retry_policy = retry_policy
        self.config = config
        self.llm_config = llm_config
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.parser = parser or ResponseParser(
            max_suggestions=config.max_suggestions_per_category,
            min_confidence=config.min_confidence,
        )
        self.classifier = classifier or FailureClassifier()
        self.metrics = metrics
        self._sleep = sleep

        logger.info(
            f"AnalysisGateway initialized | deadline={config.deadline_seconds}s "
            f"| attempt_timeout={config.attempt_timeout_seconds}s "
            f"| max_attempts={retry_policy.config.max_attempts}"
        )

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def analyze(
        self,
        user_id: str,
        text: str,
        options: Union[AnalysisOptions, Dict[str, Any], None],
        *,
        realtime: bool = False,
        request_id: Optional[str] = None,
        content_hash: Optional[str] = None,
    ) -> AnalyzeResponse:
        """
        Analyze ``text`` for ``user_id``.

        Args:
            user_id: Authenticated caller
            text: Raw text; hashed and sent as-is
            options: Analysis options (model or wire-format dict)
            realtime: Lightweight analysis with tighter limits and no caching
            request_id: Caller-supplied ID, generated when omitted
            content_hash: Client hash echoed on the result, never a cache key

        Returns:
            AnalyzeResponse with either ``data`` or ``error``
        """
        started_at = time.perf_counter()
        mode = AnalysisMode.REALTIME if realtime else AnalysisMode.FULL
        request_id = request_id or generate_request_id(mode)
        max_length = (
            self.config.max_realtime_content_length if realtime else self.config.max_content_length
        )

        try:
            parsed_options = (
                options
                if isinstance(options, AnalysisOptions)
                else AnalysisOptions.model_validate(options or {})
            )
            validate_request(text, parsed_options, max_length, realtime)
        except ValidationError as e:
            return self._finish(
                mode,
                started_at,
                AnalyzeResponse.failed(
                    AnalysisError(
                        code=ErrorCode.INVALID_CONTENT,
                        message="Invalid analysis options.",
                        details=str(e.errors()[0]["msg"]) if e.errors() else None,
                    ),
                    request_id,
                ),
            )
        except ValidationException as e:
            logger.info(f"[{request_id}] Rejected request: {e.message}")
            return self._finish(
                mode,
                started_at,
                AnalyzeResponse.failed(
                    AnalysisError(code=e.code, message=e.message, details=e.details), request_id
                ),
            )

        logger.info(
            f"[{request_id}] Starting {mode.value} analysis | user={user_id} | length={len(text)}"
        )

        try:
            decision = await self.admission.check(user_id, len(text), realtime=realtime)
            if isinstance(decision, Reject):
                return self._finish(
                    mode, started_at, AnalyzeResponse.failed(decision.to_error(), request_id)
                )

            digest = fingerprint(text, parsed_options)
            ctx = AnalysisContext(
                user_id=user_id,
                text=text,
                options=parsed_options,
                mode=mode,
                request_id=request_id,
                fingerprint=digest,
                content_hash=content_hash or digest,
                started_at=started_at,
            )

            try:
                outcome = await asyncio.wait_for(
                    self._execute(ctx), timeout=self.config.deadline_seconds
                )
            except asyncio.TimeoutError:
                outcome = Err(await self._deadline_exceeded(ctx))

        except asyncio.CancelledError:
            logger.warning(f"[{request_id}] Analysis cancelled")
            raise
        except Exception as e:
            logger.exception(f"[{request_id}] Unexpected analysis failure: {e}")
            message = (
                "Real-time analysis temporarily unavailable. Please try again."
                if realtime
                else "An unexpected error occurred during analysis. Please try again."
            )
            outcome = Err(AnalysisError(code=ErrorCode.UNKNOWN_ERROR, message=message, details=str(e)))

        if isinstance(outcome, Ok):
            response = AnalyzeResponse.ok(outcome.value, request_id)
        else:
            response = AnalyzeResponse.failed(outcome.error, request_id)
        return self._finish(mode, started_at, response)

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def _execute(self, ctx: AnalysisContext) -> Result[AnalysisResult, AnalysisError]:
        """Cache lookup, retry loop and cache write; bounded by the deadline."""
        if not ctx.realtime:
            entry = await self.cache.lookup(ctx.user_id, ctx.fingerprint)
            if entry is not None:
                logger.info(f"[{ctx.request_id}] Returning cached result")
                return Ok(entry.result)

        outcome = await self._run_with_retries(ctx)

        if isinstance(outcome, Ok) and not ctx.realtime:
            result = outcome.value
            if not result.is_fallback and self.cache.should_cache(result, ctx.text):
                await self.cache.store_result(ctx.user_id, ctx.fingerprint, result)

        return outcome

    async def _run_with_retries(self, ctx: AnalysisContext) -> Result[AnalysisResult, AnalysisError]:
        system_prompt, user_prompt = self.prompt_builder.build(
            ctx.options, ctx.text, lightweight=ctx.realtime
        )

        while True:
            ctx.attempts += 1
            attempt = await self._attempt(ctx, system_prompt, user_prompt)
            if isinstance(attempt, Ok):
                return Ok(self._build_result(ctx, attempt.value))

            failure = attempt.error
            error_id = await self.reporter.record(
                user_id=ctx.user_id,
                request_id=ctx.request_id,
                failure=failure,
                retry_attempt=ctx.attempts - 1,
                content_length=len(ctx.text),
                options=ctx.options,
            )

            decision = self.retry_policy.decide(failure, ctx.attempts)
            if decision.action is RetryAction.RETRY:
                logger.info(
                    f"[{ctx.request_id}] Retrying in {decision.delay_ms:.0f}ms "
                    f"(attempt {ctx.attempts}/{self.retry_policy.config.max_attempts})"
                )
                await self._sleep(decision.delay_ms / 1000)
                continue

            if decision.action is RetryAction.FALLBACK:
                logger.warning(
                    f"[{ctx.request_id}] Serving fallback result after {failure.category.value}"
                )
                await self.reporter.resolve(error_id, fallback_resolution())
                if self.metrics:
                    self.metrics.record_fallback(failure.category.value)
                return Ok(
                    fallback_result(
                        ctx.request_id,
                        content_hash=ctx.content_hash,
                        is_lightweight=ctx.realtime,
                        processing_time_ms=ctx.elapsed_ms(),
                    )
                )

            return Err(failure.error)

    async def _attempt(
        self, ctx: AnalysisContext, system_prompt: str, user_prompt: str
    ) -> Result[ParsedResponse, ClassifiedFailure]:
        """One model call plus decoding; every failure comes back as ``Err``."""
        temperature = self.llm_config.realtime_temperature if ctx.realtime else self.llm_config.temperature
        max_tokens = self.llm_config.realtime_max_tokens if ctx.realtime else self.llm_config.max_tokens

        try:
            response = await asyncio.wait_for(
                self.llm_client.complete(
                    system_prompt, user_prompt, temperature=temperature, max_tokens=max_tokens
                ),
                timeout=self.config.attempt_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return Err(
                self.classifier.describe(
                    LLMTimeoutError(timeout_seconds=self.config.attempt_timeout_seconds)
                )
            )
        except Exception as e:
            return Err(self.classifier.describe(e))

        parsed = self.parser.parse(response.content)
        if parsed.is_complete_failure:
            return Err(self.classifier.describe(ResponseParseError()))

        if parsed.stage.is_recovery:
            logger.warning(f"[{ctx.request_id}] Partial response recovered via {parsed.stage.value}")
        return Ok(parsed)

    def _build_result(self, ctx: AnalysisContext, parsed: ParsedResponse) -> AnalysisResult:
        result = AnalysisResult(
            analysis_id=ctx.request_id,
            content_hash=ctx.content_hash,
            grammar_suggestions=parsed.grammar_suggestions,
            style_suggestions=parsed.style_suggestions,
            readability_suggestions=parsed.readability_suggestions,
            readability_metrics=parsed.readability_metrics,
            processing_time_ms=ctx.elapsed_ms(),
            is_lightweight=ctx.realtime,
            parse_metadata=parsed.metadata,
        )
        logger.info(
            f"[{ctx.request_id}] Analysis completed in {result.processing_time_ms}ms "
            f"with {result.total_suggestions} suggestions"
        )
        return result

    async def _deadline_exceeded(self, ctx: AnalysisContext) -> AnalysisError:
        logger.error(f"[{ctx.request_id}] Deadline of {self.config.deadline_seconds}s exceeded")
        failure = self.classifier.describe(
            LLMTimeoutError(
                f"Analysis deadline of {self.config.deadline_seconds}s exceeded",
                timeout_seconds=self.config.deadline_seconds,
            )
        )
        await self.reporter.record(
            user_id=ctx.user_id,
            request_id=ctx.request_id,
            failure=failure,
            retry_attempt=max(ctx.attempts - 1, 0),
            content_length=len(ctx.text),
            options=ctx.options,
        )
        return failure.error

    def _finish(self, mode: AnalysisMode, started_at: float, response: AnalyzeResponse) -> AnalyzeResponse:
        if self.metrics:
            if response.success:
                outcome = "fallback" if response.data.is_fallback else "success"
            else:
                outcome = response.error.code.value
            self.metrics.record_analysis(mode.value, outcome, time.perf_counter() - started_at)
        return response


__all__ = ["AnalysisGateway", "AnalysisContext", "validate_request", "generate_request_id"]
