"""
Gateway Exceptions
==================

Raised by the infrastructure adapters (stores, model client, parser) and
by request validation. The analysis gateway turns every one of them into
an ``AnalysisError`` value before answering, so no exception reaches an
HTTP caller except authentication failures.
"""

from typing import Any, Optional
from uuid import uuid4

from core.enums import ErrorCode, ErrorSeverity

# =============================================================================
# BASE
# =============================================================================


class AnalysisGatewayException(Exception):
    """
    Root of the gateway's exceptions.

    ``error_code`` is a short machine-readable tag, ``retryable`` tells the
    adapters' own transport retries whether another attempt can help, and
    ``context`` carries whatever the raiser knew (keys, timeouts, limits).
    """

    def __init__(
        self,
        message: str,
        *,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        context: Optional[dict[str, Any]] = None,
        error_code: Optional[str] = None,
        retryable: bool = False,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.error_id = uuid4().hex
        self.message = message
        self.severity = severity
        self.context = context or {}
        self.error_code = error_code
        self.retryable = retryable
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Flat, JSON-safe view for structured logs."""
        return {
            "error_id": self.error_id,
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "message": self.message,
            "context": self.context,
        }

    def __str__(self) -> str:
        tag = f"{self.error_code}: " if self.error_code else ""
        if not self.context:
            return f"{tag}{self.message}"
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{tag}{self.message} ({details})"


# =============================================================================
# INFRASTRUCTURE
# =============================================================================


class InfrastructureError(AnalysisGatewayException):
    """Backing service (Redis, network) failure."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class StoreError(InfrastructureError):
    """Quota, cache or audit store unreachable or inconsistent."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "STORE_ERROR")
        super().__init__(message, **kwargs)


class StoreContentionError(StoreError):
    """Optimistic transaction kept losing to concurrent writers."""

    def __init__(self, key: str, attempts: int, **kwargs):
        super().__init__(
            f"Transaction on {key} aborted after {attempts} conflicting attempts",
            context={"key": key, "attempts": attempts},
            error_code="STORE_CONTENTION",
            **kwargs,
        )


# =============================================================================
# LLM & API EXCEPTIONS
# =============================================================================


class LLMException(AnalysisGatewayException):
    """
    Base exception for model provider errors.

    ``status_code`` and ``socket_code`` mirror what the transport reported
    so failure classification can inspect them without provider imports.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        socket_code: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.socket_code = socket_code


class LLMProviderError(LLMException):
    """Provider returned an error status."""


class LLMRateLimitError(LLMException):
    """Provider throttled the request."""

    def __init__(
        self,
        message: str = "LLM API rate limit exceeded",
        *,
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            status_code=429,
            retryable=True,
            context={"retry_after_seconds": retry_after},
            error_code="LLM_RATE_LIMIT",
            **kwargs,
        )
        self.retry_after = retry_after


class LLMTimeoutError(LLMException):
    """Request to the provider timed out."""

    def __init__(
        self,
        message: str = "LLM API request timed out",
        *,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        kwargs.setdefault("socket_code", "ETIMEDOUT")
        super().__init__(
            message,
            retryable=True,
            context={"timeout_seconds": timeout_seconds},
            error_code="LLM_TIMEOUT",
            **kwargs,
        )


class LLMConnectionError(LLMException):
    """Provider endpoint could not be reached."""

    def __init__(self, message: str = "Could not connect to LLM API", **kwargs):
        kwargs.setdefault("socket_code", "ECONNREFUSED")
        super().__init__(message, retryable=True, error_code="LLM_CONNECTION", **kwargs)


class LLMEmptyResponseError(LLMException):
    """Provider answered without any completion text."""

    def __init__(self, message: str = "Empty response from model API", **kwargs):
        super().__init__(message, retryable=True, error_code="LLM_EMPTY_RESPONSE", **kwargs)


class ResponseParseError(AnalysisGatewayException):
    """Model output could not be decoded into any JSON structure."""

    def __init__(self, message: str = "Failed to parse model JSON response", **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        super().__init__(message, error_code="RESPONSE_PARSE", **kwargs)


# =============================================================================
# REQUEST EXCEPTIONS
# =============================================================================


class ValidationException(AnalysisGatewayException):
    """Request rejected before any expensive work began."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.INVALID_CONTENT,
        details: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            error_code=code.value,
            context={"details": details} if details else None,
            **kwargs,
        )
        self.code = code
        self.details = details


class AuthenticationError(AnalysisGatewayException):
    """Caller identity missing or invalid."""

    def __init__(self, message: str = "Authentication required for analysis", **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            error_code=ErrorCode.UNAUTHENTICATED.value,
            **kwargs,
        )


__all__ = [
    "AnalysisGatewayException",
    "InfrastructureError",
    "StoreError",
    "StoreContentionError",
    "LLMException",
    "LLMProviderError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMConnectionError",
    "LLMEmptyResponseError",
    "ResponseParseError",
    "ValidationException",
    "AuthenticationError",
]
