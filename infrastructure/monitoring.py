"""
Monitoring Infrastructure: Structured Logging with Structlog

Provides JSON-based structured logging for the API process and a
Prometheus metrics collector for analysis throughput, model latency,
cache efficiency, admission rejections and failure categories.
"""

import logging
import sys
from typing import Optional

import structlog
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for JSON-based production logging.

    Sets up processors for:
    - Timestamping (ISO 8601)
    - Log level formatting
    - Exception formatting with stack traces
    - JSON rendering
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structlog logger instance bound with a name context.

    Args:
        name: Logger name (typically module __name__)

    Returns:
        Configured structlog BoundLogger
    """
    return structlog.get_logger(name)


class MetricsCollector:
    """
    Prometheus metrics collector for gateway observability.

    Tracks:
    - Analysis outcomes and end-to-end latency per mode
    - Model API calls and latency
    - Cache hits, misses and writes per tier
    - Admission rejections and fail-open admissions
    - Error reports and fallbacks served
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Register metrics on ``registry`` (the process default when omitted)."""
        self.registry = registry or REGISTRY

        # Analysis metrics
        self.analysis_requests_total = Counter(
            "analysis_requests_total",
            "Total analysis requests by mode and outcome",
            labelnames=["mode", "outcome"],
            registry=self.registry,
        )

        self.analysis_duration_seconds = Histogram(
            "analysis_duration_seconds",
            "End-to-end analysis latency",
            buckets=[0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60],
            labelnames=["mode"],
            registry=self.registry,
        )

        # LLM API metrics
        self.llm_api_requests_total = Counter(
            "llm_api_requests_total",
            "Total LLM API requests",
            labelnames=["model", "provider", "status"],
            registry=self.registry,
        )

        self.llm_api_latency_seconds = Histogram(
            "llm_api_latency_seconds",
            "LLM API request latency",
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
            labelnames=["model", "provider"],
            registry=self.registry,
        )

        # Cache metrics
        self.cache_hits_total = Counter(
            "cache_hits_total",
            "Total cache hits",
            labelnames=["cache_tier"],
            registry=self.registry,
        )

        self.cache_misses_total = Counter(
            "cache_misses_total",
            "Total cache misses",
            labelnames=["cache_tier"],
            registry=self.registry,
        )

        self.cache_writes_total = Counter(
            "cache_writes_total",
            "Cache store attempts by result",
            labelnames=["cache_tier", "result"],
            registry=self.registry,
        )

        # Admission metrics
        self.admission_rejections_total = Counter(
            "admission_rejections_total",
            "Requests rejected by the per-user quota",
            labelnames=["reason"],
            registry=self.registry,
        )

        self.admission_fail_open_total = Counter(
            "admission_fail_open_total",
            "Requests admitted because the quota store was unavailable",
            registry=self.registry,
        )

        # Failure metrics
        self.error_reports_total = Counter(
            "error_reports_total",
            "Failed analysis attempts by category and severity",
            labelnames=["category", "severity"],
            registry=self.registry,
        )

        self.fallbacks_served_total = Counter(
            "fallbacks_served_total",
            "Fallback results served instead of errors",
            labelnames=["category"],
            registry=self.registry,
        )

        log = get_logger(__name__)
        log.info("metrics_collector_initialized", metrics_type="prometheus")

    def record_analysis(self, mode: str, outcome: str, duration_seconds: float) -> None:
        """
        Record one completed analysis.

        Args:
            mode: "full" or "realtime"
            outcome: "success", "cache_hit", "fallback" or an error code
            duration_seconds: Wall-clock time spent in the gateway
        """
        self.analysis_requests_total.labels(mode=mode, outcome=outcome).inc()
        self.analysis_duration_seconds.labels(mode=mode).observe(duration_seconds)

    def record_llm_api_call(
        self, model: str, provider: str, status: str, latency_seconds: float
    ) -> None:
        """Record LLM API call metrics."""
        self.llm_api_requests_total.labels(model=model, provider=provider, status=status).inc()
        self.llm_api_latency_seconds.labels(model=model, provider=provider).observe(latency_seconds)

    def record_cache_hit(self, cache_tier: str) -> None:
        self.cache_hits_total.labels(cache_tier=cache_tier).inc()

    def record_cache_miss(self, cache_tier: str) -> None:
        self.cache_misses_total.labels(cache_tier=cache_tier).inc()

    def record_cache_write(self, cache_tier: str, result: str) -> None:
        self.cache_writes_total.labels(cache_tier=cache_tier, result=result).inc()

    def record_admission_rejection(self, reason: str) -> None:
        self.admission_rejections_total.labels(reason=reason).inc()

    def record_fail_open(self) -> None:
        self.admission_fail_open_total.inc()

    def record_error_report(self, category: str, severity: str) -> None:
        self.error_reports_total.labels(category=category, severity=severity).inc()

    def record_fallback(self, category: str) -> None:
        self.fallbacks_served_total.labels(category=category).inc()

    def export_metrics(self) -> bytes:
        """
        Export metrics in Prometheus format.

        Returns:
            Prometheus exposition payload
        """
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        """Get content type for metrics endpoint."""
        return CONTENT_TYPE_LATEST
