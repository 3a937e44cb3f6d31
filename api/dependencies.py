"""
API Dependencies: FastAPI Dependency Injection Helpers

Thin adapters from FastAPI's ``Depends`` to the wired container getters.
Tests replace them through ``app.dependency_overrides``.
"""

from container import get_admission, get_gateway, get_metrics, get_redis, get_reporter
from infrastructure.monitoring import MetricsCollector
from infrastructure.redis_client import RedisClient
from optimization.rate_limiter import AdmissionController
from orchestration.analysis_gateway import AnalysisGateway
from orchestration.failure_policy import ErrorReporter


def get_gateway_dependency() -> AnalysisGateway:
    """Dependency injection: analysis gateway."""
    return get_gateway()


def get_admission_dependency() -> AdmissionController:
    """Dependency injection: admission controller."""
    return get_admission()


def get_reporter_dependency() -> ErrorReporter:
    """Dependency injection: error reporter."""
    return get_reporter()


def get_metrics_dependency() -> MetricsCollector:
    """Dependency injection: metrics collector."""
    return get_metrics()


def get_redis_dependency() -> RedisClient:
    """Dependency injection: Redis client."""
    return get_redis()
