"""
Pytest Configuration and Fixture Library

Shared test infrastructure:
- Environment configured before any application import
- In-memory stores and a frozen millisecond clock
- Scriptable fake completion client
- Gateway factory wiring real policies around the fakes

Design Pattern: Test Data Builder + Fixture Factory
"""

import os
import random
from typing import Any, Callable, Dict, List

import pytest

# Set test environment variables before importing any modules
os.environ.update(
    {
        "REDIS_URL": "redis://localhost:6379/15",
        "SECRET_KEY": "test-secret-key-with-enough-length-0123456789",
        "LLM_OPENAI_API_KEY": "test-key",
        "ENVIRONMENT": "development",
    }
)

from prometheus_client import CollectorRegistry

from config.settings import (
    AnalysisSettings,
    CacheSettings,
    LLMSettings,
    RateLimitSettings,
    RetrySettings,
)
from infrastructure.monitoring import MetricsCollector
from infrastructure.stores import (
    InMemoryAdmissionStore,
    InMemoryCacheStore,
    InMemoryErrorReportStore,
)
from optimization.cache_manager import ClientResultCache, ResultCache
from optimization.rate_limiter import AdmissionController
from orchestration.analysis_gateway import AnalysisGateway
from orchestration.failure_policy import ErrorReporter, RetryPolicy
from tests.factories import FakeLLMClient, FrozenClock, RecordingSleep, Script

# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def admission_store() -> InMemoryAdmissionStore:
    return InMemoryAdmissionStore()


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def error_store() -> InMemoryErrorReportStore:
    return InMemoryErrorReportStore()


@pytest.fixture
def rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings(max_requests=100, max_characters=1_000_000, window_seconds=3600)


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings()


@pytest.fixture
def analysis_settings() -> AnalysisSettings:
    return AnalysisSettings(deadline_seconds=5.0, attempt_timeout_seconds=2.0)


@pytest.fixture
def llm_settings() -> LLMSettings:
    return LLMSettings()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def admission(admission_store, rate_limit_settings, clock, metrics) -> AdmissionController:
    return AdmissionController(admission_store, rate_limit_settings, clock=clock, metrics=metrics)


@pytest.fixture
def result_cache(cache_store, cache_settings, clock, metrics) -> ResultCache:
    return ResultCache(
        cache_store,
        cache_settings,
        clock=clock,
        metrics=metrics,
        local=ClientResultCache(max_entries=10, clock=clock),
    )


@pytest.fixture
def reporter(error_store, metrics) -> ErrorReporter:
    return ErrorReporter(error_store, metrics=metrics)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(RetrySettings(), rng=random.Random(42))


@pytest.fixture
def make_gateway(
    admission, result_cache, reporter, retry_policy, analysis_settings, llm_settings, metrics, sleep
) -> Callable[..., AnalysisGateway]:
    """Factory: gateway around a fake client running ``script``."""

    def _make(script: List[Script], **overrides) -> AnalysisGateway:
        components = {
            "llm_client": FakeLLMClient(script),
            "admission": admission,
            "cache": result_cache,
            "reporter": reporter,
            "retry_policy": retry_policy,
            "config": analysis_settings,
            "llm_config": llm_settings,
            "metrics": metrics,
            "sleep": sleep,
        }
        components.update(overrides)
        return AnalysisGateway(**components)

    return _make


@pytest.fixture
def grammar_options() -> Dict[str, Any]:
    return {"includeGrammar": True, "includeStyle": False, "includeReadability": False}
