"""
Dependency Injection Container: Gateway Object Graph
====================================================

Wires the analysis gateway with dependency-injector so that every
collaborator is built once per process and can be overridden in tests.

Dependency Graph (DAG):
Settings -> Redis -> Stores -> Admission / Cache / Audit -> Gateway
Settings -> Metrics -> LLM client ----------------------------^

Architecture: Container Pattern + Dependency Injection + Singleton Registry
"""

from dependency_injector import containers, providers
from dependency_injector.wiring import Provide, inject
from loguru import logger

from config.settings import Settings, get_settings
from infrastructure.llm_client import LLMClient
from infrastructure.monitoring import MetricsCollector
from infrastructure.redis_client import RedisClient
from infrastructure.stores import (
    AdmissionStore,
    CacheStore,
    ErrorReportStore,
    RedisAdmissionStore,
    RedisCacheStore,
    RedisErrorReportStore,
)
from intelligence.prompt_builder import PromptBuilder
from intelligence.response_parser import ResponseParser
from optimization.cache_manager import ClientResultCache, ResultCache
from optimization.rate_limiter import AdmissionController
from orchestration.analysis_gateway import AnalysisGateway
from orchestration.failure_policy import ErrorReporter, FailureClassifier, RetryPolicy
from orchestration.maintenance import MaintenanceRunner


class Container(containers.DeclarativeContainer):
    """
    Central dependency injection container.

    Infrastructure and policy objects are singletons. Stores are declared
    against their abstract interfaces so tests can override them with the
    in-memory implementations.
    """

    # Configuration
    config: providers.Singleton[Settings] = providers.Singleton(get_settings)

    # Infrastructure
    metrics: providers.Singleton[MetricsCollector] = providers.Singleton(MetricsCollector)

    redis: providers.Singleton[RedisClient] = providers.Singleton(
        RedisClient,
        config=config.provided.redis,
    )

    llm_client: providers.Singleton[LLMClient] = providers.Singleton(
        LLMClient,
        config=config.provided.llm,
        metrics=metrics,
    )

    # Stores
    admission_store: providers.Singleton[AdmissionStore] = providers.Singleton(
        RedisAdmissionStore,
        redis_client=redis,
    )

    cache_store: providers.Singleton[CacheStore] = providers.Singleton(
        RedisCacheStore,
        redis_client=redis,
        grace_seconds=config.provided.cache.store_grace_seconds,
    )

    error_store: providers.Singleton[ErrorReportStore] = providers.Singleton(
        RedisErrorReportStore,
        redis_client=redis,
    )

    # Admission, caching and audit
    admission: providers.Singleton[AdmissionController] = providers.Singleton(
        AdmissionController,
        store=admission_store,
        config=config.provided.rate_limit,
        metrics=metrics,
    )

    client_cache: providers.Singleton[ClientResultCache] = providers.Singleton(
        ClientResultCache,
        max_entries=config.provided.cache.client_max_entries,
        eviction_fraction=config.provided.cache.client_eviction_fraction,
    )

    result_cache: providers.Singleton[ResultCache] = providers.Singleton(
        ResultCache,
        store=cache_store,
        config=config.provided.cache,
        metrics=metrics,
        local=client_cache,
    )

    reporter: providers.Singleton[ErrorReporter] = providers.Singleton(
        ErrorReporter,
        store=error_store,
        metrics=metrics,
        write_timeout_seconds=config.provided.analysis.audit_write_timeout_seconds,
    )

    retry_policy: providers.Singleton[RetryPolicy] = providers.Singleton(
        RetryPolicy,
        config=config.provided.retry,
    )

    # Analysis pipeline
    prompt_builder: providers.Singleton[PromptBuilder] = providers.Singleton(PromptBuilder)

    response_parser: providers.Singleton[ResponseParser] = providers.Singleton(
        ResponseParser,
        max_suggestions=config.provided.analysis.max_suggestions_per_category,
        min_confidence=config.provided.analysis.min_confidence,
    )

    classifier: providers.Singleton[FailureClassifier] = providers.Singleton(FailureClassifier)

    gateway: providers.Singleton[AnalysisGateway] = providers.Singleton(
        AnalysisGateway,
        llm_client=llm_client,
        admission=admission,
        cache=result_cache,
        reporter=reporter,
        retry_policy=retry_policy,
        config=config.provided.analysis,
        llm_config=config.provided.llm,
        prompt_builder=prompt_builder,
        parser=response_parser,
        classifier=classifier,
        metrics=metrics,
    )

    maintenance: providers.Singleton[MaintenanceRunner] = providers.Singleton(
        MaintenanceRunner,
        admission=admission,
        cache=result_cache,
    )


# Global container instance
container = Container()


class ContainerManager:
    """
    Lifecycle manager for the container.

    Redis is connected eagerly at startup. A failed connection is logged
    rather than raised: admission fails open and the cache reads as a
    miss, so the gateway can still serve analyses.
    """

    def __init__(self):
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            logger.debug("Container already initialized")
            return

        logger.info("Initializing dependency injection container")

        try:
            await container.redis().initialize()
            logger.info("✓ Redis connection established")
        except Exception as redis_error:
            logger.warning(
                f"Redis unavailable at startup, continuing degraded: {redis_error}"
            )

        container.gateway()
        logger.info("✓ Analysis gateway ready")

        self._initialized = True

    async def cleanup(self) -> None:
        if not self._initialized:
            logger.debug("Container not initialized - skipping cleanup")
            return

        logger.info("Cleaning up dependency injection container")

        cleanup_errors = []

        try:
            await container.llm_client().close()
            logger.info("✓ LLM client closed")
        except Exception as llm_error:
            logger.error(f"LLM client cleanup failed: {llm_error}")
            cleanup_errors.append(("llm_client", str(llm_error)))

        try:
            await container.redis().close()
            logger.info("✓ Redis connections closed")
        except Exception as redis_error:
            logger.error(f"Redis cleanup failed: {redis_error}")
            cleanup_errors.append(("redis", str(redis_error)))

        if cleanup_errors:
            logger.warning(
                f"Container cleanup completed with {len(cleanup_errors)} error(s): "
                f"{', '.join(component for component, _ in cleanup_errors)}"
            )
        else:
            logger.info("✓ Container cleanup completed successfully")

        self._initialized = False

    def get_container(self) -> Container:
        if not self._initialized:
            raise RuntimeError("Container not initialized. Call initialize() first.")
        return container


# Global container manager instance
container_manager = ContainerManager()


# Convenience functions for dependency injection
@inject
def get_gateway(gateway: AnalysisGateway = Provide[Container.gateway]) -> AnalysisGateway:
    """Get the analysis gateway."""
    return gateway


@inject
def get_admission(
    admission: AdmissionController = Provide[Container.admission],
) -> AdmissionController:
    """Get the admission controller."""
    return admission


@inject
def get_reporter(reporter: ErrorReporter = Provide[Container.reporter]) -> ErrorReporter:
    """Get the error reporter."""
    return reporter


@inject
def get_metrics(metrics: MetricsCollector = Provide[Container.metrics]) -> MetricsCollector:
    """Get the metrics collector."""
    return metrics


@inject
def get_redis(redis: RedisClient = Provide[Container.redis]) -> RedisClient:
    """Get the Redis client."""
    return redis


__all__ = [
    "Container",
    "ContainerManager",
    "container",
    "container_manager",
    "get_gateway",
    "get_admission",
    "get_reporter",
    "get_metrics",
    "get_redis",
]
