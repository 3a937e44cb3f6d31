"""
Operational endpoints: dependency health and Prometheus exposition.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from api.dependencies import get_metrics_dependency, get_redis_dependency
from api.schemas import HealthCheckResponse
from config.settings import get_settings
from infrastructure.monitoring import MetricsCollector
from infrastructure.redis_client import RedisClient

router = APIRouter(tags=["System"])


async def _redis_status(redis: RedisClient) -> str:
    try:
        return "healthy" if await redis.ping() else "unhealthy"
    except Exception as e:
        return f"unhealthy: {e}"


@router.get("/health", response_model=HealthCheckResponse, summary="Dependency health")
async def health_check(
    redis: RedisClient = Depends(get_redis_dependency),
) -> HealthCheckResponse:
    """
    Redis being down only degrades the gateway (admission admits, the
    cache misses), so this answers 200 with ``degraded`` rather than 503.
    """
    dependencies = {"redis": await _redis_status(redis)}
    degraded = any(status != "healthy" for status in dependencies.values())

    return HealthCheckResponse(
        status="degraded" if degraded else "healthy",
        timestamp=datetime.now(timezone.utc),
        version=get_settings().app_version,
        dependencies=dependencies,
    )


@router.get("/metrics", summary="Prometheus metrics", include_in_schema=False)
async def prometheus_metrics(
    metrics: MetricsCollector = Depends(get_metrics_dependency),
) -> Response:
    return Response(content=metrics.export_metrics(), media_type=metrics.get_content_type())
