"""
AI Analysis Gateway - HTTP Application
======================================

Assembles the FastAPI application around the dependency container:
authenticated analysis routes, health and metrics endpoints, and a thin
middleware layer that tags every exchange with a request ID.

Architecture: HTTP -> middleware -> routes -> container -> AnalysisGateway
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from api.exceptions import add_exception_handlers
from api.routes import analysis, system
from config.settings import settings
from container import container, container_manager
from infrastructure.monitoring import configure_structlog, get_logger
from security import SECURITY_HEADERS

configure_structlog(settings.monitoring.log_level)
logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tag each exchange with a request ID and log its latency.

    A client-supplied ``X-Request-ID`` is reused; otherwise one is minted.
    The ID is bound into structlog's context for the lifetime of the
    request and echoed back on the response together with the security
    headers.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex}"
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()

        response = await call_next(request)

        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response


def _startup_problems() -> list[str]:
    problems = []
    if not settings.redis.url:
        problems.append("REDIS_URL is required")
    return problems


@asynccontextmanager
async def lifespan(app: FastAPI):
    problems = _startup_problems()
    if problems:
        logger.error("gateway_configuration_invalid", problems=problems)
        if settings.is_production:
            raise RuntimeError("; ".join(problems))

    await container_manager.initialize()
    logger.info(
        "gateway_started",
        environment=settings.environment,
        provider=settings.llm.provider,
        model=settings.llm.model,
    )

    yield

    await container_manager.cleanup()
    logger.info("gateway_stopped")


app = FastAPI(
    title=settings.app_name,
    description="Rate-limited, cached and fault-tolerant text analysis for a writing assistant",
    version=settings.app_version,
    lifespan=lifespan,
)

add_exception_handlers(app)
container.wire(modules=["container"])

app.include_router(analysis.router)
app.include_router(system.router)


@app.get("/", include_in_schema=False)
async def root():
    return RedirectResponse(url="/docs")


# Last added runs first: CORS wraps compression wraps the request context.
app.add_middleware(RequestContextMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Accept", "Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, access_log=False)
