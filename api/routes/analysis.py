"""
Analysis Routes: Full and Real-Time Text Analysis

Every analysis outcome, success or failure, is returned as an HTTP 200
``AnalyzeResponse`` envelope; clients branch on ``success`` and
``error.code``. Transport-level problems (authentication, malformed JSON)
use HTTP status codes.

Design Pattern: Command Query Responsibility Segregation (CQRS)
"""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from api.dependencies import (
    get_admission_dependency,
    get_gateway_dependency,
    get_reporter_dependency,
)
from api.schemas import AnalyzeTextBody
from optimization.rate_limiter import AdmissionController
from orchestration.analysis_gateway import AnalysisGateway
from orchestration.failure_policy import ErrorReporter
from security import get_current_user_id

router = APIRouter(prefix="/api/v1/analysis", tags=["Analysis"])


# ============================================================================
# COMMANDS
# ============================================================================


@router.post(
    "",
    summary="Analyze text",
    description="Full grammar, style and readability analysis with caching",
)
async def analyze_text(
    body: AnalyzeTextBody,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    gateway: AnalysisGateway = Depends(get_gateway_dependency),
) -> JSONResponse:
    response = await gateway.analyze(
        user_id,
        body.content,
        body.options,
        request_id=body.request_id or request.headers.get("X-Request-ID"),
        content_hash=body.content_hash,
    )
    return JSONResponse(content=response.to_wire())


@router.post(
    "/realtime",
    summary="Real-time analysis",
    description="Lightweight analysis for as-you-type feedback; never cached",
)
async def analyze_text_realtime(
    body: AnalyzeTextBody,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    gateway: AnalysisGateway = Depends(get_gateway_dependency),
) -> JSONResponse:
    response = await gateway.analyze(
        user_id,
        body.content,
        body.options,
        realtime=True,
        request_id=body.request_id or request.headers.get("X-Request-ID"),
        content_hash=body.content_hash,
    )
    return JSONResponse(content=response.to_wire())


# ============================================================================
# QUERIES
# ============================================================================


@router.get("/rate-limit", summary="Current rate-limit usage")
async def get_rate_limit_status(
    realtime: bool = Query(False, description="Report against real-time limits"),
    user_id: str = Depends(get_current_user_id),
    admission: AdmissionController = Depends(get_admission_dependency),
) -> JSONResponse:
    status = await admission.status(user_id, realtime=realtime)
    return JSONResponse(content=status.to_wire())


@router.get("/errors/stats", summary="Aggregated analysis failures")
async def get_error_statistics(
    hours: int = Query(24, ge=1, le=24 * 7, description="Look-back window in hours"),
    user_id: str = Depends(get_current_user_id),
    reporter: ErrorReporter = Depends(get_reporter_dependency),
) -> JSONResponse:
    logger.debug(f"Error statistics requested by {user_id} for last {hours}h")
    statistics = await reporter.statistics(hours)
    return JSONResponse(content=statistics.to_wire())
