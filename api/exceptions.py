"""
API Exception Handlers: Domain Error → HTTP Error Mapping

Analysis outcomes, failures included, are returned as HTTP 200 envelopes
by the routes. These handlers only cover failures that happen before a
request reaches the gateway: authentication, malformed bodies, and
unexpected application errors.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from core.enums import ErrorCode
from core.exceptions import AnalysisGatewayException, AuthenticationError


def _error_body(request: Request, code: str, message: str, details=None) -> dict:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "requestId": getattr(request.state, "request_id", None),
    }


async def authentication_error_handler(request: Request, exc: AuthenticationError):
    """Handle missing or invalid credentials."""
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=_error_body(request, ErrorCode.UNAUTHENTICATED.value, exc.message),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            request,
            ErrorCode.INVALID_CONTENT.value,
            "Invalid request body.",
            details=[
                {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
                for error in exc.errors()
            ],
        ),
    )


async def gateway_exception_handler(request: Request, exc: AnalysisGatewayException):
    """Handle application errors that escaped the gateway."""
    logger.bind(**exc.to_dict()).error(
        f"Unhandled application error on {request.url.path}: {exc}"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            request,
            ErrorCode.UNKNOWN_ERROR.value,
            "An unexpected error occurred. Please try again.",
        ),
    )


def add_exception_handlers(app: FastAPI):
    """Add all exception handlers to the FastAPI app."""
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(AnalysisGatewayException, gateway_exception_handler)
