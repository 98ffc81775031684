"""claimflow API error handling.

Global exception handlers, all producing the envelope from ``error_model``:
- ClaimflowError: domain errors, mapped through ERROR_HTTP_STATUS
- ApiHttpError: transport-level errors raised by the API itself (auth)
- HTTPException: Starlette HTTP exceptions (FastAPI's subclass and router 404/405)
- RequestValidationError: malformed request bodies and parameters
- Exception: catch-all (500, no internals leaked)
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException

from claimflow.api.error_model import get_error_code_for_status, make_error_response
from claimflow.workflow.errors import ClaimflowError, http_status_for

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Error envelope schema."""

    code: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str | None = None


class ApiHttpError(Exception):
    """API-level HTTP error with a structured envelope.

    Attributes:
        status_code: HTTP status code (e.g. 401).
        code: Machine-readable error code.
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


async def claimflow_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map a domain error onto its HTTP status and code."""
    assert isinstance(exc, ClaimflowError)

    http_status = http_status_for(exc)
    logger.info(
        "Request %s failed with %s (%d): %s",
        getattr(request.state, "request_id", None),
        exc.code,
        http_status,
        exc,
    )
    return make_error_response(
        request,
        code=exc.code,
        message=str(exc),
        http_status=http_status,
        details=exc.details() or None,
    )


async def api_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for ApiHttpError."""
    assert isinstance(exc, ApiHttpError)

    return make_error_response(
        request,
        code=exc.code,
        message=exc.message,
        http_status=exc.status_code,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map standard HTTP exceptions to the error envelope."""
    assert isinstance(exc, HTTPException)

    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"
    return make_error_response(
        request,
        code=get_error_code_for_status(exc.status_code),
        message=message,
        http_status=exc.status_code,
    )


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map request validation errors to 422 without exposing raw internals."""
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return make_error_response(
        request,
        code="REQUEST_VALIDATION_FAILED",
        message="Request validation failed",
        http_status=422,
        details={"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler: 500 with a generic message, exception logged."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return make_error_response(
        request,
        code="INTERNAL_ERROR",
        message="An internal error occurred",
        http_status=500,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler on the app."""
    app.add_exception_handler(ClaimflowError, claimflow_error_handler)
    app.add_exception_handler(ApiHttpError, api_http_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
