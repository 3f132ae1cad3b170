"""Global exception handlers for standardized error responses.

Catches HTTPException, RequestValidationError, engine errors and unhandled
exceptions to return consistent JSON error format with request correlation.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from commitstreak.middleware.error_codes import ErrorCode, get_error_code
from commitstreak.services.exceptions import CredentialMissingError, InvalidDateError
from commitstreak.services.github.exceptions import (
    CredentialInvalidError,
    GithubError,
    RateLimitExceededError,
    UpstreamUnavailableError,
)

logger = logging.getLogger("commitstreak.exception")


def build_error_response(
    request: Request,
    status_code: int,
    code: ErrorCode,
    message: str,
    details: list[dict[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build standardized error response."""
    request_id = getattr(request.state, "request_id", None)

    body: dict[str, Any] = {
        "success": False,
        "error": {
            "code": code.value,
            "message": message,
            "request_id": request_id,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if details:
        body["error"]["details"] = details

    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with standardized format."""
    if exc.status_code >= 500:
        logger.error(
            "HTTPException status=%s detail=%s request_id=%s",
            exc.status_code,
            exc.detail,
            getattr(request.state, "request_id", None),
        )

    return build_error_response(
        request=request,
        status_code=exc.status_code,
        code=get_error_code(exc.status_code),
        message=str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with field-level details."""
    details = []
    for error in exc.errors():
        loc = " -> ".join(str(x) for x in error.get("loc", []))
        details.append(
            {
                "field": loc,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "value_error"),
            }
        )

    return build_error_response(
        request=request,
        status_code=422,
        code=ErrorCode.VALIDATION_ERROR,
        message="Validation error: Please check your request data",
        details=details,
    )


async def invalid_date_handler(request: Request, exc: InvalidDateError) -> JSONResponse:
    return build_error_response(
        request=request,
        status_code=422,
        code=ErrorCode.INVALID_DATE,
        message=str(exc),
    )


async def credential_missing_handler(
    request: Request, exc: CredentialMissingError
) -> JSONResponse:
    return build_error_response(
        request=request,
        status_code=401,
        code=ErrorCode.CREDENTIAL_MISSING,
        message="No GitHub account linked. Connect GitHub to continue.",
    )


async def credential_invalid_handler(
    request: Request, exc: CredentialInvalidError
) -> JSONResponse:
    logger.info(
        "GitHub credential rejected request_id=%s: %s",
        getattr(request.state, "request_id", None),
        exc,
    )
    return build_error_response(
        request=request,
        status_code=401,
        code=ErrorCode.CREDENTIAL_INVALID,
        message="GitHub token is expired or revoked. Reconnect GitHub to continue.",
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}
    return build_error_response(
        request=request,
        status_code=429,
        code=ErrorCode.RATE_LIMITED,
        message=str(exc),
        headers=headers,
    )


async def upstream_unavailable_handler(
    request: Request, exc: UpstreamUnavailableError
) -> JSONResponse:
    logger.warning(
        "GitHub unavailable request_id=%s path=%s: %s",
        getattr(request.state, "request_id", None),
        request.url.path,
        exc,
    )
    return build_error_response(
        request=request,
        status_code=503,
        code=ErrorCode.UPSTREAM_UNAVAILABLE,
        message="GitHub is unavailable right now. Please try again later.",
    )


async def github_error_handler(request: Request, exc: GithubError) -> JSONResponse:
    logger.warning(
        "Unexpected GitHub response request_id=%s path=%s: %s",
        getattr(request.state, "request_id", None),
        request.url.path,
        exc,
    )
    return build_error_response(
        request=request,
        status_code=502,
        code=ErrorCode.UPSTREAM_UNAVAILABLE,
        message="GitHub returned an unexpected response. Please try again later.",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions - returns 500 with minimal info."""
    logger.exception(
        "Unhandled exception request_id=%s path=%s",
        getattr(request.state, "request_id", None),
        request.url.path,
    )

    return build_error_response(
        request=request,
        status_code=500,
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InvalidDateError, invalid_date_handler)
    app.add_exception_handler(CredentialMissingError, credential_missing_handler)
    app.add_exception_handler(CredentialInvalidError, credential_invalid_handler)
    app.add_exception_handler(RateLimitExceededError, rate_limit_handler)
    app.add_exception_handler(UpstreamUnavailableError, upstream_unavailable_handler)
    app.add_exception_handler(GithubError, github_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
