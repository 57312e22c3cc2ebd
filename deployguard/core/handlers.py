"""Exception handlers rendering errors as the ErrorResponse envelope."""

import logging
from http import HTTPStatus
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from deployguard.core.exceptions import DeployGuardError, ServiceError
from deployguard.core.observability import capture_exception
from deployguard.models.common import ErrorResponse

logger = logging.getLogger(__name__)


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    error_code: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        error_code=error_code,
        request_id=getattr(request.state, "request_id", None),
        details=details or None,
    )
    return JSONResponse(
        status_code=status_code, content=body.model_dump(exclude_none=True)
    )


def _request_context(request: Request) -> Dict[str, Any]:
    return {
        "request_id": getattr(request.state, "request_id", None),
        "path": request.url.path,
        "method": request.method,
    }


async def deploy_guard_error_handler(
    request: Request, exc: DeployGuardError
) -> JSONResponse:
    """Application errors keep their own status and code."""
    logger.error(
        "Error handling request",
        extra={
            **_request_context(request),
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "details": exc.details,
        },
        exc_info=isinstance(exc, ServiceError),
    )
    return _error_response(
        request, exc.status_code, exc.message, exc.error_code, exc.details
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Unknown paths and disallowed methods."""
    message = str(exc.detail) if exc.detail else HTTPStatus(exc.status_code).phrase

    logger.warning(
        "HTTP exception",
        extra={**_request_context(request), "status_code": exc.status_code},
    )
    return _error_response(
        request, exc.status_code, message, f"HTTP_{exc.status_code}"
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unexpected error",
        extra={**_request_context(request), "error_type": type(exc).__name__},
        exc_info=True,
    )
    capture_exception(exc, tags={"path": request.url.path})

    # Internal details stay in the logs
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An internal error occurred",
        "INTERNAL_ERROR",
    )
