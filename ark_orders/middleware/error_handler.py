"""
Error Handler Middleware
Every failure leaves the API as {error, message, details, path, method}.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ark_orders.errors import (
    ArkClientError, create_structured_error_response, http_status_for, sanitize_error_message
)

logger = logging.getLogger(__name__)


def error_response(request: Request, status_code: int, error: str, message: str,
                   details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "error": error,
            "message": sanitize_error_message(message),
            "details": details or {},
            "path": request.url.path,
            "method": request.method,
        }),
    )


async def ark_client_exception_handler(request: Request, exc: ArkClientError) -> JSONResponse:
    """Map client errors to their HTTP status; retryable ones log at warning."""
    status_code = http_status_for(exc)
    structured = create_structured_error_response(exc)
    log = logger.warning if structured["retryable"] else logger.error
    log(f"[api] {request.method} {request.url.path} -> {status_code} {exc.error_code}: {structured['message']}")
    return error_response(request, status_code, exc.error_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning(f"[api] {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return error_response(request, exc.status_code, "HTTP_ERROR", str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"[api] {request.method} {request.url.path} rejected: {exc.errors()}")
    return error_response(request, 422, "VALIDATION_ERROR", "Request validation failed",
                          {"validation_errors": exc.errors()})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"[api] Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred")


def install_error_handlers(app: FastAPI):
    app.add_exception_handler(ArkClientError, ark_client_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
