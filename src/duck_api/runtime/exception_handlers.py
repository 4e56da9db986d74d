"""
Exception handlers for duck-api applications.

Every error leaving a route is rendered in the error envelope::

    {"code": 400, "error": {"message": "...", "errors": [{"message", "field"}]}}

The HTTP status always equals ``code``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response

from duck_api.core.errors import ApiError, ValidationError, status_phrase

logger = logging.getLogger(__name__)


def error_response(code: int, message: str, errors: list[dict[str, Any]] | None = None) -> Response:
    """Build an error envelope response."""
    error: dict[str, Any] = {"message": message}
    if errors:
        error["errors"] = errors
    return JSONResponse(status_code=code, content={"code": code, "error": error})


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the boundary exception handlers on a FastAPI application.

    Handles:
    - ApiError (and ValidationError): status from the error
    - pydantic ValidationError: 400 with one entry per field
    - Starlette HTTPException: its own status (404, 405...)
    - any other Exception: 500, logged with traceback

    Args:
        app: FastAPI application instance
    """
    from fastapi import Request
    from fastapi.exceptions import RequestValidationError
    from pydantic import ValidationError as PydanticValidationError
    from starlette.exceptions import HTTPException as StarletteHTTPException

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> Response:
        """Render request-time errors raised by middleware, handlers and racks."""
        if exc.code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.debug(f"{request.method} {request.url.path} -> {exc.code} {exc.message}")
        return JSONResponse(status_code=exc.code, content=exc.to_dict())

    @app.exception_handler(PydanticValidationError)
    async def pydantic_error_handler(request: Request, exc: PydanticValidationError) -> Response:
        """Validation failures raised outside the validation middleware."""
        converted = ValidationError.from_pydantic(exc)
        return JSONResponse(status_code=converted.code, content=converted.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> Response:
        errors = [
            {"message": err["msg"], "field": ".".join(str(part) for part in err["loc"])}
            for err in exc.errors()
        ]
        return error_response(400, "Data is not valid", errors)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
        """Unknown paths and methods."""
        message = exc.detail if isinstance(exc.detail, str) else status_phrase(exc.status_code)
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> Response:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response(500, status_phrase(500))
