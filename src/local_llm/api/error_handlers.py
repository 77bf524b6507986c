"""
FastAPI exception handlers for structured error responses.

Maps the client error taxonomy to HTTP status codes. Every error is also
passed to the ErrorHandler so it is counted, notified and, where a
strategy applies, recovered.
"""

from datetime import datetime, timezone

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from local_llm.api.dependencies import get_error_handler
from local_llm.guidance.error_handler import ErrorHandler
from local_llm.llm.exceptions import (
    LLMApiError,
    LLMClientError,
    LLMConnectionError,
    LLMModelError,
    LLMTimeoutError,
    LLMValidationError,
    ensure_llm_error,
)

logger = structlog.get_logger(__name__)


def status_for_error(exc: LLMClientError) -> int:
    """HTTP status for a taxonomy error."""
    if isinstance(exc, LLMValidationError):
        return status.HTTP_400_BAD_REQUEST
    if exc.code == "FEATURE_DISABLED":
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, LLMModelError):
        if exc.code.endswith("_NOT_FOUND"):
            return status.HTTP_404_NOT_FOUND
        return status.HTTP_409_CONFLICT
    if isinstance(exc, LLMTimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(exc, (LLMConnectionError, LLMApiError)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(exc: LLMClientError) -> dict:
    return {
        "error": exc.code,
        "category": exc.category.value,
        "message": exc.message,
        "user_message": exc.user_message(),
        "recoverable": exc.recoverable,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _error_handler_for(request: Request) -> ErrorHandler:
    factory = request.app.dependency_overrides.get(get_error_handler, get_error_handler)
    return factory()


async def llm_client_error_handler(request: Request, exc: LLMClientError) -> JSONResponse:
    """
    Handle taxonomy errors raised by routes.

    Args:
        request: FastAPI request
        exc: LLMClientError instance

    Returns:
        JSON error response
    """
    status_code = status_for_error(exc)
    logger.warning(
        "Request failed with client error",
        code=exc.code,
        category=exc.category.value,
        status_code=status_code,
    )
    await _error_handler_for(request).handle_error(
        exc, {"operation": f"{request.method} {request.url.path}"}
    )
    return JSONResponse(status_code=status_code, content=error_body(exc))


async def pydantic_validation_error_handler(
    request: Request, exc: PydanticValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors raised while building requests.

    Maps to 400 Bad Request (client error).
    """
    logger.warning("Invalid request format", errors=exc.error_count())

    error = LLMValidationError("Request validation failed", "INVALID_REQUEST")
    body = error_body(error)
    body["details"] = exc.errors(include_url=False, include_context=False, include_input=False)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global error boundary for unexpected errors.

    Maps to 500 Internal Server Error.
    """
    logger.exception("Unexpected error", error_type=type(exc).__name__)

    error = ensure_llm_error(exc)
    await _error_handler_for(request).handle_error(
        error, {"operation": f"{request.method} {request.url.path}"}
    )
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_body(error))


# Exception handler mapping for FastAPI app.add_exception_handler()
EXCEPTION_HANDLERS = {
    LLMClientError: llm_client_error_handler,
    PydanticValidationError: pydantic_validation_error_handler,
    Exception: generic_error_handler,
}
