"""
Exception handlers for the phone MFA API.

Register these on a FastAPI app instance via `register_exception_handlers(app)`.
Every error leaves the API as {"success": false, "error": ..., "errorCode": ...}.
"""
import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.env import is_local_env
from .core.errors import ErrorCode, RateLimitExceededError, VerificationError

logger = logging.getLogger("phone_mfa")

_HTTP_ERROR_CODES = {
    400: "INVALID_INPUT",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def _error_response(status_code: int, message: str, error_code: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "errorCode": error_code},
        headers=headers,
    )


async def verification_error_handler(request: Request, exc: VerificationError):
    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}

    if exc.status_code >= 500:
        logger.error(f"[PhoneMFA] {request.url.path} -> {exc.code.value}: {exc.message}")
    else:
        logger.info(f"[PhoneMFA] {request.url.path} -> {exc.code.value}: {exc.message}")

    return _error_response(exc.status_code, exc.message, exc.code.value, headers=headers)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    error_code = _HTTP_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL.value)
    return _error_response(exc.status_code, detail, error_code, headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request data")
    else:
        message = "Invalid request data"
    return _error_response(400, message, ErrorCode.INVALID_INPUT.value)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)

    # Don't leak internal details outside local environments
    if is_local_env():
        message = f"Internal server error: {exc}"
    else:
        message = "Internal server error"
    return _error_response(500, message, ErrorCode.INTERNAL.value)


def register_exception_handlers(app):
    """Register all exception handlers on the given FastAPI app."""
    app.add_exception_handler(VerificationError, verification_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
