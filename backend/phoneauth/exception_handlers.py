"""
Exception handlers for the auth API.

Register these on a FastAPI app instance via `register_exception_handlers(app)`.
"""
import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.errors import OTPError, InvalidCodeError

logger = logging.getLogger(__name__)

# Endpoints whose malformed bodies must not be distinguishable from a wrong code
INVALID_CODE_ON_VALIDATION_PATHS = ("/v1/auth/otp/verify", "/v1/auth/phone/verify")


async def otp_error_handler(request: Request, exc: OTPError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code})


def first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request body"
    first = errors[0]
    field = first.get("loc", ("body",))[-1]
    if first.get("type") == "missing":
        return f"{field} is required"
    ctx_error = (first.get("ctx") or {}).get("error")
    if ctx_error is not None:
        return str(ctx_error)
    return first.get("msg") or "invalid request body"


async def validation_error_handler(request: Request, exc: RequestValidationError):
    if request.url.path in INVALID_CODE_ON_VALIDATION_PATHS:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": InvalidCodeError.code})
    message = first_validation_message(exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "message": message},
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    if settings.is_prod:
        content = {"error": "INTERNAL_ERROR"}
    else:
        content = {"error": "INTERNAL_ERROR", "message": str(exc)}
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def register_exception_handlers(app):
    """Register all exception handlers on the given FastAPI app."""
    app.add_exception_handler(OTPError, otp_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
