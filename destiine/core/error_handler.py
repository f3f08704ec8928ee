"""
Error responses

Failures leave the API in the booking body shape {success: false, message,
code, errors?}. Malformed requests get per-field errors keyed like the
orchestrators' own ("passengers.0.seat"). Unhandled exceptions are logged
with their traceback under an error id and answered with a generic 500.
"""
import logging
import traceback
import uuid
from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from destiine.core.config import settings

logger = logging.getLogger(__name__)

SENSITIVE_MARKERS = (
    "password",
    "secret",
    "token",
    "api_key",
    "sk_live",
    "sk_test",
    "whsec_",
    "sqlalchemy",
    "asyncpg",
    "postgresql",
    "traceback",
)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."
MAX_MESSAGE_LENGTH = 200


def error_body(message: str, code: str, errors: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message, "code": code}
    if errors:
        body["errors"] = errors
    return body


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Client-safe text for an error: no credentials or driver internals, bounded length."""
    message = str(error)
    if settings.DEBUG:
        return message
    if any(marker in message.lower() for marker in SENSITIVE_MARKERS):
        return "An internal error occurred. Please try again later."
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def field_errors(exc: RequestValidationError) -> Dict[str, str]:
    errors = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors[".".join(location) or "request"] = error.get("msg", "Invalid value")
    return errors


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=error_body("Invalid request", "VALIDATION_FAILED", field_errors(exc)),
    )


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """Last line for exceptions no handler took."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            error_id = uuid.uuid4().hex[:12]
            logger.error(
                f"Unhandled exception [{error_id}] {request.method} {request.url.path}: "
                f"{type(e).__name__}: {e}\n{traceback.format_exc()}"
            )
            message = f"{type(e).__name__}: {e}" if settings.DEBUG else GENERIC_ERROR_MESSAGE
            body = error_body(message, "INTERNAL_ERROR")
            body["error_id"] = error_id
            return JSONResponse(status_code=500, content=body)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_middleware(ErrorSanitizationMiddleware)
