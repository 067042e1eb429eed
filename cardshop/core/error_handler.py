"""
Error responses for the checkout API

Domain errors (CardShopError) leave the API in the same JSON shape the
checkout routes return for a failed CheckoutResult, with the HTTP status
taken from http_status_for. Anything else is logged with its traceback
and answered with a generic 500 carrying only an error id.
"""
import logging
import uuid
from typing import Union

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from cardshop.core.config import settings
from cardshop.core.exceptions import CardShopError, http_status_for

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An internal error occurred. Please try again later."
MAX_MESSAGE_LENGTH = 200

# Fragments that only appear in driver errors, tracebacks or leaked secrets
SENSITIVE_PATTERNS = (
    "password=",
    "authentication failed",
    "api_key",
    "secret_key",
    "bearer ",
    "sqlalchemy",
    "asyncpg",
    "psycopg",
    "aiosqlite",
    "sqlite3.",
    "postgresql://",
    "postgresql+asyncpg://",
    "traceback (most recent call last)",
    'file "',
    "/cardshop/",
)


def is_sensitive_error(message: str) -> bool:
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """
    Make an error message safe to show a client.

    DEBUG returns it untouched. Otherwise anything that looks like driver
    output or a secret becomes GENERIC_ERROR_MESSAGE, and long text is cut.
    """
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message
    if is_sensitive_error(message):
        return GENERIC_ERROR_MESSAGE
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def error_payload(error: CardShopError) -> dict:
    return {
        "success": False,
        "error_code": error.code,
        "message": sanitize_error_message(error.message),
        "shortages": getattr(error, "shortages", []),
    }


async def cardshop_error_handler(request: Request, exc: CardShopError) -> JSONResponse:
    """Exception handler for domain errors raised out of a route."""
    status_code = http_status_for(exc.code)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=error_payload(exc))


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Last line for unexpected exceptions: log the traceback server side and
    return INTERNAL_ERROR with an id the operator can grep for.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            error_id = uuid.uuid4().hex[:12]
            logger.error(
                f"Unhandled {type(e).__name__} [{error_id}] on {request.method} {request.url.path}",
                exc_info=True,
            )

            content = {
                "success": False,
                "error_code": "INTERNAL_ERROR",
                "message": GENERIC_ERROR_MESSAGE,
                "error_id": error_id,
            }
            if settings.DEBUG:
                content["debug"] = f"{type(e).__name__}: {e}"
            return JSONResponse(status_code=500, content=content)
