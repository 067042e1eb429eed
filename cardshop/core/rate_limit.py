"""
Rate limiting

slowapi with in-memory storage, keyed on the client address. Order
creation carries its own tighter limit (RATE_LIMIT_CHECKOUT); everything
else falls under RATE_LIMIT_DEFAULT.
"""
import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from cardshop.core.config import settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Original client behind a proxy (first X-Forwarded-For hop), else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    client = forwarded.split(",")[0].strip()
    return client or get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)


def retry_after_seconds(exc: RateLimitExceeded) -> int:
    """Window length of the limit that was hit."""
    return int(exc.limit.limit.get_expiry())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = retry_after_seconds(exc)
    logger.warning(
        f"Rate limit '{exc.detail}' exceeded by {get_client_ip(request)} "
        f"on {request.method} {request.url.path}"
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error_code": "RATE_LIMITED",
            "message": f"Too many requests. Please try again in {retry_after} seconds.",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
