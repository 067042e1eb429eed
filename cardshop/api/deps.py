"""
API dependencies
"""
import hmac
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from cardshop.core.config import settings
from cardshop.services.order_workflow import CheckoutService, checkout_service

bearer = HTTPBearer(auto_error=False)


def get_checkout_service() -> CheckoutService:
    """Checkout service dependency (overridden in tests)."""
    return checkout_service


def _check_bearer(credentials: Optional[HTTPAuthorizationCredentials], secret: str) -> None:
    # An empty secret leaves the endpoint open (development)
    if not secret:
        return
    if credentials is None or not hmac.compare_digest(credentials.credentials, secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> str:
    """Require the admin API key as a bearer token."""
    if not settings.ADMIN_API_KEY and settings.ENVIRONMENT == "production":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    _check_bearer(credentials, settings.ADMIN_API_KEY)
    return "admin-api-key" if settings.ADMIN_API_KEY else "anonymous"


async def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> None:
    """Require CRON_SECRET as a bearer token when it is configured."""
    _check_bearer(credentials, settings.CRON_SECRET)
