"""
Card Shop Backend
FastAPI application entry point

- Reservation sweeper with heartbeat metrics
- Rate limiting with SlowAPI
- Error sanitization middleware
- Health endpoint with DB ping
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from cardshop import __version__
from cardshop.api.routes import admin_orders, checkout, cron, orders
from cardshop.core.config import settings
from cardshop.core.database import AsyncSessionLocal
from cardshop.core.error_handler import ErrorSanitizationMiddleware, cardshop_error_handler
from cardshop.core.exceptions import CardShopError
from cardshop.core.rate_limit import limiter, rate_limit_exceeded_handler
from cardshop.jobs.reservation_sweeper import get_heartbeat, stock_cleanup_scheduler
from cardshop.services.email_provider import email_provider

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

_stock_cleanup_task: Optional[asyncio.Task] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Start background tasks on startup, stop them and close HTTP clients on shutdown.
    """
    global _stock_cleanup_task

    if settings.STOCK_CLEANUP_ENABLED:
        _stock_cleanup_task = asyncio.create_task(stock_cleanup_scheduler())
        logger.info("Stock cleanup scheduler ENABLED")
    else:
        logger.info("Stock cleanup scheduler DISABLED via config")

    yield

    if _stock_cleanup_task and not _stock_cleanup_task.done():
        _stock_cleanup_task.cancel()
        try:
            await _stock_cleanup_task
        except asyncio.CancelledError:
            logger.info("Stock cleanup scheduler cancelled")

    await email_provider.close()
    logger.info("Email HTTP client closed")


app = FastAPI(
    lifespan=lifespan,
    title=f"{settings.APP_NAME} API",
    description="""
## Card Shop Checkout API

Checkout with time-boxed stock reservation and Wise bank transfer payment.

### Flow
1. `POST /api/checkout/orders` reserves stock for 30 minutes and emails an invoice
2. `POST /api/checkout/orders/{order_number}/confirm-payment` once the transfer is sent
3. Unpaid orders are cancelled automatically after the reservation expires

### Rate Limits
- Checkout: 10 requests/minute
- General: 100 requests/minute
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Domain errors map to their HTTP status; anything else is sanitized
app.add_exception_handler(CardShopError, cardshop_error_handler)
app.add_middleware(ErrorSanitizationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(checkout.router, prefix="/api")
app.include_router(orders.router, prefix="/api")
app.include_router(admin_orders.router, prefix="/api")
app.include_router(cron.router, prefix="/api")


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": __version__,
        "status": "operational"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check with actual DB ping and cleanup heartbeat.
    Returns 503 if database is unreachable.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "stock_cleanup": get_heartbeat(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
