"""
Reservation sweeper

In-process scheduler that runs the stock cleanup at a fixed interval.
Started from the app lifespan; the heartbeat is exposed on /health.
"""
import asyncio
import logging
from datetime import datetime, timezone

from cardshop.core.config import settings
from cardshop.services.stock_cleanup import release_expired_reservations

logger = logging.getLogger(__name__)

_cleanup_heartbeat: dict = {
    "last_run": None,
    "last_success": None,
    "records_processed": 0,
    "orders_cancelled": 0,
    "errors": 0,
}


def get_heartbeat() -> dict:
    return dict(_cleanup_heartbeat)


async def run_stock_cleanup() -> dict:
    """
    Run stock cleanup once and update heartbeat metrics.
    """
    _cleanup_heartbeat["last_run"] = datetime.now(timezone.utc).isoformat()

    stats = await release_expired_reservations()

    if stats.get("errors"):
        _cleanup_heartbeat["errors"] += stats["errors"]
        return stats

    _cleanup_heartbeat["last_success"] = datetime.now(timezone.utc).isoformat()
    _cleanup_heartbeat["records_processed"] += stats.get("reservations_released", 0)
    _cleanup_heartbeat["orders_cancelled"] += stats.get("orders_cancelled", 0)

    if stats.get("reservations_released", 0) > 0:
        logger.info(
            f"Stock cleanup: released {stats['reservations_released']} reservations, "
            f"cancelled {stats['orders_cancelled']} orders"
        )
    return stats


async def stock_cleanup_scheduler():
    """
    Background loop; runs until cancelled during shutdown.
    """
    interval_seconds = settings.STOCK_CLEANUP_INTERVAL_MINUTES * 60
    logger.info(f"Stock cleanup scheduler started (interval: {settings.STOCK_CLEANUP_INTERVAL_MINUTES} minutes)")

    while True:
        try:
            await run_stock_cleanup()
        except Exception as e:
            _cleanup_heartbeat["errors"] += 1
            logger.error(f"Stock cleanup scheduler error: {e}", exc_info=True)

        await asyncio.sleep(interval_seconds)
