#!/usr/bin/env python3
"""
Card Shop - Standalone Cron Runner

Runs the reservation sweeper as its own process, for deployments where the
web workers start with STOCK_CLEANUP_ENABLED=false.

Usage:
    python -m cardshop.run_cron
"""
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone

# Setup logging first
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

REQUIRED_VARS = ["DATABASE_URL"]

# Graceful shutdown flag
_shutdown = False


def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global _shutdown
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    _shutdown = True


async def main():
    """Main entry point for cron service."""
    global _shutdown

    # Import after env validation
    from cardshop.core.config import settings
    from cardshop.jobs.reservation_sweeper import run_stock_cleanup

    interval_seconds = settings.STOCK_CLEANUP_INTERVAL_MINUTES * 60

    logger.info("=" * 60)
    logger.info("Card Shop Reservation Sweeper")
    logger.info("=" * 60)
    logger.info(f"Started at: {datetime.now(timezone.utc).isoformat()}")
    logger.info(f"Interval: {settings.STOCK_CLEANUP_INTERVAL_MINUTES} minutes")

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    try:
        while not _shutdown:
            await run_stock_cleanup()

            # Sleep in short steps so shutdown is noticed quickly
            waited = 0
            while not _shutdown and waited < interval_seconds:
                await asyncio.sleep(1)
                waited += 1
    except Exception as e:
        logger.error(f"Cron service error: {e}")
        raise
    finally:
        logger.info("Cron service stopped.")


if __name__ == "__main__":
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]
    if missing:
        logger.error(f"Missing required environment variables: {missing}")
        sys.exit(1)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)
