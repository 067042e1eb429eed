"""
Stock Reservation Cleanup Service

Background service to reclaim long-expired stock reservations.
Run every few minutes by the reservation sweeper or the cron endpoint.

Availability never depends on this job: expired reservations already stop
counting the moment they pass expires_at. The sweep only
- auto-cancels orders still waiting for payment after their window, and
- deletes unconfirmed reservation rows older than the grace period.
Unconfirmed reservations never touched Product.stock, so nothing is restored.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, delete, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config import settings
from cardshop.core.database import AsyncSessionLocal
from cardshop.core.utils import utcnow
from cardshop.models import Order, StockReservation
from cardshop.services.order_state import OrderAction, OrderState, apply_to, can_apply

logger = logging.getLogger(__name__)


async def sweep_expired_reservations(
    db: AsyncSession,
    now: Optional[datetime] = None,
    grace_minutes: Optional[int] = None,
) -> dict:
    """
    Cancel abandoned orders and delete their expired reservations.

    Runs inside the caller's transaction and commits on success.

    Returns:
        dict with reservations_released, orders_cancelled, processed_at
    """
    now = now or utcnow()
    if grace_minutes is None:
        grace_minutes = settings.STOCK_CLEANUP_GRACE_MINUTES
    cutoff = now - timedelta(minutes=grace_minutes)

    expired_filter = and_(
        StockReservation.confirmed.is_(False),
        StockReservation.expires_at < cutoff,
    )

    result = await db.execute(
        select(StockReservation.order_number)
        .where(expired_filter)
        .distinct()
    )
    order_numbers = sorted(result.scalars().all())

    orders_cancelled = 0
    if order_numbers:
        result = await db.execute(
            select(Order)
            .where(Order.order_number.in_(order_numbers))
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        for order in result.scalars().all():
            state = OrderState.of(order)
            if not can_apply(state, OrderAction.EXPIRE):
                continue
            apply_to(order, OrderAction.EXPIRE)
            order.reservation_expires_at = None
            order.notes = (
                f"Auto-cancelled: Payment not completed within "
                f"{settings.RESERVATION_TTL_MINUTES} minutes"
            )
            orders_cancelled += 1

    deleted = await db.execute(delete(StockReservation).where(expired_filter))
    reservations_released = deleted.rowcount or 0

    await db.commit()

    stats = {
        "reservations_released": reservations_released,
        "orders_cancelled": orders_cancelled,
        "processed_at": now.isoformat(),
    }
    if reservations_released or orders_cancelled:
        logger.info(
            f"Cleanup completed: {orders_cancelled} orders cancelled, "
            f"{reservations_released} reservations released"
        )
    else:
        logger.debug("No expired reservations to clean up")
    return stats


async def release_expired_reservations() -> dict:
    """
    Run one sweep in its own session. Failures are logged and counted,
    never raised, so the scheduler loop keeps running.
    """
    stats = {
        "reservations_released": 0,
        "orders_cancelled": 0,
        "errors": 0,
    }

    async with AsyncSessionLocal() as db:
        try:
            stats.update(await sweep_expired_reservations(db))
        except Exception as e:
            await db.rollback()
            logger.error(f"Error in stock cleanup: {e}", exc_info=True)
            stats["errors"] += 1

    return stats


async def get_reservation_stats(db: AsyncSession, now: Optional[datetime] = None) -> dict:
    """
    Get current reservation statistics for monitoring.
    """
    now = now or utcnow()
    soon = now + timedelta(minutes=5)
    unconfirmed = StockReservation.confirmed.is_(False)

    stmt = select(
        func.count(StockReservation.id),
        func.count(StockReservation.id).filter(and_(unconfirmed, StockReservation.expires_at <= now)),
        func.count(StockReservation.id).filter(and_(unconfirmed, StockReservation.expires_at > now)),
        func.count(StockReservation.id).filter(StockReservation.confirmed.is_(True)),
        func.count(StockReservation.id).filter(
            and_(unconfirmed, StockReservation.expires_at > now, StockReservation.expires_at <= soon)
        ),
    )

    total, expired, active, confirmed, expiring = (await db.execute(stmt)).one()

    return {
        "total_reservations": int(total or 0),
        "active_reservations": int(active or 0),
        "expired_reservations": int(expired or 0),
        "confirmed_reservations": int(confirmed or 0),
        "expiring_within_5min": int(expiring or 0),
    }
