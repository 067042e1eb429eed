"""
Reservation Manager

Creates, confirms and releases time-boxed stock claims for an order.

SAFE RESERVATION FLOW:
1. reserve:  FOR UPDATE lock on each product, re-read availability, insert claim
2. confirm:  FOR UPDATE lock, re-verify stock, decrement, flip confirmed
3. release:  restore stock for confirmed claims, delete every claim

None of these commit. The order workflow owns the transaction and rolls the
whole thing back if any step raises, so a multi-item order is never
partially reserved or partially confirmed.

Rows are locked in product id order so two carts sharing products cannot
deadlock each other.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.exceptions import InvalidCartError, InvalidStateError, StockShortageError
from cardshop.core.utils import utcnow
from cardshop.models import Product, StockReservation, RESERVATION_TTL_MINUTES
from cardshop.services.stock_ledger import (
    available_for_product,
    load_product,
    merge_lines,
)

logger = logging.getLogger(__name__)


async def reserve(
    db: AsyncSession,
    order_number: str,
    items: Iterable[Any],
    ttl_minutes: int = RESERVATION_TTL_MINUTES,
    now: Optional[datetime] = None,
) -> List[StockReservation]:
    """
    Reserve stock for every stock-tracked line of an order.

    Availability is re-read under a row lock for each product; the earlier
    advisory check is not trusted. Products that don't track stock are
    skipped.

    Raises:
        StockShortageError: the first line whose quantity exceeds what is
            available at this instant (or whose product no longer exists)
        InvalidCartError: a non-positive quantity
    """
    now = now or utcnow()
    expires_at = StockReservation.create_expiry(ttl_minutes, now=now)
    lines = sorted(merge_lines(items), key=lambda line: line.product_id)
    created: List[StockReservation] = []

    for line in lines:
        if line.quantity <= 0:
            raise InvalidCartError(
                f"Invalid quantity for {line.name}",
                details={"product_id": line.product_id, "quantity": line.quantity},
            )

        product = await load_product(db, line.product_id, for_update=True)
        if product is None:
            raise StockShortageError.from_shortages([{
                "product_id": line.product_id,
                "name": line.name,
                "requested": line.quantity,
                "available": 0,
            }])

        available = await available_for_product(db, product, now)
        if available is None:
            continue

        if line.quantity > available:
            raise StockShortageError.from_shortages([{
                "product_id": product.id,
                "name": product.name,
                "requested": line.quantity,
                "available": max(available, 0),
            }])

        reservation = StockReservation(
            product_id=product.id,
            quantity=line.quantity,
            order_number=order_number,
            expires_at=expires_at,
            confirmed=False,
        )
        db.add(reservation)
        created.append(reservation)

    await db.flush()

    logger.info(
        f"Reserved {len(created)} line(s) for order {order_number} until {expires_at.isoformat()}"
    )
    return created


async def get_reservations(
    db: AsyncSession,
    order_number: str,
    confirmed: Optional[bool] = None,
) -> List[StockReservation]:
    """Get reservations for an order, optionally filtered by confirmation state."""
    query = (
        select(StockReservation)
        .where(StockReservation.order_number == order_number)
        .order_by(StockReservation.product_id)
    )
    if confirmed is not None:
        query = query.where(StockReservation.confirmed.is_(confirmed))

    result = await db.execute(query)
    return list(result.scalars().all())


async def confirm(
    db: AsyncSession,
    order_number: str,
    now: Optional[datetime] = None,
) -> List[StockReservation]:
    """
    Convert an order's unconfirmed reservations into real stock decrements.

    Each product is re-checked (stock >= quantity) under a row lock before
    decrementing. If any line fails, StockShortageError propagates and the
    caller's rollback undoes every decrement already applied.

    A reservation whose product has since stopped tracking stock no longer
    represents a claim; it is dropped instead of decrementing.

    Raises:
        InvalidStateError: a reservation passed its expiry (RESERVATION_EXPIRED)
        StockShortageError: stock no longer covers a reservation
    """
    now = now or utcnow()
    reservations = await get_reservations(db, order_number, confirmed=False)
    confirmed: List[StockReservation] = []

    for reservation in reservations:
        if reservation.is_expired(now):
            raise InvalidStateError(
                "Your reservation has expired. Please start checkout again.",
                code="RESERVATION_EXPIRED",
                details={"product_id": reservation.product_id},
            )

        product = await load_product(db, reservation.product_id, for_update=True)

        if product is not None and not product.track_stock:
            await db.delete(reservation)
            continue

        if product is None or product.stock < reservation.quantity:
            raise StockShortageError.from_shortages([{
                "product_id": reservation.product_id,
                "name": product.name if product is not None else f"Product #{reservation.product_id}",
                "requested": reservation.quantity,
                "available": product.stock if product is not None else 0,
            }])

        product.stock -= reservation.quantity
        reservation.confirmed = True
        confirmed.append(reservation)

    await db.flush()

    logger.info(
        f"Confirmed {len(confirmed)} reservation(s) for order {order_number}"
    )
    return confirmed


async def release(db: AsyncSession, order_number: str) -> int:
    """
    Release every reservation of an order.

    Rows are deleted first and stock is restored only from the confirmed
    rows this call actually deleted. Two concurrent releases of the same
    order therefore restore stock once: the second DELETE matches nothing.

    Returns:
        Number of reservation rows removed
    """
    result = await db.execute(
        delete(StockReservation)
        .where(StockReservation.order_number == order_number)
        .returning(
            StockReservation.product_id,
            StockReservation.quantity,
            StockReservation.confirmed,
        )
    )
    rows = result.all()
    if not rows:
        return 0

    restore: Dict[int, int] = {}
    for product_id, quantity, confirmed in rows:
        if confirmed:
            restore[product_id] = restore.get(product_id, 0) + quantity

    for product_id in sorted(restore):
        await db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + restore[product_id])
        )

    logger.info(
        f"Released {len(rows)} reservation(s) for order {order_number}, "
        f"restored {sum(restore.values())} unit(s)"
    )
    return len(rows)
