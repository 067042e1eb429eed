"""
Admin order console operations

Admins patch status/payment_status directly, e.g. to mark a bank transfer
COMPLETED after checking the account. Patches skip the checkout
transition table, but two things still hold:
- the resulting pair must pass validate_state
- moving an order to CANCELLED releases its reservations like a buyer cancel

The order row is locked for the patch, the same as the buyer operations.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cardshop.core.exceptions import OrderNotFoundError
from cardshop.core.utils import utcnow
from cardshop.models import Order, OrderStatus
from cardshop.schemas.checkout import AdminOrderUpdate
from cardshop.services import reservation_manager
from cardshop.services.order_state import OrderState, validate_state

logger = logging.getLogger(__name__)


async def get_order(db: AsyncSession, order_id: int, for_update: bool = False) -> Order:
    """
    Load an order with its items.

    With ``for_update`` the row is locked and re-read, so a concurrent buyer
    cancel or payment confirm is seen before the patch is validated.
    """
    query = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
    )
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await db.execute(query)
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


async def update_order(
    db: AsyncSession,
    order_id: int,
    patch: AdminOrderUpdate,
    actor: Optional[str] = None,
) -> Order:
    """
    Apply an admin patch and commit.

    Raises:
        OrderNotFoundError: no order with this id
        InvalidStateError: the patched (status, payment_status) is illegal
    """
    order = await get_order(db, order_id, for_update=True)
    previous = OrderState.of(order)

    new_state = validate_state(OrderState(
        patch.status or previous.status,
        patch.payment_status or previous.payment_status,
    ))

    now = utcnow()
    if new_state.status != previous.status:
        if new_state.status == OrderStatus.SHIPPED:
            order.shipped_at = now
        elif new_state.status == OrderStatus.DELIVERED:
            order.delivered_at = now
        elif new_state.status == OrderStatus.CANCELLED:
            await reservation_manager.release(db, order.order_number)
            order.reservation_expires_at = None

    order.status = new_state.status
    order.payment_status = new_state.payment_status

    if patch.tracking_number is not None:
        order.tracking_number = patch.tracking_number
    if patch.notes is not None:
        order.notes = patch.notes

    await db.commit()

    logger.info(
        f"Admin {actor or 'unknown'} updated order {order.order_number}: "
        f"{previous.status.value}/{previous.payment_status.value} -> "
        f"{new_state.status.value}/{new_state.payment_status.value}"
    )
    return order
