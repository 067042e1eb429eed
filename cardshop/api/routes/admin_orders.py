"""
Admin order console API

Protected by ADMIN_API_KEY (bearer token). Domain errors are mapped to
their HTTP status by the app-level CardShopError handler.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.api.deps import require_admin
from cardshop.core.database import get_db
from cardshop.schemas.checkout import AdminOrderUpdate, OrderResponse, ReservationStats
from cardshop.services import order_admin
from cardshop.services.stock_cleanup import get_reservation_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin - Orders"])


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(require_admin),
):
    return await order_admin.get_order(db, order_id)


@router.patch("/orders/{order_id}", response_model=OrderResponse)
async def update_order(
    order_id: int,
    patch: AdminOrderUpdate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(require_admin),
):
    """Set status, payment status, tracking number or notes."""
    return await order_admin.update_order(db, order_id, patch, actor=actor)


@router.get("/reservations/stats", response_model=ReservationStats)
async def reservation_stats(
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(require_admin),
):
    return await get_reservation_stats(db)
