"""
Buyer order history and saved addresses
"""
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.api.deps import get_checkout_service
from cardshop.core.database import get_db
from cardshop.schemas.checkout import AddressResponse, OrderList, OrderResponse
from cardshop.services.order_workflow import CheckoutService

router = APIRouter(tags=["orders"])


@router.get("/orders", response_model=OrderList)
async def list_orders(
    email: str = Query(..., min_length=3),
    db: AsyncSession = Depends(get_db),
    service: CheckoutService = Depends(get_checkout_service),
):
    """List a buyer's orders, newest first"""
    orders = await service.list_user_orders(db, email)
    return OrderList(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=len(orders),
    )


@router.get("/addresses", response_model=List[AddressResponse])
async def list_addresses(
    email: str = Query(..., min_length=3),
    db: AsyncSession = Depends(get_db),
    service: CheckoutService = Depends(get_checkout_service),
):
    """Saved addresses, default first"""
    return await service.get_user_addresses(db, email)
