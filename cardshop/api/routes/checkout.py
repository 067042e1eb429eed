"""
Checkout API Routes

Thin HTTP layer over CheckoutService:
1. availability: advisory stock check for the cart page
2. orders: place order + reserve stock (rate limited)
3. confirm-payment: buyer reports the Wise transfer as sent
4. cancel: release reservations and cancel

Workflow results carry an error code which maps onto the HTTP status;
the body is the result itself so the frontend can show shortages.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.api.deps import get_checkout_service
from cardshop.core.config import settings
from cardshop.core.database import get_db
from cardshop.core.exceptions import OrderNotFoundError, http_status_for
from cardshop.core.rate_limit import limiter
from cardshop.schemas.checkout import (
    AvailabilityRequest,
    AvailabilityResponse,
    CreateOrderRequest,
    OrderResponse,
)
from cardshop.services.order_workflow import CheckoutResult, CheckoutService
from cardshop.services.stock_ledger import check_availability

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _result_response(result: CheckoutResult, success_status: int = 200) -> JSONResponse:
    status_code = success_status if result.success else http_status_for(result.error_code)
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.post("/availability", response_model=AvailabilityResponse)
async def availability(
    payload: AvailabilityRequest,
    db: AsyncSession = Depends(get_db),
):
    """Advisory check; the real check happens under lock when the order is placed."""
    report = await check_availability(db, payload.items)
    return AvailabilityResponse(available=report.available, shortages=report.shortage_dicts())


@router.post("/orders", status_code=201)
@limiter.limit(settings.RATE_LIMIT_CHECKOUT)
async def create_order(
    request: Request,
    payload: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    service: CheckoutService = Depends(get_checkout_service),
):
    result = await service.create_order(db, payload)
    return _result_response(result, success_status=201)


@router.get("/orders/{order_number}", response_model=OrderResponse)
async def get_order(
    order_number: str,
    db: AsyncSession = Depends(get_db),
    service: CheckoutService = Depends(get_checkout_service),
):
    order = await service.get_order_by_number(db, order_number)
    if order is None:
        raise OrderNotFoundError(order_number)
    return order


@router.post("/orders/{order_number}/confirm-payment")
async def confirm_payment(
    order_number: str,
    db: AsyncSession = Depends(get_db),
    service: CheckoutService = Depends(get_checkout_service),
):
    result = await service.confirm_payment(db, order_number)
    return _result_response(result)


@router.post("/orders/{order_number}/cancel")
async def cancel_order(
    order_number: str,
    db: AsyncSession = Depends(get_db),
    service: CheckoutService = Depends(get_checkout_service),
):
    result = await service.cancel_order(db, order_number)
    return _result_response(result)
