"""
Order Workflow - checkout orchestration

SAFE CHECKOUT FLOW with time-boxed stock reservation:
1. create_order:    advisory availability check, then in one transaction
                    reserve (locked re-check) + order row + optional address
2. confirm_payment: buyer says the transfer is done; in one transaction
                    confirm reservations (stock decremented) + PROCESSING
3. cancel_order:    in one transaction release reservations (stock restored
                    if confirmed) + CANCELLED/CANCELLED

Every operation returns a CheckoutResult instead of raising. Domain errors
become buyer-facing messages; anything unexpected is logged with a
traceback and reported as a generic failure.

The invoice email goes out after the order commits. A failed send is
logged and never undoes the order.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cardshop.core.config import settings
from cardshop.core.error_handler import GENERIC_ERROR_MESSAGE
from cardshop.core.exceptions import (
    CardShopError,
    InvalidCartError,
    InvalidStateError,
    OrderNotFoundError,
    StockShortageError,
    UserNotFoundError,
)
from cardshop.core.utils import ensure_utc, utcnow
from cardshop.models import (
    Address,
    AddressType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    StockReservation,
    User,
)
from cardshop.schemas.checkout import CreateOrderRequest
from cardshop.services import reservation_manager
from cardshop.services.email_provider import InvoiceEmail, InvoiceLine, email_provider
from cardshop.services.order_state import OrderAction, OrderState, next_state
from cardshop.services.stock_ledger import check_availability, merge_lines

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    """Uniform result handed back to the page/request layer."""
    success: bool
    order_number: Optional[str] = None
    message: Optional[str] = None
    error_code: Optional[str] = None
    shortages: List[Dict[str, Any]] = field(default_factory=list)
    reservation_expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.order_number is not None:
            data["order_number"] = self.order_number
        if self.message is not None:
            data["message"] = self.message
        if self.error_code is not None:
            data["error_code"] = self.error_code
        if self.shortages:
            data["shortages"] = self.shortages
        if self.reservation_expires_at is not None:
            data["reservation_expires_at"] = self.reservation_expires_at.isoformat()
        return data


@dataclass
class OrderTotals:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


def _money(amount: Decimal, currency: str) -> Decimal:
    exponent = Decimal("1") if currency.upper() == "JPY" else Decimal("0.01")
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def calculate_totals(subtotal: Decimal, currency: Optional[str] = None) -> OrderTotals:
    """Flat shipping fee below the free-shipping threshold, optional tax."""
    currency = currency or settings.STORE_CURRENCY
    subtotal = _money(Decimal(subtotal), currency)
    if subtotal >= Decimal(settings.FREE_SHIPPING_THRESHOLD):
        shipping = Decimal(0)
    else:
        shipping = Decimal(settings.FLAT_SHIPPING_FEE)
    shipping = _money(shipping, currency)
    tax = _money(subtotal * Decimal(str(settings.TAX_RATE)), currency)
    return OrderTotals(
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        total=subtotal + shipping + tax,
    )


class CheckoutService:
    """Owns the Order and StockReservation lifecycle."""

    def __init__(self, mailer=None, ttl_minutes: Optional[int] = None):
        self.mailer = mailer or email_provider
        self.ttl_minutes = ttl_minutes or settings.RESERVATION_TTL_MINUTES

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number(now: Optional[datetime] = None) -> str:
        """Generate order number in format CS-YYYYMMDD-XXXXXXXX."""
        now = now or utcnow()
        return f"{settings.ORDER_NUMBER_PREFIX}-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"

    async def _unique_order_number(self, db: AsyncSession, now: datetime) -> str:
        for _ in range(5):
            candidate = self.generate_order_number(now)
            existing = await db.execute(
                select(Order.id).where(Order.order_number == candidate)
            )
            if existing.scalar_one_or_none() is None:
                return candidate
        raise RuntimeError("Could not generate a unique order number")

    @staticmethod
    async def _get_user(db: AsyncSession, email: str) -> User:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(email)
        return user

    @staticmethod
    async def _get_order_for_update(db: AsyncSession, order_number: str) -> Order:
        """Lock the order row so concurrent confirm/cancel calls serialize."""
        result = await db.execute(
            select(Order)
            .where(Order.order_number == order_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_number)
        return order

    @staticmethod
    def _failure(error: CardShopError, operation: str, order_ref: Optional[str] = None) -> CheckoutResult:
        logger.info(
            f"{operation} rejected for {order_ref or 'new order'}: {error.code} - {error.message}"
        )
        return CheckoutResult(
            success=False,
            order_number=order_ref,
            message=error.message,
            error_code=error.code,
            shortages=getattr(error, "shortages", []),
        )

    @staticmethod
    def _internal_failure(operation: str, order_ref: Optional[str] = None) -> CheckoutResult:
        logger.error(
            f"{operation} failed for {order_ref or 'new order'}",
            exc_info=True,
        )
        return CheckoutResult(
            success=False,
            order_number=order_ref,
            message=GENERIC_ERROR_MESSAGE,
            error_code="INTERNAL_ERROR",
        )

    # ------------------------------------------------------------------
    # Place order
    # ------------------------------------------------------------------

    async def create_order(
        self,
        db: AsyncSession,
        payload: CreateOrderRequest,
        now: Optional[datetime] = None,
    ) -> CheckoutResult:
        """
        Place an order and reserve its stock for the reservation window.

        Nothing is persisted unless every line reserves successfully.
        """
        start_time = time.time()
        now = now or utcnow()

        try:
            order, user = await self._place_order(db, payload, now)
            await db.commit()
        except CardShopError as e:
            await db.rollback()
            return self._failure(e, "create_order")
        except Exception:
            await db.rollback()
            return self._internal_failure("create_order")

        await self._send_invoice(order, user, payload)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"CHECKOUT_METRIC: order_created "
            f"user_id={user.id} "
            f"order_number={order.order_number} "
            f"total={order.total} "
            f"item_count={len(order.items)} "
            f"duration_ms={duration_ms:.2f}"
        )

        return CheckoutResult(
            success=True,
            order_number=order.order_number,
            reservation_expires_at=order.reservation_expires_at,
        )

    async def _place_order(self, db: AsyncSession, payload: CreateOrderRequest, now: datetime):
        if not payload.items:
            raise InvalidCartError("Your cart is empty")
        for item in payload.items:
            if item.quantity <= 0:
                raise InvalidCartError(
                    f"Invalid quantity for {item.name or f'product #{item.product_id}'}",
                    details={"product_id": item.product_id, "quantity": item.quantity},
                )

        user = await self._get_user(db, payload.email)

        # Advisory check: fast, complete feedback. reserve() re-checks under lock.
        report = await check_availability(db, payload.items, now)
        if not report.available:
            raise StockShortageError.from_shortages(report.shortage_dicts())

        order_number = await self._unique_order_number(db, now)
        await reservation_manager.reserve(
            db, order_number, payload.items, ttl_minutes=self.ttl_minutes, now=now
        )
        expires_at = StockReservation.create_expiry(self.ttl_minutes, now=now)

        order_items: List[OrderItem] = []
        subtotal = Decimal(0)
        for line in merge_lines(payload.items):
            product = await db.get(Product, line.product_id)
            price = Decimal(product.price)
            line_total = price * line.quantity
            subtotal += line_total
            order_items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                product_sku=product.sku,
                image_url=product.image_url,
                price=price,
                quantity=line.quantity,
                total=line_total,
            ))

        totals = calculate_totals(subtotal)
        address_data = payload.shipping_address.model_dump()

        order = Order(
            order_number=order_number,
            user_id=user.id,
            email=user.email,
            subtotal=totals.subtotal,
            shipping=totals.shipping,
            tax=totals.tax,
            total=totals.total,
            currency=settings.STORE_CURRENCY,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=settings.PAYMENT_METHOD,
            reservation_expires_at=expires_at,
            shipping_address=address_data,
            billing_address=address_data,
            items=order_items,
        )
        db.add(order)

        if payload.save_address:
            await self._save_default_address(db, user, address_data)

        await db.flush()
        return order, user

    @staticmethod
    async def _save_default_address(db: AsyncSession, user: User, address_data: Dict[str, Any]) -> Address:
        """Persist the shipping address as the new default and demote the rest."""
        address = Address(
            user_id=user.id,
            address_type=AddressType.SHIPPING,
            is_default=True,
            **address_data,
        )
        db.add(address)
        await db.flush()

        await db.execute(
            update(Address)
            .where(Address.user_id == user.id)
            .where(Address.address_type == AddressType.SHIPPING)
            .where(Address.id != address.id)
            .values(is_default=False)
        )
        return address

    async def _send_invoice(self, order: Order, user: User, payload: CreateOrderRequest) -> None:
        shipping_address = payload.shipping_address
        customer_name = (
            f"{shipping_address.last_name} {shipping_address.first_name}".strip()
            or user.name
            or user.email
        )
        invoice = InvoiceEmail(
            to=user.email,
            order_number=order.order_number,
            customer_name=customer_name,
            items=[
                InvoiceLine(name=item.product_name, quantity=item.quantity, price=item.price)
                for item in order.items
            ],
            subtotal=order.subtotal,
            shipping=order.shipping,
            total=order.total,
            currency=order.currency,
        )

        try:
            result = await self.mailer.send_invoice_email(invoice)
        except Exception as e:
            logger.warning(
                f"Failed to send invoice email for order {order.order_number}: {e}",
                exc_info=True,
            )
            return

        if not result.success:
            logger.warning(
                f"Failed to send invoice email for order {order.order_number}: {result.error}"
            )

    # ------------------------------------------------------------------
    # Confirm payment
    # ------------------------------------------------------------------

    async def confirm_payment(
        self,
        db: AsyncSession,
        order_number: str,
        now: Optional[datetime] = None,
    ) -> CheckoutResult:
        """
        Buyer reports the bank transfer as sent.

        Stock is decremented now; an admin verifies the funds later and
        moves payment to COMPLETED through the admin console.
        """
        now = now or utcnow()

        try:
            order = await self._get_order_for_update(db, order_number)
            new_state = next_state(OrderState.of(order), OrderAction.CONFIRM_PAYMENT)

            expires_at = ensure_utc(order.reservation_expires_at)
            if expires_at is not None and now > expires_at:
                raise InvalidStateError(
                    "Your reservation has expired. Please start checkout again.",
                    code="RESERVATION_EXPIRED",
                    status=order.status.value,
                    payment_status=order.payment_status.value,
                    details={"expired_at": expires_at.isoformat()},
                )

            await reservation_manager.confirm(db, order_number, now=now)

            order.status = new_state.status
            order.payment_status = new_state.payment_status
            order.reservation_expires_at = None
            order.paid_at = now
            await db.commit()
        except CardShopError as e:
            await db.rollback()
            return self._failure(e, "confirm_payment", order_number)
        except Exception:
            await db.rollback()
            return self._internal_failure("confirm_payment", order_number)

        logger.info(f"CHECKOUT_METRIC: payment_confirmed order_number={order_number}")
        return CheckoutResult(
            success=True,
            order_number=order_number,
            message="Payment confirmation received. We will verify your transfer shortly.",
        )

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel_order(self, db: AsyncSession, order_number: str) -> CheckoutResult:
        """Cancel an order, releasing its reservations and restoring confirmed stock."""
        try:
            order = await self._get_order_for_update(db, order_number)
            new_state = next_state(OrderState.of(order), OrderAction.CANCEL)

            released = await reservation_manager.release(db, order_number)

            order.status = new_state.status
            order.payment_status = new_state.payment_status
            order.reservation_expires_at = None
            await db.commit()
        except CardShopError as e:
            await db.rollback()
            return self._failure(e, "cancel_order", order_number)
        except Exception:
            await db.rollback()
            return self._internal_failure("cancel_order", order_number)

        logger.info(
            f"CHECKOUT_METRIC: order_cancelled order_number={order_number} reservations_released={released}"
        )
        return CheckoutResult(success=True, order_number=order_number, message="Order cancelled")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get_order_by_number(db: AsyncSession, order_number: str) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.order_number == order_number)
            .options(selectinload(Order.items))
        )
        return result.scalar_one_or_none()

    async def list_user_orders(self, db: AsyncSession, email: str) -> List[Order]:
        """Buyer's orders, newest first."""
        user = await self._get_user(db, email)
        result = await db.execute(
            select(Order)
            .where(Order.user_id == user.id)
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def get_user_addresses(self, db: AsyncSession, email: str) -> List[Address]:
        """Saved addresses, default first, then newest first."""
        user = await self._get_user(db, email)
        result = await db.execute(
            select(Address)
            .where(Address.user_id == user.id)
            .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
        )
        return list(result.scalars().all())


# Singleton instance
checkout_service = CheckoutService()
