"""
Order state machine

An order's lifecycle is the pair (status, payment_status). Checkout actions
move it through a fixed transition table; anything not in the table is
rejected with InvalidStateError carrying a buyer-facing message.

    CONFIRM_PAYMENT  (PENDING, PENDING|FAILED)  -> (PENDING, PROCESSING)
    CANCEL           any non-terminal state     -> (CANCELLED, CANCELLED)
    EXPIRE           (PENDING, PENDING)         -> (CANCELLED, CANCELLED)

The admin console may set arbitrary pairs, but never one that
``validate_state`` rejects.
"""
import enum
from typing import NamedTuple

from cardshop.core.exceptions import InvalidStateError
from cardshop.models.order import OrderStatus, PaymentStatus


class OrderAction(str, enum.Enum):
    CONFIRM_PAYMENT = "confirm_payment"
    CANCEL = "cancel"
    EXPIRE = "expire"


class OrderState(NamedTuple):
    status: OrderStatus
    payment_status: PaymentStatus

    @classmethod
    def of(cls, order) -> "OrderState":
        return cls(OrderStatus(order.status), PaymentStatus(order.payment_status))


# Shipped goods have left the building; refunds are settled outside checkout
TERMINAL_STATUSES = frozenset({
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.REFUNDED,
})

PAYMENT_ALREADY_CONFIRMED = frozenset({
    PaymentStatus.PROCESSING,
    PaymentStatus.COMPLETED,
})

PAYABLE_STATES = frozenset({
    OrderState(OrderStatus.PENDING, PaymentStatus.PENDING),
    OrderState(OrderStatus.PENDING, PaymentStatus.FAILED),
})

PENDING_STATE = OrderState(OrderStatus.PENDING, PaymentStatus.PENDING)
CANCELLED_STATE = OrderState(OrderStatus.CANCELLED, PaymentStatus.CANCELLED)


def validate_state(state: OrderState) -> OrderState:
    """
    Reject (status, payment_status) combinations that cannot exist.

    - a cancelled order cannot hold money in flight or settled
    - a cancelled payment implies a cancelled order
    """
    status, payment_status = state
    if status == OrderStatus.CANCELLED and payment_status in PAYMENT_ALREADY_CONFIRMED:
        raise InvalidStateError(
            f"A cancelled order cannot have payment status {payment_status.value}",
            status=status.value,
            payment_status=payment_status.value,
        )
    if payment_status == PaymentStatus.CANCELLED and status != OrderStatus.CANCELLED:
        raise InvalidStateError(
            f"Payment can only be cancelled together with the order (status {status.value})",
            status=status.value,
            payment_status=payment_status.value,
        )
    return state


def _reject(state: OrderState, message: str) -> InvalidStateError:
    return InvalidStateError(
        message,
        status=state.status.value,
        payment_status=state.payment_status.value,
    )


def next_state(state: OrderState, action: OrderAction) -> OrderState:
    """
    Apply ``action`` to ``state``.

    Raises:
        InvalidStateError: the action is not allowed from this state
    """
    status, payment_status = state

    if action == OrderAction.CONFIRM_PAYMENT:
        if status == OrderStatus.CANCELLED:
            raise _reject(state, "This order has been cancelled")
        if payment_status in PAYMENT_ALREADY_CONFIRMED:
            raise _reject(state, "Payment has already been confirmed for this order")
        if state not in PAYABLE_STATES:
            raise _reject(state, "This order cannot accept payment in its current state")
        return OrderState(OrderStatus.PENDING, PaymentStatus.PROCESSING)

    if action == OrderAction.CANCEL:
        if status == OrderStatus.CANCELLED:
            raise _reject(state, "This order has already been cancelled")
        if status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            raise _reject(state, "Shipped orders cannot be cancelled")
        if status in TERMINAL_STATUSES:
            raise _reject(state, "Refunded orders cannot be cancelled")
        return CANCELLED_STATE

    if action == OrderAction.EXPIRE:
        if state != PENDING_STATE:
            raise _reject(state, "Only unpaid pending orders can expire")
        return CANCELLED_STATE

    raise ValueError(f"Unknown order action: {action!r}")


def can_apply(state: OrderState, action: OrderAction) -> bool:
    try:
        next_state(state, action)
    except InvalidStateError:
        return False
    return True


def apply_to(order, action: OrderAction) -> OrderState:
    """Transition an Order row in place; returns the new state."""
    new_state = next_state(OrderState.of(order), action)
    order.status = new_state.status
    order.payment_status = new_state.payment_status
    return new_state
