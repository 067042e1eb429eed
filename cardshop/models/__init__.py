from cardshop.models.user import User
from cardshop.models.address import Address, AddressType
from cardshop.models.product import Product
from cardshop.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from cardshop.models.stock_reservation import StockReservation, RESERVATION_TTL_MINUTES

__all__ = [
    "User",
    "Address",
    "AddressType",
    "Product",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "StockReservation",
    "RESERVATION_TTL_MINUTES",
]
