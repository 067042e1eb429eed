"""
Checkout Schemas

Pydantic models for checkout, order and admin API requests and responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

from cardshop.models.address import AddressType
from cardshop.models.order import OrderStatus, PaymentStatus


# ==================== Cart / Checkout ====================


class CartItem(BaseModel):
    """One cart line. Prices are read from the product table, not the client."""
    product_id: int
    quantity: int
    name: str = ""
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    street1: str = Field(..., min_length=1, max_length=255)
    street2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: str = Field(..., min_length=3, max_length=20)
    country: str = Field("JP", min_length=2, max_length=2)
    phone: Optional[str] = Field(None, max_length=30)

    @field_validator("country")
    @classmethod
    def validate_country(cls, v):
        return v.upper()


class CreateOrderRequest(BaseModel):
    items: List[CartItem]
    email: str = Field(..., min_length=3, max_length=255)
    shipping_address: ShippingAddress
    save_address: bool = False


class AvailabilityRequest(BaseModel):
    items: List[CartItem]


class StockShortageOut(BaseModel):
    product_id: Optional[int] = None
    name: str
    requested: int
    available: int


class AvailabilityResponse(BaseModel):
    available: bool
    shortages: List[StockShortageOut] = []


# ==================== Orders ====================


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    product_sku: Optional[str] = None
    image_url: Optional[str] = None
    price: Decimal
    quantity: int
    total: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    email: str
    status: OrderStatus
    payment_status: PaymentStatus
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    currency: str
    payment_method: Optional[str] = None
    reservation_expires_at: Optional[datetime] = None
    shipping_address: Optional[dict] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class OrderList(BaseModel):
    orders: List[OrderResponse]
    total: int


class AddressResponse(BaseModel):
    id: int
    address_type: AddressType
    is_default: bool
    first_name: str
    last_name: str
    street1: str
    street2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str
    phone: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ==================== Admin ====================


class AdminOrderUpdate(BaseModel):
    """Direct status patch from the admin console (bypasses checkout transitions)."""
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class ReservationStats(BaseModel):
    total_reservations: int
    active_reservations: int
    expired_reservations: int
    confirmed_reservations: int
    expiring_within_5min: int
