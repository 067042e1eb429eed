"""
Order models

The order lifecycle is the pair (status, payment_status); legal
combinations and transitions live in cardshop.services.order_state.
"""
from datetime import datetime, timezone
import enum
from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Text, JSON, Numeric, Index,
    Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from cardshop.core.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    email = Column(String, nullable=False)

    order_number = Column(String(64), unique=True, index=True, nullable=False)
    status = Column(SQLEnum(OrderStatus, name="order_status"), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_status = Column(SQLEnum(PaymentStatus, name="payment_status"), default=PaymentStatus.PENDING, nullable=False)

    # Pricing
    subtotal = Column(Numeric(12, 2), nullable=False)
    shipping = Column(Numeric(12, 2), default=0)
    tax = Column(Numeric(12, 2), default=0)
    total = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="JPY")

    payment_method = Column(String(50))

    # Mirrors the stock reservation window; cleared on payment confirmation or cancel
    reservation_expires_at = Column(DateTime(timezone=True), nullable=True)

    shipping_address = Column(JSON)
    billing_address = Column(JSON)
    tracking_number = Column(String)
    notes = Column(Text)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
    paid_at = Column(DateTime(timezone=True))
    shipped_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))

    # Relationships
    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_orders_user_id', 'user_id'),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    # Snapshot of product at time of order
    product_name = Column(String(500), nullable=False)
    product_sku = Column(String(50))
    image_url = Column(String)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    total = Column(Numeric(12, 2), nullable=False)

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")
