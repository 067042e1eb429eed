"""
Product model

Only the columns checkout depends on. ``stock`` is the authoritative on-hand
count; it is written exclusively by the reservation manager inside order
workflow transactions.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from cardshop.core.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False, index=True)

    # JPY has no minor unit, Numeric keeps other currencies exact
    price = Column(Numeric(12, 2), nullable=False)

    # Inventory
    stock = Column(Integer, default=0, nullable=False)
    track_stock = Column(Boolean, default=True, nullable=False)

    image_url = Column(String)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        server_default=func.now()
    )

    # Relationships
    order_items = relationship("OrderItem", back_populates="product")
    reservations = relationship("StockReservation", back_populates="product")

    __table_args__ = (
        CheckConstraint('stock >= 0', name='check_stock_non_negative'),
        CheckConstraint('price >= 0', name='check_price_non_negative'),
    )
