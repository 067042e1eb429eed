"""
Stock Reservation model

A claim against future stock, held between order placement and payment
confirmation.

Lifecycle:
1. Created unconfirmed when the order is placed (stock untouched)
2. Confirmed when the buyer confirms payment (stock decremented)
3. Deleted when the order is cancelled (stock restored first if confirmed)

Unconfirmed reservations past ``expires_at`` stop counting toward
availability immediately; the cleanup job removes them later.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship

from cardshop.core.config import settings
from cardshop.core.database import Base
from cardshop.core.utils import ensure_utc, utcnow

RESERVATION_TTL_MINUTES = settings.RESERVATION_TTL_MINUTES


class StockReservation(Base):
    __tablename__ = "stock_reservations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("ix_reservations_product_active", "product_id", "confirmed", "expires_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    order_number = Column(String(64), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    confirmed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    product = relationship("Product", back_populates="reservations")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Unconfirmed and past its window."""
        if self.confirmed:
            return False
        return (now or utcnow()) > ensure_utc(self.expires_at)

    @classmethod
    def create_expiry(
        cls,
        ttl_minutes: int = RESERVATION_TTL_MINUTES,
        now: Optional[datetime] = None,
    ) -> datetime:
        """Calculate expiry timestamp from now."""
        return (now or utcnow()) + timedelta(minutes=ttl_minutes)

    def __repr__(self):
        return (
            f"<StockReservation(order={self.order_number}, product_id={self.product_id}, "
            f"qty={self.quantity}, confirmed={self.confirmed})>"
        )
