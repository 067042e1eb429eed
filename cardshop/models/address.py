"""
Address model

Saved buyer addresses. One shipping address per user is flagged as the
default; checkout demotes the others when a new default is saved.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime,
    ForeignKey, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
import enum

from cardshop.core.database import Base


class AddressType(str, enum.Enum):
    """Type of address"""
    SHIPPING = "shipping"
    BILLING = "billing"


class Address(Base):
    __tablename__ = "addresses"
    __table_args__ = (
        Index("ix_addresses_user_type", "user_id", "address_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    address_type = Column(
        SQLEnum(AddressType),
        default=AddressType.SHIPPING,
        nullable=False
    )
    is_default = Column(Boolean, default=False, nullable=False)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    street1 = Column(String(255), nullable=False)
    street2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=False)
    country = Column(String(2), nullable=False)
    phone = Column(String(30), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    user = relationship("User", back_populates="addresses")

    def __repr__(self):
        return f"<Address(id={self.id}, user_id={self.user_id}, default={self.is_default})>"
