"""
Booking Module - Models
=========================
Homestays and bookings, trimmed to what the payment flow reads and updates.
Availability, pricing, and reviews live elsewhere.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, BigInteger, Boolean, Date,
    ForeignKey, DateTime,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class BookingStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    CHECKED_IN = "CheckedIn"
    COMPLETED = "Completed"


class Homestay(Base):
    __tablename__ = "homestays"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    is_instant_book = Column(Boolean, default=False, server_default="false", nullable=False)
    is_active = Column(Boolean, default=True, server_default="true", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    owner = relationship("User", foreign_keys=[owner_id])


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_code = Column(String(20), unique=True, nullable=False, index=True)
    guest_id = Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    homestay_id = Column(Integer, ForeignKey("homestays.id", ondelete="RESTRICT"), nullable=False, index=True)
    check_in_date = Column(Date, nullable=True)
    check_out_date = Column(Date, nullable=True)
    total_amount = Column(BigInteger, nullable=False)   # VND
    booking_status = Column(String, default=BookingStatus.PENDING, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    guest = relationship("User", foreign_keys=[guest_id])
    homestay = relationship("Homestay")
    payments = relationship(
        "Payment", back_populates="booking",
        cascade="all, delete-orphan", order_by="Payment.created_at",
    )

    @property
    def is_closed(self) -> bool:
        """Cancelled or rejected bookings accept no payments."""
        return self.booking_status in (BookingStatus.CANCELLED, BookingStatus.REJECTED)
