"""
Payment Module - Models
=========================
One row per payment attempt against a booking (online or manual).
"""

import enum
from sqlalchemy import (
    Column, Integer, String, BigInteger, Boolean, Text,
    ForeignKey, DateTime, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class PaymentMethod(int, enum.Enum):
    CASH = 0
    BANK_TRANSFER = 1
    VNPAY = 2
    ZALOPAY = 3
    MOMO = 4

    @property
    def label(self) -> str:
        labels = {
            PaymentMethod.CASH: "Tiền mặt",
            PaymentMethod.BANK_TRANSFER: "Chuyển khoản",
            PaymentMethod.VNPAY: "VNPay",
            PaymentMethod.ZALOPAY: "ZaloPay",
            PaymentMethod.MOMO: "Momo",
        }
        return labels[self]

    @property
    def is_online(self) -> bool:
        return self in (PaymentMethod.VNPAY, PaymentMethod.ZALOPAY, PaymentMethod.MOMO)


class PaymentStatus(int, enum.Enum):
    PENDING = 0
    PROCESSING = 1
    COMPLETED = 2
    FAILED = 3
    REFUNDED = 4
    PARTIALLY_REFUNDED = 5


PAYMENT_STATUS_LABELS = {
    PaymentStatus.PENDING: "Chờ thanh toán",
    PaymentStatus.PROCESSING: "Đang xử lý",
    PaymentStatus.COMPLETED: "Hoàn thành",
    PaymentStatus.FAILED: "Thất bại",
    PaymentStatus.REFUNDED: "Đã hoàn tiền",
    PaymentStatus.PARTIALLY_REFUNDED: "Hoàn tiền một phần",
}

OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_amount = Column(BigInteger, nullable=False)                  # VND
    payment_method = Column(Integer, nullable=False)                     # PaymentMethod
    payment_status = Column(Integer, default=PaymentStatus.PENDING, nullable=False)

    # Gateway references
    transaction_id = Column(String(100), nullable=True, index=True)      # our ref (vnp_TxnRef) or gateway trans no
    payment_gateway_id = Column(String(100), nullable=True, index=True)  # gateway-side transaction number
    payment_gateway = Column(String(50), nullable=True)

    payment_notes = Column(Text, nullable=True)
    failure_reason = Column(String(500), nullable=True)

    # Refund
    refund_amount = Column(BigInteger, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, server_default="false", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    booking = relationship("Booking", back_populates="payments")

    __table_args__ = (
        Index("ix_payments_booking_status", "booking_id", "payment_status"),
        Index("ix_payments_method_status", "payment_method", "payment_status"),
    )

    @property
    def status_label(self) -> str:
        return PAYMENT_STATUS_LABELS.get(self.payment_status, str(self.payment_status))

    @property
    def refundable_amount(self) -> int:
        return self.payment_amount - (self.refund_amount or 0)

    def append_note(self, note: str) -> None:
        self.payment_notes = (self.payment_notes or "") + f"\n{note}"

    def to_dict(self) -> dict:
        method = PaymentMethod(self.payment_method)
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "booking_code": self.booking.booking_code if self.booking else None,
            "payment_amount": self.payment_amount,
            "payment_method": method.value,
            "payment_method_name": method.label,
            "payment_status": int(self.payment_status),
            "payment_status_name": self.status_label,
            "transaction_id": self.transaction_id,
            "payment_gateway_id": self.payment_gateway_id,
            "payment_gateway": self.payment_gateway,
            "payment_notes": self.payment_notes,
            "failure_reason": self.failure_reason,
            "refund_amount": self.refund_amount,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "refunded_at": self.refunded_at.isoformat() if self.refunded_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
