"""
Payment Service
=================
Booking payments: online gateways (VNPay, Momo), cash/manual payments,
callbacks, refunds. Gateways are picked by PaymentMethod from the registry.

All methods flush but never commit; routes own the transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from common.exceptions import AuthorizationError, BadRequestError, NotFoundError, PaymentError
from common.helpers import now_utc, safe_int, as_utc, format_vnd, VIETNAM_TZ
from config.settings import PAYMENT_EXPIRE_MINUTES
from modules.booking.models import Booking, BookingStatus, Homestay
from modules.payment.models import Payment, PaymentMethod, PaymentStatus, OPEN_STATUSES
from modules.user.models import User

# Import gateway modules to trigger register_gateway() calls
from modules.payment.gateways import get_gateway, GatewayPaymentRequest  # noqa: F401
import modules.payment.gateways.vnpay    # noqa: F401
import modules.payment.gateways.momo     # noqa: F401
import modules.payment.gateways.cash     # noqa: F401

logger = logging.getLogger("homestay.payment")

REFUNDABLE_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED)

# Failure reason written by the expiry job; a late successful callback may still complete such a payment
EXPIRED_REASON = "Hết hạn chờ thanh toán"


@dataclass
class CallbackOutcome:
    """What happened to a gateway callback. verified=False means it was rejected untouched."""
    verified: bool
    payment: Optional[Payment] = None
    message: str = ""

    @property
    def completed(self) -> bool:
        return self.payment is not None and self.payment.payment_status == PaymentStatus.COMPLETED


class PaymentService:

    # ==========================================
    # 🔎 Lookups
    # ==========================================

    def _get_booking(self, db: Session, booking_id: int) -> Booking:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFoundError(f"Booking with ID {booking_id} not found.")
        return booking

    def _booking_payments(self, db: Session, booking_id: int, lock: bool = False) -> List[Payment]:
        q = db.query(Payment).filter(Payment.booking_id == booking_id, Payment.is_deleted == False)
        if lock:
            q = q.with_for_update()
        return q.order_by(Payment.created_at.desc(), Payment.id.desc()).all()

    def total_paid(self, db: Session, booking_id: int) -> int:
        return sum(
            p.payment_amount for p in self._booking_payments(db, booking_id)
            if p.payment_status == PaymentStatus.COMPLETED
        )

    def remaining_amount(self, db: Session, booking: Booking) -> int:
        return booking.total_amount - self.total_paid(db, booking.id)

    def get_by_id(self, db: Session, payment_id: int) -> Payment:
        payment = db.query(Payment).filter(Payment.id == payment_id, Payment.is_deleted == False).first()
        if not payment:
            raise NotFoundError(f"Payment with ID {payment_id} not found.")
        return payment

    def get_by_booking(self, db: Session, booking_id: int) -> List[Payment]:
        return self._booking_payments(db, booking_id)

    def can_manage(self, booking: Optional[Booking], user: User) -> bool:
        """Admins manage every payment; hosts manage payments of their own homestays."""
        if user.is_admin:
            return True
        homestay = booking.homestay if booking else None
        return bool(user.is_host and homestay is not None and homestay.owner_id == user.id)

    def ensure_can_view(self, booking: Optional[Booking], user: User):
        if booking is not None and booking.guest_id == user.id:
            return
        if not self.can_manage(booking, user):
            raise AuthorizationError("You do not have permission to view these payments.")

    def get_booking(self, db: Session, booking_id: int) -> Booking:
        return self._get_booking(db, booking_id)

    def _check_payable(self, booking: Booking, user_id: int):
        if booking.guest_id != user_id:
            raise AuthorizationError("You can only make payments for your own bookings.")
        if booking.is_closed:
            raise BadRequestError("Cannot make payment for cancelled or rejected bookings.")

    # ==========================================
    # 📋 Listing
    # ==========================================

    def list_payments(
        self,
        db: Session,
        page: int = 1,
        per_page: int = 20,
        guest_id: Optional[int] = None,
        host_id: Optional[int] = None,
        search: str = "",
        booking_code: str = "",
        payment_method: Optional[int] = None,
        payment_status: Optional[int] = None,
        min_amount: Optional[int] = None,
        max_amount: Optional[int] = None,
        date_from: str = "",
        date_to: str = "",
        sort_by: str = "createdAt",
        sort_direction: str = "desc",
    ) -> Tuple[List[Payment], int]:
        """
        Paged, filtered payment list. guest_id narrows to one guest's bookings,
        host_id to bookings of one host's homestays; neither means all payments.
        Dates are Vietnam-local days (YYYY-MM-DD), both ends inclusive.
        """
        q = (
            db.query(Payment)
            .join(Booking, Payment.booking_id == Booking.id)
            .join(Homestay, Booking.homestay_id == Homestay.id)
            .outerjoin(User, Booking.guest_id == User.id)
            .filter(Payment.is_deleted == False)
        )
        if guest_id is not None:
            q = q.filter(Booking.guest_id == guest_id)
        if host_id is not None:
            q = q.filter(Homestay.owner_id == host_id)

        if search and search.strip():
            term = f"%{search.strip()}%"
            q = q.filter(or_(
                Booking.booking_code.ilike(term),
                Payment.transaction_id.ilike(term),
                User.full_name.ilike(term),
            ))
        if booking_code and booking_code.strip():
            q = q.filter(Booking.booking_code.ilike(f"%{booking_code.strip()}%"))
        if payment_method is not None:
            q = q.filter(Payment.payment_method == int(payment_method))
        if payment_status is not None:
            q = q.filter(Payment.payment_status == int(payment_status))
        if min_amount is not None:
            q = q.filter(Payment.payment_amount >= min_amount)
        if max_amount is not None:
            q = q.filter(Payment.payment_amount <= max_amount)
        if date_from:
            try:
                start = datetime.strptime(date_from, "%Y-%m-%d").replace(tzinfo=VIETNAM_TZ)
                q = q.filter(Payment.created_at >= as_utc(start))
            except ValueError:
                pass
        if date_to:
            try:
                end = datetime.strptime(date_to, "%Y-%m-%d").replace(tzinfo=VIETNAM_TZ) + timedelta(days=1)
                q = q.filter(Payment.created_at < as_utc(end))
            except ValueError:
                pass

        total = q.count()

        columns = {
            "createdat": Payment.created_at,
            "paymentamount": Payment.payment_amount,
            "processedat": Payment.processed_at,
        }
        column = columns.get((sort_by or "").lower(), Payment.created_at)
        if (sort_direction or "").lower() == "asc":
            q = q.order_by(column.asc(), Payment.id.asc())
        else:
            q = q.order_by(column.desc(), Payment.id.desc())

        page = max(page, 1)
        items = q.offset((page - 1) * per_page).limit(per_page).all()
        return items, total

    # ==========================================
    # 🏦 Online Payment (VNPay / Momo)
    # ==========================================

    def create_online_payment(
        self,
        db: Session,
        user_id: int,
        booking_id: int,
        method: PaymentMethod,
        return_url: str,
        notes: Optional[str] = None,
        ip_address: str = "127.0.0.1",
    ) -> Dict[str, Any]:
        """Open a payment for the unpaid remainder and get the gateway redirect URL."""
        logger.info(f"Creating online payment for booking {booking_id} by user {user_id}")
        gateway = get_gateway(method)
        if not gateway.method.is_online:
            raise BadRequestError(f"{gateway.method.label} payments are recorded as manual payments.")

        booking = self._get_booking(db, booking_id)
        self._check_payable(booking, user_id)

        remaining = self.remaining_amount(db, booking)
        if remaining <= 0:
            raise BadRequestError("Booking is already fully paid.")

        now = now_utc()
        payment = Payment(
            booking_id=booking.id,
            payment_amount=remaining,
            payment_method=int(gateway.method),
            payment_status=PaymentStatus.PENDING,
            payment_gateway=gateway.name,
            payment_notes=notes,
            created_at=now,
            updated_at=now,
        )
        db.add(payment)
        db.flush()

        result = gateway.create_payment(GatewayPaymentRequest(
            booking_id=booking.id,
            amount=remaining,
            order_info=f"Thanh toan dat phong #{booking.booking_code}",
            return_url=return_url,
            ip_address=ip_address,
        ))
        if not result.success:
            logger.warning(f"Gateway {gateway.name} refused payment for booking {booking_id}: {result.message}")
            raise PaymentError(f"Failed to create payment URL: {result.message}")

        payment.transaction_id = result.transaction_id
        payment.payment_status = PaymentStatus.PROCESSING
        payment.updated_at = now_utc()
        db.flush()

        logger.info(f"Online payment {payment.id} created for booking {booking_id} via {gateway.name}")
        return {
            "payment_id": payment.id,
            "payment_url": result.redirect_url,
            "transaction_reference": result.transaction_id,
            "message": result.message,
            "expiry_time": (now + timedelta(minutes=PAYMENT_EXPIRE_MINUTES)).isoformat(),
        }

    def process_callback(self, db: Session, method: PaymentMethod, params: Dict[str, Any]) -> CallbackOutcome:
        """
        Apply a gateway callback (IPN or browser return) to its payment.

        Callbacks that fail signature verification change nothing. Replays of an
        already settled transaction return the stored payment unchanged, except a
        successful callback for a payment the expiry job failed, which completes it.
        """
        gateway = get_gateway(method)
        logger.info(f"Processing payment callback for {gateway.name}")
        result = gateway.process_callback(params)

        if not result.signature_valid:
            return CallbackOutcome(verified=False, message=result.message)

        booking_id = safe_int(result.order_id)
        if booking_id is None:
            raise BadRequestError("Invalid booking ID in callback")

        payments = self._booking_payments(db, booking_id, lock=True)

        for p in payments:
            if p.payment_status == PaymentStatus.COMPLETED and result.transaction_id \
                    and p.transaction_id == result.transaction_id:
                logger.info(f"Payment {p.id} with transaction {result.transaction_id} already processed")
                return CallbackOutcome(verified=True, payment=p, message="Already processed")

        open_payments = [p for p in payments if p.payment_status in OPEN_STATUSES]
        payment = next((p for p in open_payments if result.reference and p.transaction_id == result.reference), None)
        if payment is None and result.reference:
            settled = next((p for p in payments if p.transaction_id == result.reference), None)
            if settled is not None and result.success and self._expired(settled):
                # Money arrived after the expiry job gave up on it
                logger.warning(f"Late payment callback for expired payment {settled.id}, reference {result.reference}")
                payment = settled
            elif settled is not None:
                logger.info(f"Payment {settled.id} for reference {result.reference} already settled")
                return CallbackOutcome(verified=True, payment=settled, message="Already processed")
        if payment is None and open_payments:
            payment = open_payments[0]
        if payment is None:
            logger.warning(f"No pending payment found for booking {booking_id}, transaction {result.transaction_id}")
            raise NotFoundError(f"No pending payment found for booking {booking_id}")

        now = now_utc()
        amount_ok = result.amount > 0 and result.amount == payment.payment_amount

        if result.success and amount_ok:
            payment.payment_status = PaymentStatus.COMPLETED
            payment.failure_reason = None
            payment.transaction_id = result.transaction_id or payment.transaction_id
            payment.payment_gateway_id = result.transaction_id
            payment.processed_at = result.transaction_date or now
            payment.append_note(f"Bank: {result.bank_code}, Response: {result.message}")
            payment.updated_at = now
            db.flush()
            self._confirm_if_fully_paid(db, payment.booking)
            logger.info(f"Payment {payment.id} completed for booking {booking_id}")
        else:
            reason = result.message if amount_ok else (
                f"Số tiền không khớp: nhận {format_vnd(result.amount)}, cần {format_vnd(payment.payment_amount)}"
            )
            payment.payment_status = PaymentStatus.FAILED
            payment.failure_reason = reason[:500]
            payment.append_note(f"Failed: {reason}, Code: {result.response_code}")
            payment.updated_at = now
            db.flush()
            logger.warning(f"Payment {payment.id} failed: {reason}")

        return CallbackOutcome(verified=True, payment=payment, message=result.message)

    @staticmethod
    def _expired(payment: Payment) -> bool:
        return payment.payment_status == PaymentStatus.FAILED and payment.failure_reason == EXPIRED_REASON

    def _confirm_if_fully_paid(self, db: Session, booking: Booking):
        """Instant-book homestays confirm a pending booking once it is fully paid."""
        paid = self.total_paid(db, booking.id)
        logger.info(f"Booking {booking.id} payment status: {paid}/{booking.total_amount}")

        if paid < booking.total_amount:
            logger.info(f"Booking {booking.id} is partially paid. Remaining: {booking.total_amount - paid}")
            return
        if booking.booking_status != BookingStatus.PENDING:
            return
        if booking.homestay and booking.homestay.is_instant_book:
            booking.booking_status = BookingStatus.CONFIRMED
            booking.updated_at = now_utc()
            db.flush()
            logger.info(f"Booking {booking.id} auto-confirmed after full payment")
        else:
            logger.info(f"Booking {booking.id} is fully paid but requires manual confirmation by host")

    # ==========================================
    # 💵 Manual Payment (Cash / Bank Transfer)
    # ==========================================

    def create_manual_payment(
        self,
        db: Session,
        user_id: int,
        booking_id: int,
        method: PaymentMethod,
        amount: int,
        notes: Optional[str] = None,
    ) -> Payment:
        logger.info(f"Creating manual payment for booking {booking_id} by user {user_id}")
        method = PaymentMethod(method)
        if method.is_online:
            raise BadRequestError(f"{method.label} payments must be created through the online payment flow.")
        booking = self._get_booking(db, booking_id)
        self._check_payable(booking, user_id)

        if amount <= 0:
            raise BadRequestError("Payment amount must be greater than zero.")
        remaining = self.remaining_amount(db, booking)
        if amount > remaining:
            raise BadRequestError(f"Payment amount exceeds remaining balance of {format_vnd(remaining)}.")

        now = now_utc()
        payment = Payment(
            booking_id=booking.id,
            payment_amount=amount,
            payment_method=int(method),
            payment_status=PaymentStatus.PENDING,
            payment_notes=notes,
            created_at=now,
            updated_at=now,
        )
        if method == PaymentMethod.CASH:
            created = get_gateway(method).create_payment(GatewayPaymentRequest(
                booking_id=booking.id, amount=amount,
                order_info=f"Thanh toan dat phong #{booking.booking_code}", return_url="",
            ))
            payment.transaction_id = created.transaction_id
            payment.payment_gateway = "Cash"
        db.add(payment)
        db.flush()

        logger.info(f"Payment {payment.id} created for booking {booking_id}")
        return payment

    def process_payment(
        self,
        db: Session,
        payment_id: int,
        transaction_id: Optional[str] = None,
        payment_gateway_id: Optional[str] = None,
        payment_gateway: Optional[str] = None,
    ) -> Payment:
        """Confirm a manual payment once the money has arrived."""
        logger.info(f"Processing payment {payment_id}")
        payment = self.get_by_id(db, payment_id)

        if payment.payment_status == PaymentStatus.COMPLETED:
            logger.info(f"Payment {payment_id} is already completed. Returning existing result.")
            return payment
        if payment.payment_status not in OPEN_STATUSES:
            raise BadRequestError(
                f"Cannot process payment with status {PaymentStatus(payment.payment_status).name}."
            )

        now = now_utc()
        payment.payment_status = PaymentStatus.COMPLETED
        payment.transaction_id = transaction_id or payment.transaction_id
        payment.payment_gateway_id = payment_gateway_id
        payment.payment_gateway = payment_gateway or payment.payment_gateway
        payment.processed_at = now
        payment.updated_at = now
        db.flush()

        self._confirm_if_fully_paid(db, payment.booking)
        logger.info(f"Payment {payment_id} processed successfully")
        return payment

    # ==========================================
    # 🔄 Refund
    # ==========================================

    def get_refund_status(self, db: Session, payment_id: int) -> Dict[str, Any]:
        payment = self.get_by_id(db, payment_id)
        refundable = payment.refundable_amount
        return {
            "payment_id": payment.id,
            "original_amount": payment.payment_amount,
            "refunded_amount": payment.refund_amount or 0,
            "refundable_amount": refundable,
            "can_refund": payment.payment_status in REFUNDABLE_STATUSES and refundable > 0,
        }

    def refund_payment(self, db: Session, payment_id: int, user: User, amount: int, reason: str = "") -> Payment:
        logger.info(f"Refunding payment {payment_id} by user {user.id}")
        payment = self.get_by_id(db, payment_id)

        if not self.can_manage(payment.booking, user):
            raise AuthorizationError("You do not have permission to refund this payment.")

        if payment.payment_status not in REFUNDABLE_STATUSES:
            raise BadRequestError("Only completed payments can be refunded.")
        if amount <= 0:
            raise BadRequestError("Refund amount must be greater than zero.")
        if amount > payment.refundable_amount:
            raise BadRequestError(
                f"Refund amount exceeds remaining refundable amount of {format_vnd(payment.refundable_amount)}."
            )

        method = PaymentMethod(payment.payment_method)
        if method.is_online:
            # Gateway refund is best effort; the refund is recorded either way
            try:
                result = get_gateway(method).refund(payment.payment_gateway_id or payment.transaction_id, amount)
                if not result.success:
                    logger.warning(f"Gateway refund failed: {result.message}. Recording manual refund.")
            except PaymentError as e:
                logger.error(f"Error processing gateway refund: {e}. Recording manual refund.")

        now = now_utc()
        total_refund = (payment.refund_amount or 0) + amount
        payment.refund_amount = total_refund
        payment.refunded_at = now
        payment.append_note(f"Refund {now:%Y-%m-%d %H:%M}: {format_vnd(amount)} - {reason}")
        payment.updated_at = now
        payment.payment_status = (
            PaymentStatus.REFUNDED if total_refund >= payment.payment_amount
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        db.flush()

        logger.info(f"Payment {payment_id} refunded {amount} VND")
        return payment

    # ==========================================
    # ❌ Failure / Expiry
    # ==========================================

    def mark_failed(self, db: Session, payment_id: int, failure_reason: str) -> Payment:
        logger.info(f"Marking payment {payment_id} as failed")
        payment = self.get_by_id(db, payment_id)
        if payment.payment_status not in OPEN_STATUSES:
            raise BadRequestError("Only pending or processing payments can be marked as failed.")

        payment.payment_status = PaymentStatus.FAILED
        payment.failure_reason = (failure_reason or "")[:500]
        payment.updated_at = now_utc()
        db.flush()
        logger.info(f"Payment {payment_id} marked as failed")
        return payment

    def expire_stale_payments(self, db: Session) -> int:
        """Fail online payments still open after the gateway expiry window. Returns count."""
        cutoff = now_utc() - timedelta(minutes=PAYMENT_EXPIRE_MINUTES)
        online = [int(m) for m in PaymentMethod if m.is_online]
        candidates = (
            db.query(Payment)
            .filter(
                Payment.payment_status.in_([int(s) for s in OPEN_STATUSES]),
                Payment.payment_method.in_(online),
                Payment.transaction_id.isnot(None),
                Payment.is_deleted == False,
            )
            .all()
        )
        count = 0
        for payment in candidates:
            created = as_utc(payment.created_at)
            if created is None or created >= cutoff:
                continue
            payment.payment_status = PaymentStatus.FAILED
            payment.failure_reason = EXPIRED_REASON
            payment.updated_at = now_utc()
            count += 1
        if count:
            db.flush()
            logger.info(f"Expired {count} stale online payments")
        return count


payment_service = PaymentService()
