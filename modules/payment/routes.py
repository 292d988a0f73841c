"""
Payment Routes
================
Online payment (VNPay / Momo) redirect + callbacks, manual payments, refunds.

Endpoints:
  POST /api/payments/online               Create gateway payment, returns redirect URL
  GET  /api/payments/vnpay-callback       VNPay IPN (server to server)
  GET  /api/payments/vnpay-return         VNPay browser return → frontend redirect
  GET  /api/payments/vnpay-return-json    VNPay return as JSON
  POST /api/payments/momo-callback        Momo IPN
  GET  /api/payments/momo-return          Momo browser return → frontend redirect
  GET  /api/payments/momo-return-json     Momo return as JSON
  POST /api/payments                      Manual payment (cash / bank transfer)
  POST /api/payments/process              Host/admin confirms a manual payment
  GET  /api/payments                      All payments, paged and filtered (admin)
  GET  /api/payments/host                 Payments of the host's homestays
  GET  /api/payments/my-payments          Payments of the current guest
  GET  /api/payments/{id}                 Payment detail
  GET  /api/payments/booking/{id}         Payments of a booking
  GET  /api/payments/{id}/refund-status   Refundable amount
  POST /api/payments/{id}/refund          Refund (host/admin)
  POST /api/payments/{id}/mark-failed     Mark open payment failed (host/admin)
"""

import logging
import urllib.parse
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from config.settings import FRONTEND_URL
from common.exceptions import AuthorizationError, BookingSystemError, raise_http
from common.helpers import get_real_ip
from modules.auth.deps import require_login, require_host_or_admin, require_admin
from modules.payment.models import PaymentMethod, PaymentStatus
from modules.payment.service import payment_service

logger = logging.getLogger("homestay.payment")

router = APIRouter(prefix="/api/payments", tags=["payments"])


# ==========================================
# Schemas
# ==========================================

class CreateOnlinePaymentRequest(BaseModel):
    booking_id: int = Field(..., gt=0)
    payment_method: PaymentMethod
    return_url: str = Field(..., min_length=1)
    payment_notes: Optional[str] = Field(None, max_length=1000)


class CreatePaymentRequest(BaseModel):
    booking_id: int = Field(..., gt=0)
    payment_method: PaymentMethod
    payment_amount: int = Field(..., gt=0)
    payment_notes: Optional[str] = Field(None, max_length=1000)


class ProcessPaymentRequest(BaseModel):
    payment_id: int = Field(..., gt=0)
    transaction_id: Optional[str] = Field(None, max_length=100)
    payment_gateway_id: Optional[str] = Field(None, max_length=100)
    payment_gateway: Optional[str] = Field(None, max_length=50)


class RefundPaymentRequest(BaseModel):
    refund_amount: int = Field(..., gt=0)
    refund_reason: str = Field("", max_length=500)


class MarkPaymentFailedRequest(BaseModel):
    failure_reason: str = Field("", max_length=500)


def _ok(message: str, data=None, success: bool = True) -> dict:
    return {"success": success, "message": message, "data": data}


async def _callback_params(request: Request) -> dict:
    """Query string plus JSON or form body, flattened to str → str."""
    params = dict(request.query_params)
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if "application/json" in content_type:
            body = await request.json()
            if isinstance(body, dict):
                params.update({k: "" if v is None else str(v) for k, v in body.items()})
        else:
            form = await request.form()
            params.update({k: str(v) for k, v in form.items()})
    return params


# ==========================================
# 🏦 Online Payment
# ==========================================

@router.post("/online")
async def create_online_payment(
    request: Request,
    body: CreateOnlinePaymentRequest,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    """Create the payment record and return the gateway URL to redirect the browser to."""
    try:
        result = payment_service.create_online_payment(
            db, me.id, body.booking_id, body.payment_method, body.return_url,
            notes=body.payment_notes, ip_address=get_real_ip(request),
        )
    except BookingSystemError as e:
        db.rollback()
        raise_http(e)
    db.commit()
    return _ok("Payment URL created successfully. Please complete payment on the gateway.", result)


# ==========================================
# 🏦 VNPay: IPN + Return
# ==========================================

@router.get("/vnpay-callback")
async def vnpay_callback(request: Request, db: Session = Depends(get_db)):
    """VNPay server-to-server notification. Always answers with an RspCode."""
    logger.info("VNPay callback received")
    params = dict(request.query_params)
    try:
        outcome = payment_service.process_callback(db, PaymentMethod.VNPAY, params)
    except BookingSystemError as e:
        db.rollback()
        logger.warning(f"VNPay callback rejected: {e.message}")
        return {"RspCode": "01", "Message": "Order not found"}
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing VNPay callback: {e}")
        return {"RspCode": "99", "Message": "Unknown error"}

    if not outcome.verified:
        db.rollback()
        return {"RspCode": "97", "Message": "Invalid Checksum"}

    db.commit()
    if outcome.completed:
        return {"RspCode": "00", "Message": "Confirm Success"}
    return {"RspCode": "01", "Message": "Confirm Fail"}


@router.get("/vnpay-return")
async def vnpay_return(request: Request, db: Session = Depends(get_db)):
    """User lands here after paying on VNPay; forward the result to the frontend."""
    logger.info("VNPay return received")
    params = dict(request.query_params)
    try:
        outcome = payment_service.process_callback(db, PaymentMethod.VNPAY, params)
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing VNPay return: {e}")
        reason = urllib.parse.quote("System error occurred")
        return RedirectResponse(f"{FRONTEND_URL}/payment-failure?reason={reason}", status_code=303)

    if not outcome.verified:
        db.rollback()
        reason = urllib.parse.quote(outcome.message)
        return RedirectResponse(f"{FRONTEND_URL}/payment-failure?reason={reason}", status_code=303)

    db.commit()
    query = urllib.parse.urlencode(params, quote_via=urllib.parse.quote)
    return RedirectResponse(f"{FRONTEND_URL}/payment-callback?{query}", status_code=303)


@router.get("/vnpay-return-json")
async def vnpay_return_json(request: Request, db: Session = Depends(get_db)):
    params = dict(request.query_params)
    try:
        outcome = payment_service.process_callback(db, PaymentMethod.VNPAY, params)
    except BookingSystemError as e:
        db.rollback()
        raise_http(e)

    if not outcome.verified:
        db.rollback()
        return _ok(outcome.message, success=False)

    db.commit()
    success = outcome.completed
    return _ok(
        "Payment completed successfully." if success else "Payment failed.",
        outcome.payment.to_dict(),
        success=success,
    )


# ==========================================
# 🏦 Momo: IPN + Return
# ==========================================

@router.post("/momo-callback")
async def momo_callback(request: Request, db: Session = Depends(get_db)):
    """Momo IPN (JSON or form body)."""
    logger.info("Momo callback received")
    try:
        params = await _callback_params(request)
        outcome = payment_service.process_callback(db, PaymentMethod.MOMO, params)
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing Momo callback: {e}")
        return {"resultCode": 99, "message": "Unknown error"}

    if not outcome.verified:
        db.rollback()
        return {"resultCode": 1, "message": outcome.message}

    db.commit()
    success = outcome.completed
    return {"resultCode": 0 if success else 1, "message": "Confirm Success" if success else "Confirm Fail"}


@router.get("/momo-return")
async def momo_return(request: Request, db: Session = Depends(get_db)):
    logger.info("Momo return received")
    params = dict(request.query_params)
    try:
        outcome = payment_service.process_callback(db, PaymentMethod.MOMO, params)
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing Momo return: {e}")
        reason = urllib.parse.quote("System error occurred")
        return RedirectResponse(f"{FRONTEND_URL}/momo-callback?resultCode=1006&message={reason}", status_code=303)

    if outcome.verified:
        db.commit()
    else:
        db.rollback()
    query = urllib.parse.urlencode(params, quote_via=urllib.parse.quote)
    return RedirectResponse(f"{FRONTEND_URL}/momo-callback?{query}", status_code=303)


@router.get("/momo-return-json")
async def momo_return_json(request: Request, db: Session = Depends(get_db)):
    params = dict(request.query_params)
    try:
        outcome = payment_service.process_callback(db, PaymentMethod.MOMO, params)
    except BookingSystemError as e:
        db.rollback()
        raise_http(e)

    if not outcome.verified:
        db.rollback()
        return _ok(outcome.message, success=False)

    db.commit()
    success = outcome.completed
    return _ok(
        "Thanh toán MoMo thành công!" if success else "Thanh toán thất bại hoặc bị hủy.",
        outcome.payment.to_dict(),
        success=success,
    )


# ==========================================
# 💵 Manual Payment
# ==========================================

@router.post("")
async def create_payment(
    body: CreatePaymentRequest,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    try:
        payment = payment_service.create_manual_payment(
            db, me.id, body.booking_id, body.payment_method, body.payment_amount, notes=body.payment_notes,
        )
    except BookingSystemError as e:
        db.rollback()
        raise_http(e)
    db.commit()
    return _ok("Payment created successfully.", payment.to_dict())


@router.post("/process")
async def process_payment(
    body: ProcessPaymentRequest,
    db: Session = Depends(get_db),
    me=Depends(require_host_or_admin),
):
    try:
        payment = payment_service.get_by_id(db, body.payment_id)
        if not payment_service.can_manage(payment.booking, me):
            raise AuthorizationError("You do not have permission to manage this payment.")
        payment = payment_service.process_payment(
            db, body.payment_id,
            transaction_id=body.transaction_id,
            payment_gateway_id=body.payment_gateway_id,
            payment_gateway=body.payment_gateway,
        )
    except BookingSystemError as e:
        db.rollback()
        raise_http(e)
    db.commit()
    return _ok("Payment processed successfully.", payment.to_dict())


# ==========================================
# 🔎 Queries
# ==========================================

def _payment_filters(
    search: str = "",
    booking_code: str = "",
    payment_method: Optional[PaymentMethod] = None,
    payment_status: Optional[PaymentStatus] = None,
    min_amount: Optional[int] = None,
    max_amount: Optional[int] = None,
    date_from: str = "",
    date_to: str = "",
    sort_by: str = "createdAt",
    sort_direction: str = "desc",
) -> dict:
    return {
        "search": search, "booking_code": booking_code,
        "payment_method": payment_method, "payment_status": payment_status,
        "min_amount": min_amount, "max_amount": max_amount,
        "date_from": date_from, "date_to": date_to,
        "sort_by": sort_by, "sort_direction": sort_direction,
    }


def _paged(db: Session, message: str, page: int, per_page: int, filters: dict, **scope) -> dict:
    page = max(page, 1)
    per_page = max(min(per_page, 100), 1)
    payments, total = payment_service.list_payments(db, page=page, per_page=per_page, **scope, **filters)
    return _ok(message, {
        "items": [p.to_dict() for p in payments],
        "total_count": total,
        "page_number": page,
        "page_size": per_page,
        "total_pages": (total + per_page - 1) // per_page,
    })


@router.get("")
async def list_all_payments(
    page: int = 1,
    per_page: int = 20,
    filters: dict = Depends(_payment_filters),
    db: Session = Depends(get_db),
    me=Depends(require_admin),
):
    return _paged(db, "Payments retrieved successfully.", page, per_page, filters)


@router.get("/host")
async def host_payments(
    page: int = 1,
    per_page: int = 20,
    filters: dict = Depends(_payment_filters),
    db: Session = Depends(get_db),
    me=Depends(require_host_or_admin),
):
    return _paged(db, "Host payments retrieved successfully.", page, per_page, filters, host_id=me.id)


@router.get("/my-payments")
async def my_payments(
    page: int = 1,
    per_page: int = 20,
    filters: dict = Depends(_payment_filters),
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    return _paged(db, "Payments retrieved successfully.", page, per_page, filters, guest_id=me.id)


@router.get("/booking/{booking_id}")
async def payments_by_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    try:
        booking = payment_service.get_booking(db, booking_id)
        payment_service.ensure_can_view(booking, me)
    except BookingSystemError as e:
        raise_http(e)
    payments = payment_service.get_by_booking(db, booking_id)
    return _ok("Payments retrieved successfully.", [p.to_dict() for p in payments])


@router.get("/{payment_id}")
async def get_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    try:
        payment = payment_service.get_by_id(db, payment_id)
        payment_service.ensure_can_view(payment.booking, me)
    except BookingSystemError as e:
        raise_http(e)
    return _ok("Payment retrieved successfully.", payment.to_dict())


@router.get("/{payment_id}/refund-status")
async def refund_status(
    payment_id: int,
    db: Session = Depends(get_db),
    me=Depends(require_login),
):
    try:
        payment = payment_service.get_by_id(db, payment_id)
        payment_service.ensure_can_view(payment.booking, me)
        status = payment_service.get_refund_status(db, payment_id)
    except BookingSystemError as e:
        raise_http(e)
    return _ok("Refund status retrieved successfully.", status)


# ==========================================
# 🔄 Refund / Mark Failed
# ==========================================

@router.post("/{payment_id}/refund")
async def refund_payment(
    payment_id: int,
    body: RefundPaymentRequest,
    db: Session = Depends(get_db),
    me=Depends(require_host_or_admin),
):
    try:
        payment = payment_service.refund_payment(db, payment_id, me, body.refund_amount, body.refund_reason)
    except BookingSystemError as e:
        db.rollback()
        raise_http(e)
    db.commit()
    fully = payment.payment_status == PaymentStatus.REFUNDED
    return _ok("Payment fully refunded." if fully else "Payment partially refunded.", payment.to_dict())


@router.post("/{payment_id}/mark-failed")
async def mark_failed(
    payment_id: int,
    body: MarkPaymentFailedRequest,
    db: Session = Depends(get_db),
    me=Depends(require_host_or_admin),
):
    try:
        payment = payment_service.get_by_id(db, payment_id)
        if not payment_service.can_manage(payment.booking, me):
            raise AuthorizationError("You do not have permission to manage this payment.")
        payment_service.mark_failed(db, payment_id, body.failure_reason)
    except BookingSystemError as e:
        db.rollback()
        raise_http(e)
    db.commit()
    return _ok("Payment marked as failed.")
