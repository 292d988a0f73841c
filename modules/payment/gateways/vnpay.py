"""
VNPay Gateway
==============
Redirect flow. Signed URL (HMAC-SHA512) → user pays on VNPay → signed callback.
"""

import logging
from datetime import timedelta
from typing import Dict, Any, Optional

from config import settings
from common.helpers import (
    now_vietnam, now_utc, ticks, format_gateway_date, parse_gateway_date, safe_int,
)
from modules.payment.models import PaymentMethod
from modules.payment.signing import GatewayParameterSet, build_redirect_url, verify_callback, SECURE_HASH_FIELD
from modules.payment.gateways import (
    BaseGateway, GatewayPaymentRequest, GatewayCreateResult,
    GatewayCallbackResult, register_gateway,
)

logger = logging.getLogger("homestay.gateway.vnpay")

VNPAY_SUCCESS_CODE = "00"

VNPAY_RESPONSE_MESSAGES = {
    "00": "Giao dịch thành công",
    "07": "Trừ tiền thành công. Giao dịch bị nghi ngờ (liên quan tới lừa đảo, giao dịch bất thường).",
    "09": "Giao dịch không thành công do: Thẻ/Tài khoản của khách hàng chưa đăng ký dịch vụ InternetBanking tại ngân hàng.",
    "10": "Giao dịch không thành công do: Khách hàng xác thực thông tin thẻ/tài khoản không đúng quá 3 lần",
    "11": "Giao dịch không thành công do: Đã hết hạn chờ thanh toán. Xin quý khách vui lòng thực hiện lại giao dịch.",
    "12": "Giao dịch không thành công do: Thẻ/Tài khoản của khách hàng bị khóa.",
    "13": "Giao dịch không thành công do Quý khách nhập sai mật khẩu xác thực giao dịch (OTP).",
    "24": "Giao dịch không thành công do: Khách hàng hủy giao dịch",
    "51": "Giao dịch không thành công do: Tài khoản của quý khách không đủ số dư để thực hiện giao dịch.",
    "65": "Giao dịch không thành công do: Tài khoản của Quý khách đã vượt quá hạn mức giao dịch trong ngày.",
    "75": "Ngân hàng thanh toán đang bảo trì.",
    "79": "Giao dịch không thành công do: KH nhập sai mật khẩu thanh toán quá số lần quy định.",
}


def response_message(code: Optional[str]) -> str:
    return VNPAY_RESPONSE_MESSAGES.get(code, "Giao dịch thất bại")


class VNPayGateway(BaseGateway):
    method = PaymentMethod.VNPAY
    name = "VNPay"

    def __init__(
        self,
        url: str = None,
        tmn_code: str = None,
        hash_secret: str = None,
        version: str = None,
        command: str = None,
        curr_code: str = None,
        locale: str = None,
        expire_minutes: int = None,
    ):
        self.url = url if url is not None else settings.VNPAY_URL
        self.tmn_code = tmn_code if tmn_code is not None else settings.VNPAY_TMN_CODE
        self.hash_secret = hash_secret if hash_secret is not None else settings.VNPAY_HASH_SECRET
        self.version = version or settings.VNPAY_VERSION
        self.command = command or settings.VNPAY_COMMAND
        self.curr_code = curr_code or settings.VNPAY_CURR_CODE
        self.locale = locale or settings.VNPAY_LOCALE
        self.expire_minutes = expire_minutes or settings.PAYMENT_EXPIRE_MINUTES

    def build_request_params(self, req: GatewayPaymentRequest, txn_ref: str, created) -> GatewayParameterSet:
        params = GatewayParameterSet()
        params.add("vnp_Version", self.version)
        params.add("vnp_Command", self.command)
        params.add("vnp_TmnCode", self.tmn_code)
        params.add("vnp_Amount", str(int(req.amount) * 100))  # smallest unit
        params.add("vnp_CreateDate", format_gateway_date(created))
        params.add("vnp_CurrCode", self.curr_code)
        params.add("vnp_IpAddr", req.ip_address)
        params.add("vnp_Locale", self.locale)
        params.add("vnp_OrderInfo", req.order_info)
        params.add("vnp_OrderType", "other")
        params.add("vnp_ReturnUrl", req.return_url)
        params.add("vnp_TxnRef", txn_ref)
        params.add("vnp_ExpireDate", format_gateway_date(created + timedelta(minutes=self.expire_minutes)))
        return params

    def create_payment(self, req: GatewayPaymentRequest) -> GatewayCreateResult:
        logger.info(f"Creating VNPay payment URL for booking {req.booking_id}")
        try:
            created = now_vietnam()
            txn_ref = f"{req.booking_id}_{ticks(created)}"
            params = self.build_request_params(req, txn_ref, created)
            redirect_url = build_redirect_url(self.url, dict(params.items()), self.hash_secret)
        except Exception as e:
            logger.error(f"VNPay create failed for booking {req.booking_id}: {e}")
            return GatewayCreateResult(success=False, message=f"Error creating payment URL: {e}")

        logger.info(f"VNPay payment URL created for booking {req.booking_id} [{txn_ref}]")
        return GatewayCreateResult(
            success=True,
            redirect_url=redirect_url,
            transaction_id=txn_ref,
            message="Payment URL created successfully",
        )

    def process_callback(self, params: Dict[str, Any]) -> GatewayCallbackResult:
        logger.info("Processing VNPay callback")
        response = GatewayParameterSet({k: v for k, v in params.items() if k and k.startswith("vnp_")})
        raw = {k: str(v) for k, v in params.items()}

        if not verify_callback(dict(response.items()), params.get(SECURE_HASH_FIELD, ""), self.hash_secret):
            logger.warning(f"Invalid VNPay signature [TxnRef={response.get('vnp_TxnRef')}]")
            return GatewayCallbackResult(
                success=False, signature_valid=False, message="Invalid signature", raw_data=raw,
            )

        txn_ref = response.get("vnp_TxnRef")
        code = response.get("vnp_ResponseCode")
        amount = safe_int(response.get("vnp_Amount"))
        success = code == VNPAY_SUCCESS_CODE

        logger.info(f"VNPay callback processed: TxnRef={txn_ref}, ResponseCode={code}, Success={success}")
        return GatewayCallbackResult(
            success=success,
            transaction_id=response.get("vnp_TransactionNo"),
            reference=txn_ref or None,
            order_id=txn_ref.split("_")[0] if txn_ref else None,
            amount=(amount or 0) // 100,
            response_code=code,
            message=response_message(code),
            transaction_date=parse_gateway_date(response.get("vnp_PayDate")) or now_utc(),
            bank_code=response.get("vnp_BankCode"),
            raw_data=raw,
        )

    def refund(self, transaction_id: str, amount: int) -> GatewayCreateResult:
        # TODO: call the VNPay merchant refund API (vnp_Command=refund) once credentials for it are issued
        logger.info(f"VNPay refund requested for transaction {transaction_id}")
        return GatewayCreateResult(
            success=False,
            message="Refund functionality not yet implemented. Please contact VNPay support.",
        )

    def query_transaction(self, transaction_id: str) -> GatewayCreateResult:
        logger.info(f"Querying VNPay transaction {transaction_id}")
        return GatewayCreateResult(success=False, message="Query transaction functionality not yet implemented.")


register_gateway(VNPayGateway())
