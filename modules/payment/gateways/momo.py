"""
Momo Gateway
=============
REST/JSON. Signed create request (HMAC-SHA256) → payUrl → signed IPN/return.
"""

import hashlib
import hmac
import logging
import uuid
from typing import Dict, Any, Optional

import httpx

from config import settings
from common.helpers import now_utc, ticks, from_unix_ms, safe_int
from modules.payment.models import PaymentMethod
from modules.payment.gateways import (
    BaseGateway, GatewayPaymentRequest, GatewayCreateResult,
    GatewayCallbackResult, register_gateway,
)

logger = logging.getLogger("homestay.gateway.momo")

MOMO_REQUEST_TYPE = "payWithMethod"

# Field order of the callback signature is fixed by Momo (alphabetical, no extras)
MOMO_CALLBACK_FIELDS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo", "orderType",
    "partnerCode", "payType", "requestId", "responseTime", "resultCode", "transId",
)

MOMO_RESULT_MESSAGES = {
    0: "Giao dịch thành công",
    1001: "Yêu cầu không hợp lệ",
    1002: "Lỗi khi xác thực merchant",
    1003: "Yêu cầu bị từ chối",
    1004: "Số tiền không hợp lệ",
    1005: "Lỗi không xác định",
    1006: "Giao dịch không thành công",
    9000: "Giao dịch đã được xử lý trước đó",
    9001: "Giao dịch đang được xử lý",
}


def hmac_sha256(secret: str, raw: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()


def raw_signature(pairs) -> str:
    """Join (key, value) pairs as key=value&... in the given order, without encoding."""
    return "&".join(f"{k}={'' if v is None else v}" for k, v in pairs)


def result_message(code: Optional[int]) -> str:
    return MOMO_RESULT_MESSAGES.get(code, "Giao dịch thất bại")


class MomoGateway(BaseGateway):
    method = PaymentMethod.MOMO
    name = "Momo"

    def __init__(
        self,
        url: str = None,
        refund_url: str = None,
        query_url: str = None,
        partner_code: str = None,
        access_key: str = None,
        secret_key: str = None,
        ipn_url: str = None,
        timeout: int = None,
    ):
        self.url = url if url is not None else settings.MOMO_URL
        self.refund_url = refund_url if refund_url is not None else settings.MOMO_REFUND_URL
        self.query_url = query_url if query_url is not None else settings.MOMO_QUERY_URL
        self.partner_code = partner_code if partner_code is not None else settings.MOMO_PARTNER_CODE
        self.access_key = access_key if access_key is not None else settings.MOMO_ACCESS_KEY
        self.secret_key = secret_key if secret_key is not None else settings.MOMO_SECRET_KEY
        self.ipn_url = ipn_url if ipn_url is not None else settings.MOMO_IPN_URL
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS

    def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = httpx.post(url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Momo response: {type(data).__name__}")
        return data

    def create_signature(self, amount: int, order_id: str, order_info: str, redirect_url: str, request_id: str) -> str:
        raw = raw_signature([
            ("accessKey", self.access_key),
            ("amount", amount),
            ("extraData", ""),
            ("ipnUrl", self.ipn_url),
            ("orderId", order_id),
            ("orderInfo", order_info),
            ("partnerCode", self.partner_code),
            ("redirectUrl", redirect_url),
            ("requestId", request_id),
            ("requestType", MOMO_REQUEST_TYPE),
        ])
        return hmac_sha256(self.secret_key, raw)

    def callback_signature(self, params: Dict[str, Any]) -> str:
        fixed = {"accessKey": self.access_key, "partnerCode": self.partner_code}
        raw = raw_signature(
            (name, fixed[name] if name in fixed else params.get(name, ""))
            for name in MOMO_CALLBACK_FIELDS
        )
        logger.debug(f"Momo raw signature string: {raw}")
        return hmac_sha256(self.secret_key, raw)

    def create_payment(self, req: GatewayPaymentRequest) -> GatewayCreateResult:
        logger.info(f"Creating Momo payment URL for booking {req.booking_id}")
        order_id = f"{req.booking_id}_{ticks(now_utc())}"
        request_id = str(uuid.uuid4())
        amount = int(req.amount)

        payload = {
            "partnerCode": self.partner_code,
            "accessKey": self.access_key,
            "requestId": request_id,
            "amount": amount,
            "orderId": order_id,
            "orderInfo": req.order_info,
            "redirectUrl": req.return_url,
            "ipnUrl": self.ipn_url,
            "extraData": "",
            "requestType": MOMO_REQUEST_TYPE,
            "signature": self.create_signature(amount, order_id, req.order_info, req.return_url, request_id),
            "lang": "vi",
            "autoCapture": True,
        }
        try:
            data = self._post(self.url, payload)
            logger.info(f"Momo create [{order_id}]: resultCode={data.get('resultCode')}")

            if data.get("resultCode") == 0 and data.get("payUrl"):
                return GatewayCreateResult(
                    success=True,
                    redirect_url=data["payUrl"],
                    transaction_id=order_id,
                    message="Payment URL created successfully",
                )
            msg = data.get("message", "Unknown error")
            return GatewayCreateResult(success=False, message=f"Error creating payment URL: {msg}")

        except httpx.TimeoutException:
            logger.error(f"Momo create timed out for booking {req.booking_id}")
            return GatewayCreateResult(success=False, message="Momo did not respond. Please try again.")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Momo create failed for booking {req.booking_id}: {e}")
            return GatewayCreateResult(success=False, message=f"Error creating payment URL: {e}")

    def process_callback(self, params: Dict[str, Any]) -> GatewayCallbackResult:
        logger.info("Processing Momo callback")
        raw = {k: str(v) for k, v in params.items()}

        signature = params.get("signature")
        if not signature:
            logger.warning("Missing signature in Momo callback")
            return GatewayCallbackResult(success=False, signature_valid=False, message="Missing signature", raw_data=raw)

        expected = self.callback_signature(params)
        supplied = str(signature).lower().encode("utf-8", errors="replace")
        if not hmac.compare_digest(expected.encode("ascii"), supplied):
            logger.warning(f"Invalid Momo signature [orderId={params.get('orderId')}]")
            return GatewayCallbackResult(success=False, signature_valid=False, message="Invalid signature", raw_data=raw)

        order_id = str(params.get("orderId", ""))
        result_code = safe_int(params.get("resultCode"))
        success = result_code == 0

        logger.info(f"Momo callback processed: OrderId={order_id}, ResultCode={result_code}, Success={success}")
        return GatewayCallbackResult(
            success=success,
            transaction_id=str(params.get("transId", "")) or None,
            reference=order_id or None,
            order_id=order_id.split("_")[0] if order_id else None,
            amount=safe_int(params.get("amount")) or 0,
            response_code=str(result_code) if result_code is not None else None,
            message=result_message(result_code),
            transaction_date=from_unix_ms(params.get("responseTime")) or now_utc(),
            bank_code="Momo",
            raw_data=raw,
        )

    def refund(self, transaction_id: str, amount: int) -> GatewayCreateResult:
        logger.info(f"Processing Momo refund for transaction {transaction_id}")
        request_id = str(uuid.uuid4())
        description = "Refund Payment"
        order_id = f"{transaction_id}_refund_{ticks(now_utc())}"
        raw = raw_signature([
            ("accessKey", self.access_key),
            ("amount", int(amount)),
            ("description", description),
            ("orderId", order_id),
            ("partnerCode", self.partner_code),
            ("requestId", request_id),
            ("transId", transaction_id),
        ])
        payload = {
            "partnerCode": self.partner_code,
            "orderId": order_id,
            "requestId": request_id,
            "amount": int(amount),
            "transId": safe_int(transaction_id) or transaction_id,
            "lang": "vi",
            "description": description,
            "signature": hmac_sha256(self.secret_key, raw),
        }
        try:
            data = self._post(self.refund_url, payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Momo refund failed for {transaction_id}: {e}")
            return GatewayCreateResult(success=False, message=f"Error processing refund: {e}")

        if data.get("resultCode") == 0:
            return GatewayCreateResult(success=True, transaction_id=transaction_id, message="Refund processed successfully")
        return GatewayCreateResult(success=False, message=f"Refund failed: {data.get('message', 'Unknown error')}")

    def query_transaction(self, transaction_id: str) -> GatewayCreateResult:
        logger.info(f"Querying Momo transaction {transaction_id}")
        request_id = str(uuid.uuid4())
        raw = raw_signature([
            ("accessKey", self.access_key),
            ("orderId", transaction_id),
            ("partnerCode", self.partner_code),
            ("requestId", request_id),
        ])
        payload = {
            "partnerCode": self.partner_code,
            "requestId": request_id,
            "orderId": transaction_id,
            "signature": hmac_sha256(self.secret_key, raw),
            "lang": "vi",
        }
        try:
            data = self._post(self.query_url, payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Momo query failed for {transaction_id}: {e}")
            return GatewayCreateResult(success=False, message=f"Error querying transaction: {e}")

        if data.get("resultCode") == 0:
            return GatewayCreateResult(success=True, transaction_id=transaction_id, message="Transaction found")
        return GatewayCreateResult(success=False, message="Transaction not found or failed")


register_gateway(MomoGateway())
