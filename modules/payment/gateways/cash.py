"""
Cash Gateway
=============
Offline payment. No redirect; the host confirms once the money is received.
"""

import logging
from typing import Dict, Any

from common.helpers import now_utc, ticks, safe_int
from modules.payment.models import PaymentMethod
from modules.payment.gateways import (
    BaseGateway, GatewayPaymentRequest, GatewayCreateResult,
    GatewayCallbackResult, register_gateway,
)

logger = logging.getLogger("homestay.gateway.cash")


class CashGateway(BaseGateway):
    method = PaymentMethod.CASH
    name = "Cash"

    def create_payment(self, req: GatewayPaymentRequest) -> GatewayCreateResult:
        logger.info(f"Creating cash payment record for booking {req.booking_id}")
        return GatewayCreateResult(
            success=True,
            redirect_url=None,
            transaction_id=f"CASH_{req.booking_id}_{ticks(now_utc())}",
            message="Yêu cầu thanh toán tiền mặt đã được tạo. Vui lòng liên hệ chủ nhà để hoàn tất thanh toán.",
        )

    def process_callback(self, params: Dict[str, Any]) -> GatewayCallbackResult:
        """Cash is confirmed by hand, so whatever the host records is accepted."""
        logger.info("Processing cash payment callback")
        return GatewayCallbackResult(
            success=True,
            transaction_id=params.get("transactionId") or f"CASH_{ticks(now_utc())}",
            order_id=str(params.get("bookingId", "0")),
            amount=safe_int(params.get("amount")) or 0,
            response_code="00",
            message="Thanh toán tiền mặt đã được ghi nhận",
            transaction_date=now_utc(),
            bank_code="CASH",
            raw_data={k: str(v) for k, v in params.items()},
        )

    def refund(self, transaction_id: str, amount: int) -> GatewayCreateResult:
        logger.info(f"Processing cash refund for transaction {transaction_id}")
        return GatewayCreateResult(
            success=True,
            transaction_id=transaction_id,
            message=f"Yêu cầu hoàn tiền {amount:,} ₫ đã được ghi nhận. Host sẽ xử lý hoàn tiền tiền mặt.",
        )

    def query_transaction(self, transaction_id: str) -> GatewayCreateResult:
        return GatewayCreateResult(
            success=True,
            transaction_id=transaction_id,
            message="Ghi nhận yêu cầu thanh toán tiền mặt",
        )


register_gateway(CashGateway())
