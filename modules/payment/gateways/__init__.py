"""
Payment Gateway Abstraction
=============================
Each gateway implements create_payment(), process_callback(), refund() and
query_transaction(). Registry pattern for gateway lookup by PaymentMethod.
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from datetime import datetime

from common.exceptions import UnsupportedPaymentMethodError
from modules.payment.models import PaymentMethod


@dataclass
class GatewayPaymentRequest:
    """Input for creating a payment."""
    booking_id: int
    amount: int             # VND
    order_info: str
    return_url: str
    ip_address: str = "127.0.0.1"


@dataclass
class GatewayCreateResult:
    """Result of create_payment(), refund() and query_transaction()."""
    success: bool
    redirect_url: Optional[str] = None
    transaction_id: Optional[str] = None
    message: str = ""


@dataclass
class GatewayCallbackResult:
    """Result of process_callback()."""
    success: bool
    signature_valid: bool = True
    transaction_id: Optional[str] = None
    reference: Optional[str] = None     # our reference echoed back (vnp_TxnRef / orderId)
    order_id: Optional[str] = None     # booking id as sent in the transaction reference
    amount: int = 0
    response_code: Optional[str] = None
    message: str = ""
    transaction_date: Optional[datetime] = None
    bank_code: Optional[str] = None
    raw_data: Dict[str, str] = field(default_factory=dict)


class BaseGateway:
    """Abstract gateway interface."""
    method: PaymentMethod = None
    name: str = ""

    def create_payment(self, req: GatewayPaymentRequest) -> GatewayCreateResult:
        raise NotImplementedError

    def process_callback(self, params: Dict[str, Any]) -> GatewayCallbackResult:
        raise NotImplementedError

    def refund(self, transaction_id: str, amount: int) -> GatewayCreateResult:
        raise NotImplementedError

    def query_transaction(self, transaction_id: str) -> GatewayCreateResult:
        raise NotImplementedError


# ── Registry ──

_GATEWAYS: Dict[PaymentMethod, BaseGateway] = {}


def register_gateway(gw: BaseGateway):
    _GATEWAYS[gw.method] = gw


def get_gateway(method) -> BaseGateway:
    """Gateway for a payment method. Raises UnsupportedPaymentMethodError when none is registered."""
    try:
        key = PaymentMethod(method)
    except ValueError:
        raise UnsupportedPaymentMethodError(method)
    gw = _GATEWAYS.get(key)
    if gw is None:
        raise UnsupportedPaymentMethodError(key)
    return gw


def get_supported_methods() -> List[PaymentMethod]:
    return list(_GATEWAYS.keys())
