import os

# Settings are read at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["VNPAY_URL"] = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
os.environ["VNPAY_TMN_CODE"] = "TESTTMN1"
os.environ["VNPAY_HASH_SECRET"] = "testsecret"
os.environ["MOMO_URL"] = "https://test-payment.momo.vn/v2/gateway/api/create"
os.environ["MOMO_REFUND_URL"] = "https://test-payment.momo.vn/v2/gateway/api/refund"
os.environ["MOMO_QUERY_URL"] = "https://test-payment.momo.vn/v2/gateway/api/query"
os.environ["MOMO_PARTNER_CODE"] = "MOMOTEST"
os.environ["MOMO_ACCESS_KEY"] = "momo-access"
os.environ["MOMO_SECRET_KEY"] = "momo-secret"
os.environ["MOMO_IPN_URL"] = "https://api.homestay.test/api/payments/momo-callback"
os.environ["FRONTEND_URL"] = "http://frontend.test"

import pytest
from fastapi.testclient import TestClient

from config import settings
from config.database import Base, engine, SessionLocal
from common.security import create_token
from modules.user.models import User
from modules.booking.models import Homestay, Booking, BookingStatus
from modules.payment.models import PaymentMethod
from modules.payment.signing import sign
from modules.payment.gateways import get_gateway
import modules.payment.gateways.momo as momo_module
from main import app


class FakeResponse:
    def __init__(self, data):
        self._data = data

    def raise_for_status(self):
        return None

    def json(self):
        return self._data


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def _add(db, obj):
    db.add(obj)
    db.commit()
    return obj


@pytest.fixture
def guest(db):
    return _add(db, User(email="guest@example.com", full_name="Nguyễn Văn An"))


@pytest.fixture
def host(db):
    return _add(db, User(email="host@example.com", full_name="Trần Thị Bình", is_host=True))


@pytest.fixture
def other_host(db):
    return _add(db, User(email="other-host@example.com", is_host=True))


@pytest.fixture
def admin(db):
    return _add(db, User(email="admin@example.com", is_admin=True))


@pytest.fixture
def stranger(db):
    return _add(db, User(email="stranger@example.com"))


@pytest.fixture
def homestay(db, host):
    return _add(db, Homestay(name="Đà Lạt Pine House", owner_id=host.id, is_instant_book=True))


@pytest.fixture
def booking(db, guest, homestay):
    return _add(db, Booking(
        booking_code="BK0001",
        guest_id=guest.id,
        homestay_id=homestay.id,
        total_amount=1_000_000,
        booking_status=BookingStatus.PENDING.value,
    ))


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def build(user):
        return {"Authorization": f"Bearer {create_token({'sub': user.id})}"}
    return build


@pytest.fixture
def vnpay_callback():
    """Build a VNPay callback signed with the configured hash secret."""
    def build(txn_ref, amount, code="00", transaction_no="14123456"):
        params = {
            "vnp_Amount": str(amount * 100),
            "vnp_BankCode": "NCB",
            "vnp_CardType": "ATM",
            "vnp_OrderInfo": "Thanh toan dat phong #BK0001",
            "vnp_PayDate": "20261019103000",
            "vnp_ResponseCode": code,
            "vnp_TmnCode": settings.VNPAY_TMN_CODE,
            "vnp_TransactionNo": transaction_no,
            "vnp_TransactionStatus": code,
            "vnp_TxnRef": txn_ref,
            "vnp_SecureHashType": "HmacSHA512",
        }
        params["vnp_SecureHash"] = sign(params, settings.VNPAY_HASH_SECRET)
        return params
    return build


@pytest.fixture
def momo_callback():
    """Build a Momo IPN payload signed with the configured secret key."""
    def build(order_id, amount, result_code=0, trans_id="4088878653"):
        gateway = get_gateway(PaymentMethod.MOMO)
        params = {
            "partnerCode": gateway.partner_code,
            "orderId": order_id,
            "requestId": "6b0f2c1e-0000-4000-8000-000000000001",
            "amount": amount,
            "orderInfo": "Thanh toan dat phong #BK0001",
            "orderType": "momo_wallet",
            "transId": trans_id,
            "resultCode": result_code,
            "message": "Successful." if result_code == 0 else "Transaction denied by user.",
            "payType": "qr",
            "responseTime": 1760844600000,
            "extraData": "",
        }
        params["signature"] = gateway.callback_signature(params)
        return params
    return build


@pytest.fixture
def momo_api(monkeypatch):
    """Stub Momo's HTTP API. Set .response to change the reply; .calls records requests."""
    class Stub:
        response = {"resultCode": 0, "message": "Successful.", "payUrl": "https://test-payment.momo.vn/pay/abc"}
        calls = []

        def post(self, url, json=None, timeout=None):
            self.calls.append({"url": url, "json": json, "timeout": timeout})
            return FakeResponse(self.response)

    stub = Stub()
    stub.calls = []
    monkeypatch.setattr(momo_module.httpx, "post", stub.post)
    return stub
