import hashlib
import hmac
from urllib.parse import parse_qsl, urlsplit

import pytest

from common.exceptions import MalformedParameterError
from modules.payment.signing import (
    GatewayParameterSet, url_encode, canonical_string, sign,
    build_redirect_url, verify_callback,
)

BASE_URL = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
BOOKING_PARAMS = {"amount": "10000000", "orderId": "BOOK123", "returnUrl": "https://x/ret"}


def _query_params(url):
    return dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))


def test_build_redirect_url_is_deterministic():
    assert build_redirect_url(BASE_URL, BOOKING_PARAMS, "testsecret") == \
        build_redirect_url(BASE_URL, dict(BOOKING_PARAMS), "testsecret")


def test_redirect_url_layout():
    url = build_redirect_url(BASE_URL, BOOKING_PARAMS, "testsecret")
    canonical = "amount=10000000&orderId=BOOK123&returnUrl=https%3A%2F%2Fx%2Fret"
    expected_hash = hmac.new(b"testsecret", canonical.encode(), hashlib.sha512).hexdigest()
    assert url == f"{BASE_URL}?{canonical}&vnp_SecureHash={expected_hash}"
    assert len(expected_hash) == 128 and expected_hash == expected_hash.lower()


def test_signed_request_verifies_with_same_secret_only():
    url = build_redirect_url(BASE_URL, BOOKING_PARAMS, "testsecret")
    params = _query_params(url)
    assert verify_callback(params, params["vnp_SecureHash"], "testsecret") is True
    assert verify_callback(params, params["vnp_SecureHash"], "wrongsecret") is False


def test_response_code_tampering_is_detected():
    callback = {
        "vnp_Amount": "100000000",
        "vnp_ResponseCode": "00",
        "vnp_TxnRef": "12_638650000000000000",
        "vnp_OrderInfo": "Thanh toan dat phong #BK0012",
    }
    supplied = sign(callback, "testsecret")
    assert verify_callback(callback, supplied, "testsecret") is True

    tampered = dict(callback, vnp_ResponseCode="99")
    assert verify_callback(tampered, supplied, "testsecret") is False


def test_added_or_removed_field_is_detected():
    supplied = sign(BOOKING_PARAMS, "testsecret")
    assert verify_callback(dict(BOOKING_PARAMS, extra="1"), supplied, "testsecret") is False
    removed = {k: v for k, v in BOOKING_PARAMS.items() if k != "orderId"}
    assert verify_callback(removed, supplied, "testsecret") is False


def test_input_order_does_not_change_signature():
    reversed_params = dict(reversed(list(BOOKING_PARAMS.items())))
    assert sign(reversed_params, "k") == sign(BOOKING_PARAMS, "k")


def test_verification_ignores_hash_fields_and_case():
    supplied = sign(BOOKING_PARAMS, "testsecret")
    params = dict(BOOKING_PARAMS, vnp_SecureHash=supplied, vnp_SecureHashType="HmacSHA512")
    assert verify_callback(params, supplied.upper(), "testsecret") is True


def test_missing_or_partial_hash_fails_verification():
    supplied = sign(BOOKING_PARAMS, "testsecret")
    assert verify_callback(BOOKING_PARAMS, None, "testsecret") is False
    assert verify_callback(BOOKING_PARAMS, "", "testsecret") is False
    assert verify_callback(BOOKING_PARAMS, supplied[:64], "testsecret") is False
    assert verify_callback(BOOKING_PARAMS, supplied + "0", "testsecret") is False
    assert verify_callback(BOOKING_PARAMS, " " + supplied, "testsecret") is False
    assert verify_callback(BOOKING_PARAMS, "é" * 128, "testsecret") is False


def test_empty_values_are_dropped_before_signing():
    assert sign(dict(BOOKING_PARAMS, vnp_BankCode=""), "k") == sign(BOOKING_PARAMS, "k")
    assert sign(dict(BOOKING_PARAMS, vnp_BankCode=None), "k") == sign(BOOKING_PARAMS, "k")


def test_keys_sorted_by_ordinal_not_locale():
    params = GatewayParameterSet({"a": "1", "B": "2", "_x": "3", "Z": "4"})
    assert canonical_string(params) == "B=2&Z=4&_x=3&a=1"


def test_canonical_string_excludes_hash_fields():
    params = GatewayParameterSet(dict(BOOKING_PARAMS, vnp_SecureHash="abc", vnp_SecureHashType="SHA512"))
    assert "vnp_SecureHash" not in canonical_string(params)


@pytest.mark.parametrize("raw, encoded", [
    ("a b", "a+b"),
    ("https://x/ret?a=1&b=2", "https%3A%2F%2Fx%2Fret%3Fa%3D1%26b%3D2"),
    ("Thanh toán", "Thanh+to%C3%A1n"),
    ("~user", "%7Euser"),
    ("-_.!*()", "-_.!*()"),
    ("100%", "100%25"),
])
def test_url_encode(raw, encoded):
    assert url_encode(raw) == encoded


def test_redirect_url_rejects_hash_fields_in_request():
    with pytest.raises(MalformedParameterError):
        build_redirect_url(BASE_URL, dict(BOOKING_PARAMS, vnp_SecureHash="x"), "k")
    with pytest.raises(MalformedParameterError):
        build_redirect_url(BASE_URL, dict(BOOKING_PARAMS, vnp_SecureHashType="SHA512"), "k")


def test_malformed_text_is_a_data_error():
    with pytest.raises(MalformedParameterError):
        sign({"vnp_OrderInfo": "\ud800"}, "k")
    with pytest.raises(MalformedParameterError):
        GatewayParameterSet({"vnp_OrderInfo": b"\xff\xfe"})


def test_parameter_set_accepts_utf8_bytes():
    params = GatewayParameterSet({"vnp_OrderInfo": "Đặt phòng".encode("utf-8")})
    assert params.get("vnp_OrderInfo") == "Đặt phòng"
    assert "vnp_OrderInfo" in params and len(params) == 1


def test_without_returns_a_copy():
    params = GatewayParameterSet(BOOKING_PARAMS)
    trimmed = params.without(["orderId"])
    assert "orderId" not in trimmed
    assert "orderId" in params
