"""
Payment Signing
=================
VNPay-style request signing and callback verification.

Canonical string: non-empty params sorted by ordinal key, each key and value
percent-encoded the way the gateway's reference library does it, joined as
key=value with "&". The signature is HMAC-SHA512 of that string, lowercase hex.
"""

import hashlib
import hmac
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote_plus

from common.exceptions import MalformedParameterError

SECURE_HASH_FIELD = "vnp_SecureHash"
SECURE_HASH_TYPE_FIELD = "vnp_SecureHashType"
HASH_FIELDS = (SECURE_HASH_TYPE_FIELD, SECURE_HASH_FIELD)

# Beyond alphanumerics, these stay literal; "~" is the one char quote_plus keeps that must be escaped
_URL_SAFE_EXTRA = "-_.!*()"


class GatewayParameterSet:
    """
    Ordered parameter mapping for one outbound request or one inbound callback.

    Empty values are dropped on insert. Iteration order is ordinal by key.
    """

    def __init__(self, params: Optional[Mapping[str, object]] = None):
        self._data: Dict[str, str] = {}
        if params:
            for key, value in params.items():
                self.add(key, value)

    def add(self, key: str, value) -> None:
        if value is None:
            return
        value = _to_text(value)
        if value == "":
            return
        self._data[_to_text(key)] = value

    def get(self, key: str) -> str:
        return self._data.get(key, "")

    def without(self, keys: Iterable[str]) -> "GatewayParameterSet":
        excluded = set(keys)
        copy = GatewayParameterSet()
        copy._data = {k: v for k, v in self._data.items() if k not in excluded}
        return copy

    def items(self) -> List[Tuple[str, str]]:
        return sorted(self._data.items(), key=lambda kv: kv[0])

    def __contains__(self, key) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


def _to_text(value) -> str:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedParameterError(f"Parameter is not valid UTF-8: {e}") from e
    return str(value)


def url_encode(value: str) -> str:
    """Form-style percent encoding: space as "+", uppercase hex, only -_.!*() kept literal."""
    try:
        encoded = quote_plus(value, safe=_URL_SAFE_EXTRA, encoding="utf-8", errors="strict")
    except UnicodeEncodeError as e:
        raise MalformedParameterError(f"Parameter cannot be encoded as UTF-8: {e}") from e
    return encoded.replace("~", "%7E")


def canonical_string(params: GatewayParameterSet) -> str:
    """Serialize params (hash fields removed) into the exact string that gets signed."""
    return "&".join(
        f"{url_encode(key)}={url_encode(value)}"
        for key, value in params.without(HASH_FIELDS).items()
    )


def hmac_sha512(secret: str, data: str) -> str:
    try:
        key = secret.encode("utf-8")
        message = data.encode("utf-8")
    except UnicodeEncodeError as e:
        raise MalformedParameterError(f"Signing input is not valid UTF-8: {e}") from e
    return hmac.new(key, message, hashlib.sha512).hexdigest()


def sign(params: Mapping[str, object], secret: str) -> str:
    """Signature for a parameter mapping."""
    return hmac_sha512(secret, canonical_string(GatewayParameterSet(params)))


def build_redirect_url(base_url: str, params: Mapping[str, object], secret: str) -> str:
    """
    Build the signed gateway redirect URL.

    params must not carry the hash fields. Same params and secret always give the same URL.
    """
    present = [field for field in HASH_FIELDS if field in params]
    if present:
        raise MalformedParameterError(f"Request parameters must not include {', '.join(present)}")

    query = canonical_string(GatewayParameterSet(params))
    secure_hash = hmac_sha512(secret, query)
    return f"{base_url}?{query}&{SECURE_HASH_FIELD}={secure_hash}"


def verify_callback(params: Mapping[str, object], supplied_hash: Optional[str], secret: str) -> bool:
    """
    Recompute the signature of callback params and compare with supplied_hash.

    Hash fields inside params are ignored. Comparison is case-insensitive and
    constant time. A missing hash is a failed verification, not an error.
    """
    if not supplied_hash:
        return False
    expected = sign(params, secret)
    supplied = _to_text(supplied_hash).lower()
    return hmac.compare_digest(expected.encode("ascii"), supplied.encode("utf-8", errors="replace"))
