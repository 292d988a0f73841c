"""
Homestay Booking - Security Utilities
======================================
JWT tokens shared with the identity service.

NOTE: Single token for all user types (guest/host/admin); "sub" carries the user id.
"""

import logging
from datetime import timedelta
from typing import Optional

from jose import jwt, JWTError

from config.settings import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from common.helpers import now_utc

logger = logging.getLogger("homestay.security")


# ==========================================
# JWT Tokens
# ==========================================

def create_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Create JWT token for any user type."""
    to_encode = data.copy()
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    to_encode["exp"] = now_utc() + timedelta(minutes=expires_minutes)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode a JWT token. Returns payload or None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected token: {e}")
        return None


def token_from_request(request) -> Optional[str]:
    """Bearer header first, then the auth_token cookie."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get("auth_token")
