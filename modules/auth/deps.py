"""
Auth Module - Dependencies
===========================
FastAPI dependencies for user authentication and authorization.
These are injected into route handlers via Depends().
"""

from fastapi import Request, Depends, HTTPException, status
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import safe_int
from common.security import decode_token, token_from_request
from modules.user.models import User


def get_current_active_user(request: Request, db: Session = Depends(get_db)):
    """
    Identify the current user from the bearer token or auth_token cookie.
    Returns User object or None.
    """
    token = token_from_request(request)
    if not token:
        return None

    payload = decode_token(token)
    if not payload:
        return None

    user_id = safe_int(payload.get("sub"))
    if user_id is None:
        return None

    return db.query(User).filter(User.id == user_id, User.is_active == True).first()


def require_login(user=Depends(get_current_active_user)):
    """Require any authenticated active user. Raises 401 if not logged in."""
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login_required")
    return user


def require_host_or_admin(user=Depends(require_login)):
    """Allow hosts and admins. Raises 403 otherwise."""
    if not (user.is_host or user.is_admin):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Host or Admin role required")
    return user


def require_admin(user=Depends(require_login)):
    """Allow admins only. Raises 403 otherwise."""
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
