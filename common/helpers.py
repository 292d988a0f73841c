"""
Homestay Booking - Shared Helpers
==================================
Pure utility functions with NO database or module dependencies.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

# Indochina Time, no DST
VIETNAM_TZ = timezone(timedelta(hours=7), name="ICT")

GATEWAY_DATE_FORMAT = "%Y%m%d%H%M%S"

_TICKS_EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def now_vietnam() -> datetime:
    """Returns current Vietnam local datetime (timezone-aware)."""
    return datetime.now(VIETNAM_TZ)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ticks(value: datetime) -> int:
    """100-nanosecond intervals since 0001-01-01, the form gateways expect in references."""
    local_wall = value.replace(tzinfo=timezone.utc)
    delta = local_wall - _TICKS_EPOCH
    return (delta.days * 86_400 + delta.seconds) * 10_000_000 + delta.microseconds * 10


def format_gateway_date(value: datetime) -> str:
    """Format as yyyyMMddHHmmss."""
    return value.strftime(GATEWAY_DATE_FORMAT)


def parse_gateway_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a yyyyMMddHHmmss Vietnam-local string to UTC. Returns None on failure."""
    if not value:
        return None
    try:
        local = datetime.strptime(value, GATEWAY_DATE_FORMAT).replace(tzinfo=VIETNAM_TZ)
    except ValueError:
        return None
    return local.astimezone(timezone.utc)


def from_unix_ms(value: Optional[str]) -> Optional[datetime]:
    """Convert a millisecond Unix timestamp string to UTC datetime. Returns None on failure."""
    ms = safe_int(value)
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def safe_int(value: Optional[str]) -> Optional[int]:
    """Safely convert a string to int. Returns None on failure."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None


def format_vnd(value) -> str:
    """Format an amount as VND with comma separators."""
    if value is None:
        return "0 ₫"
    try:
        return "{:,} ₫".format(int(value))
    except (ValueError, TypeError):
        return str(value)


def get_real_ip(request) -> str:
    """Extract real client IP from request (handles X-Forwarded-For proxy header)."""
    x_forwarded = request.headers.get("X-Forwarded-For")
    if x_forwarded:
        return x_forwarded.split(",")[0].strip()
    host = request.client.host if request.client else None
    if not host or host == "::1":
        return "127.0.0.1"
    return host
