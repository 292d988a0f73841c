"""
Homestay Booking - Custom Exceptions
=====================================
Business-level exceptions that can be caught and converted to HTTP responses.
"""

from fastapi import HTTPException, status


class BookingSystemError(Exception):
    """Base exception for all business logic errors."""
    def __init__(self, message: str = "Đã xảy ra lỗi hệ thống."):
        self.message = message
        super().__init__(self.message)


class AuthorizationError(BookingSystemError):
    """Raised when user lacks permission."""
    pass


class BadRequestError(BookingSystemError):
    """Raised when a request breaks a business rule."""
    pass


class NotFoundError(BookingSystemError):
    """Raised when a requested resource doesn't exist."""
    pass


class PaymentError(BookingSystemError):
    """Raised for payment gateway errors."""
    pass


class UnsupportedPaymentMethodError(PaymentError):
    """Raised when no gateway handles the requested payment method."""
    def __init__(self, method):
        self.method = method
        name = getattr(method, "name", method)
        super().__init__(f"Payment method {name} is not supported")


class MalformedParameterError(PaymentError):
    """Raised when gateway parameters cannot be serialized for signing."""
    pass


def http_status_for(error: BookingSystemError) -> int:
    """Map a business exception to its HTTP status code."""
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, AuthorizationError):
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_400_BAD_REQUEST


def raise_http(error: BookingSystemError, status_code: int = None):
    """Convert a business exception to an HTTP exception."""
    raise HTTPException(status_code=status_code or http_status_for(error), detail=error.message)
