"""Exceptions raised by the payment core and its upstream clients."""
from typing import Optional


class PaymentError(Exception):
    """Base exception for payment processing errors."""

    pass


class StorageError(PaymentError):
    """Raised when the payment store fails to read or write."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class PaymentNotFoundError(PaymentError):
    """Raised when a payment saved moments ago can no longer be loaded."""

    def __init__(self, payment_id: str):
        super().__init__(f"Payment not found after update: {payment_id}")
        self.payment_id = payment_id


class InvalidArgumentError(PaymentError, ValueError):
    """Raised when a caller supplies inconsistent query parameters."""

    pass


class UpstreamUnavailableError(PaymentError):
    """Base exception for failures of the services this one depends on."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class OrderServiceError(UpstreamUnavailableError):
    """Raised when the order service rejects or fails a status update."""

    pass


class OrderNotFoundError(OrderServiceError):
    """Raised when the order service does not know the order."""

    pass


class UserServiceError(UpstreamUnavailableError):
    """Raised when the user service cannot be queried."""

    pass


class IdentityNotFoundError(PaymentError):
    """Raised when a credential does not map to a known user."""

    def __init__(self, email: str):
        super().__init__(f"User not found for email: {email}")
        self.email = email
