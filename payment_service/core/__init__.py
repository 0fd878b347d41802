"""Core payment logic."""
from .exceptions import (
    IdentityNotFoundError,
    InvalidArgumentError,
    OrderNotFoundError,
    OrderServiceError,
    PaymentError,
    PaymentNotFoundError,
    StorageError,
    UpstreamUnavailableError,
    UserServiceError,
)

__all__ = [
    "IdentityNotFoundError",
    "InvalidArgumentError",
    "OrderNotFoundError",
    "OrderServiceError",
    "PaymentError",
    "PaymentNotFoundError",
    "StorageError",
    "UpstreamUnavailableError",
    "UserServiceError",
]
