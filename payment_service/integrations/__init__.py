"""Clients for the services and brokers the payment service talks to."""
from .event_producer import PaymentEventProducer
from .order_client import OrderClient
from .outcome_client import OutcomeClient
from .user_client import UserClient, UserRecord

__all__ = [
    "OrderClient",
    "OutcomeClient",
    "PaymentEventProducer",
    "UserClient",
    "UserRecord",
]
