"""FastAPI dependencies: service wiring and caller credentials."""
import base64
import binascii
import json
from functools import lru_cache
from typing import Optional

import structlog
from fastapi import Header, HTTPException, status

from payment_service.core.payment_processor import PaymentProcessor
from payment_service.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@lru_cache()
def get_payment_processor() -> PaymentProcessor:
    return PaymentProcessor()


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck()


def get_auth_token(
    authorization: Optional[str] = Header(default=None),
) -> Optional[str]:
    """Caller's Authorization header, passed on to upstream services."""
    return authorization


def decode_token_subject(token: str) -> Optional[str]:
    """
    Read the `sub` claim of a JWT without verifying its signature.

    Signature checks happen at the gateway in front of this service.

    Args:
        token: Raw token, with or without the "Bearer " prefix

    Returns:
        Optional[str]: The subject, or None if the token is unreadable
    """
    token = token.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()

    parts = token.split(".")
    if len(parts) != 3:
        return None

    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None

    if not isinstance(claims, dict):
        return None
    subject = claims.get("sub")
    return subject if isinstance(subject, str) and subject else None


def get_current_email(
    authorization: Optional[str] = Header(default=None),
) -> str:
    """
    Email of the authenticated caller.

    Raises:
        HTTPException: 401 if the token is missing or unreadable
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )

    email = decode_token_subject(authorization)
    if email is None:
        logger.warning("unreadable_auth_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )
    return email
