"""
Client for the order service.

The order service is the system of record for order status; the payment
workflow tells it when a payment is being processed and when it is done.
"""
from typing import Dict, Optional

import httpx
import structlog

from payment_service.config import get_settings
from payment_service.core.exceptions import OrderNotFoundError, OrderServiceError

logger = structlog.get_logger(__name__)


def bearer_header(auth_token: Optional[str]) -> Dict[str, str]:
    """
    Build an Authorization header from a raw or prefixed token.

    Args:
        auth_token: Token with or without the "Bearer " prefix

    Returns:
        Dict[str, str]: Header dict, empty when there is no token
    """
    if not auth_token:
        return {}
    token = auth_token.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return {"Authorization": f"Bearer {token}"}


class OrderClient:
    """Updates order status in the order service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.order_service_url).rstrip("/")
        self.timeout = timeout or settings.upstream_timeout_seconds
        self._client = http_client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def update_order_status(
        self, order_id: str, status: str, auth_token: Optional[str] = None
    ) -> None:
        """
        Set the status of an order.

        Args:
            order_id: Order to update
            status: New order status, e.g. "PROCESSING"
            auth_token: Caller's credential, forwarded as a Bearer token

        Raises:
            OrderNotFoundError: If the order service answers 404
            OrderServiceError: On any other failure
        """
        url = f"{self.base_url}/api/v1/orders/{order_id}"

        try:
            response = await self.client.put(
                url,
                json={"status": status},
                headers=bearer_header(auth_token),
                timeout=self.timeout,
            )
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise OrderNotFoundError(f"Order not found: {order_id}", original_error=e) from e
            raise OrderServiceError(
                f"Order service returned {e.response.status_code} for order {order_id}",
                original_error=e,
            ) from e

        except httpx.HTTPError as e:
            raise OrderServiceError(
                f"Order service unreachable for order {order_id}: {e}",
                original_error=e,
            ) from e

        logger.info("order_status_updated", order_id=order_id, status=status)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
