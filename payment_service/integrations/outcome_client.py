"""
Client for the external outcome API.

The API answers with a random number; the payment workflow uses its parity
to decide between success and failure. Any failure to get a usable number is
reported as None so the caller can fail closed.
"""
from typing import Any, Optional

import httpx
import structlog

from payment_service.config import get_settings

logger = structlog.get_logger(__name__)


class OutcomeClient:
    """Fetches a single integer from the outcome API."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize outcome client.

        Args:
            url: Outcome API URL (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            http_client: Optional preconfigured httpx client
        """
        settings = get_settings()
        self.url = url or settings.outcome_api_url
        self.timeout = timeout or settings.outcome_api_timeout_seconds
        self._client = http_client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def fetch_number(self) -> Optional[int]:
        """
        Ask the outcome API for a number.

        Returns:
            Optional[int]: The number, or None on timeout, transport error,
            HTTP error status, a body without a number
            or any other failure of the call
        """
        try:
            response = await self.client.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()

        except httpx.TimeoutException as e:
            logger.warning("outcome_api_timeout", url=self.url, timeout=self.timeout, error=str(e))
            return None

        except httpx.HTTPStatusError as e:
            logger.warning(
                "outcome_api_error_status",
                url=self.url,
                status_code=e.response.status_code,
            )
            return None

        except httpx.HTTPError as e:
            logger.warning("outcome_api_unreachable", url=self.url, error=str(e))
            return None

        except ValueError as e:
            logger.warning("outcome_api_malformed_body", url=self.url, error=str(e))
            return None

        except Exception as e:
            logger.error(
                "outcome_api_failed",
                url=self.url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        number = self._extract_number(body)
        if number is None:
            logger.warning("outcome_api_malformed_body", url=self.url, body=body)
        return number

    @staticmethod
    def _extract_number(body: Any) -> Optional[int]:
        """Accept `[n]` or `[{"random": n}]`."""
        if not isinstance(body, list) or not body:
            return None

        first = body[0]
        if isinstance(first, dict):
            first = first.get("random")

        # bool is an int subclass
        if isinstance(first, bool) or not isinstance(first, int):
            return None
        return first

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
