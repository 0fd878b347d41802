"""Client for the user service, used to resolve a caller's identity."""
from datetime import date
from typing import Optional, Union

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from payment_service.config import get_settings
from payment_service.core.exceptions import IdentityNotFoundError, UserServiceError
from payment_service.integrations.order_client import bearer_header

logger = structlog.get_logger(__name__)


class UserRecord(BaseModel):
    """User as returned by the user service."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: Union[int, str] = Field(..., description="User identifier")
    email: str = Field(..., description="User email")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[date] = None


class UserClient:
    """Looks up users by email."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.user_service_url).rstrip("/")
        self.timeout = timeout or settings.upstream_timeout_seconds
        self._client = http_client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def get_user_by_email(
        self, email: str, auth_token: Optional[str] = None
    ) -> UserRecord:
        """
        Fetch the user registered under an email.

        Args:
            email: Email to look up
            auth_token: Caller's credential, forwarded as a Bearer token

        Returns:
            UserRecord: The matching user

        Raises:
            IdentityNotFoundError: If no user has that email
            UserServiceError: If the user service fails or answers garbage
        """
        url = f"{self.base_url}/api/v1/users/email"

        try:
            response = await self.client.get(
                url,
                params={"email": email},
                headers=bearer_header(auth_token),
                timeout=self.timeout,
            )
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise IdentityNotFoundError(email) from e
            logger.error(
                "user_service_error_status",
                email=email,
                status_code=e.response.status_code,
            )
            raise UserServiceError(
                f"User service returned {e.response.status_code}", original_error=e
            ) from e

        except httpx.HTTPError as e:
            logger.error("user_service_unreachable", email=email, error=str(e))
            raise UserServiceError(f"User service unreachable: {e}", original_error=e) from e

        if not response.content or not response.content.strip():
            raise IdentityNotFoundError(email)

        try:
            body = response.json()
            if not body:
                raise IdentityNotFoundError(email)
            return UserRecord.model_validate(body)
        except (ValueError, ValidationError) as e:
            logger.error("user_service_malformed_body", email=email, error=str(e))
            raise UserServiceError("User service returned a malformed user", original_error=e) from e

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
