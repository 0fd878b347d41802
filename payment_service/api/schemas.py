"""
Pydantic schemas for API request/response models.

The wire format is camelCase; Python code uses the snake_case field names.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from payment_service.database.models import PaymentStatus


def format_amount(value: Decimal) -> str:
    """Render an amount exactly, in plain notation."""
    return format(value, "f")


# Amounts go out as exact decimal strings
Amount = Annotated[Decimal, PlainSerializer(format_amount, return_type=str, when_used="json")]


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreatePaymentRequest(CamelModel):
    """Request schema for creating a payment."""

    order_id: str = Field(..., min_length=1, max_length=50, description="Order identifier")
    user_id: str = Field(..., min_length=1, max_length=50, description="User identifier")
    payment_amount: Decimal = Field(
        ..., gt=0, max_digits=19, decimal_places=2, description="Payment amount (minimum 0.01)"
    )
    status: Optional[PaymentStatus] = Field(
        default=None, description="Initial status (defaults to CREATED)"
    )

    @field_validator("order_id", "user_id")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("payment_amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Validate minimum amount."""
        if v < Decimal("0.01"):
            raise ValueError("Amount must be at least 0.01")
        return v

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "orderId": "1",
                    "userId": "2",
                    "paymentAmount": 100.50,
                }
            ]
        },
    )


class PaymentResponse(CamelModel):
    """A stored payment."""

    id: str = Field(..., description="Payment ID")
    order_id: str = Field(..., description="Order identifier")
    user_id: str = Field(..., description="User identifier")
    status: PaymentStatus = Field(..., description="Payment status")
    timestamp: datetime = Field(..., description="Creation timestamp (UTC)")
    payment_amount: Optional[Amount] = Field(default=None, description="Payment amount")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "id": "123e4567-e89b-12d3-a456-426614174000",
                    "orderId": "1",
                    "userId": "2",
                    "status": "SUCCESS",
                    "timestamp": "2025-01-06T10:00:00Z",
                    "paymentAmount": "100.50",
                }
            ]
        },
    )


class TotalSumResponse(CamelModel):
    """Sum of matching payment amounts."""

    total_sum: Amount = Field(..., description="Sum of non-null amounts (0 when nothing matches)")
    payment_count: int = Field(..., description="Number of matching payments")
    start_date: Optional[datetime] = Field(default=None, description="Window start, if any")
    end_date: Optional[datetime] = Field(default=None, description="Window end, if any")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
