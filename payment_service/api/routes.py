"""
API routes for payments and monitoring.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from payment_service.core.payment_processor import PaymentProcessor
from payment_service.monitoring.health import HealthCheck

from .dependencies import (
    get_auth_token,
    get_current_email,
    get_health_check,
    get_payment_processor,
)
from .schemas import (
    CreatePaymentRequest,
    HealthCheckResponse,
    PaymentResponse,
    TotalSumResponse,
)

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/api/v1/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])

StartDate = Annotated[
    Optional[datetime], Query(alias="startDate", description="Window start (inclusive)")
]
EndDate = Annotated[
    Optional[datetime], Query(alias="endDate", description="Window end (inclusive)")
]
Statuses = Annotated[
    Optional[List[str]],
    Query(description="Status filter; repeat the parameter or separate values with commas"),
]


@payment_router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment",
    description="Create a payment, resolve its outcome and notify the order service",
)
async def create_payment(
    request: CreatePaymentRequest,
    auth_token: Optional[str] = Depends(get_auth_token),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> Dict[str, Any]:
    logger.info(
        "api_create_payment_request",
        order_id=request.order_id,
        user_id=request.user_id,
        payment_amount=str(request.payment_amount),
    )
    return await processor.create_payment(request, auth_token)


@payment_router.get("", response_model=List[PaymentResponse], summary="List all payments")
@payment_router.get("/all", response_model=List[PaymentResponse], include_in_schema=False)
async def get_all_payments(
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> List[Dict[str, Any]]:
    return await processor.get_all_payments()


@payment_router.get(
    "/order/{order_id}",
    response_model=List[PaymentResponse],
    summary="Payments of an order",
)
async def get_payments_by_order_id(
    order_id: str,
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> List[Dict[str, Any]]:
    return await processor.get_payments_by_order_id(order_id)


@payment_router.get(
    "/user/{user_id}",
    response_model=List[PaymentResponse],
    summary="Payments of a user",
)
async def get_payments_by_user_id(
    user_id: str,
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> List[Dict[str, Any]]:
    return await processor.get_payments_by_user_id(user_id)


@payment_router.get(
    "/statuses",
    response_model=List[PaymentResponse],
    summary="Payments in the given statuses",
)
async def get_payments_by_statuses(
    statuses: Statuses = None,
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> List[Dict[str, Any]]:
    return await processor.get_payments_by_statuses(statuses)


@payment_router.get(
    "/total",
    response_model=TotalSumResponse,
    summary="Total of all payments",
    description="Sum of payment amounts, optionally within a time window and status set",
)
async def get_total_sum(
    start_date: StartDate = None,
    end_date: EndDate = None,
    statuses: Statuses = None,
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> Dict[str, Any]:
    return await processor.get_total_sum(start_date, end_date, statuses)


@payment_router.get(
    "/my-payments",
    response_model=TotalSumResponse,
    summary="Total of the caller's payments",
)
async def get_my_total_sum(
    start_date: StartDate = None,
    end_date: EndDate = None,
    statuses: Statuses = None,
    email: str = Depends(get_current_email),
    auth_token: Optional[str] = Depends(get_auth_token),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> Dict[str, Any]:
    return await processor.get_my_total_sum(email, auth_token, start_date, end_date, statuses)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe; 503 when a dependency is down."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get("/metrics", summary="Prometheus metrics")
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
