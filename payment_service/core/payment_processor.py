"""
Payment processor.

Orchestrates the create workflow:
1. Build the payment record
2. Persist it
3. Tell the order service the order is PROCESSING (best-effort)
4. Ask the outcome API for a number; even means SUCCESS, anything else FAILED
5. Persist the resolved status
6. Reload the payment
7. Tell the order service the order is CANCELED (best-effort)
8. Publish a payment-created event (best-effort)
9. Return the reloaded payment

and answers the read and aggregation queries over stored payments.
"""
import inspect
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from payment_service.core.exceptions import InvalidArgumentError, PaymentNotFoundError
from payment_service.database.models import Payment, PaymentStatus
from payment_service.database.repository import PaymentRepository
from payment_service.integrations.event_producer import PaymentEventProducer
from payment_service.integrations.order_client import OrderClient
from payment_service.integrations.outcome_client import OutcomeClient
from payment_service.integrations.user_client import UserClient
from payment_service.monitoring.metrics import metrics

if TYPE_CHECKING:
    from payment_service.api.schemas import CreatePaymentRequest

logger = structlog.get_logger(__name__)

ORDER_STATUS_PROCESSING = "PROCESSING"
ORDER_STATUS_CANCELED = "CANCELED"

MAX_ID_LENGTH = 50
MIN_PAYMENT_AMOUNT = Decimal("0.01")


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    """
    Convert a Payment row into a plain dict.

    Args:
        payment: Payment to convert

    Returns:
        Dict[str, Any]: Payment fields keyed by their snake_case names
    """
    return {
        "id": payment.id,
        "order_id": payment.order_id,
        "user_id": payment.user_id,
        "status": PaymentStatus(payment.status).value,
        "timestamp": to_utc(payment.timestamp) if payment.timestamp else None,
        "payment_amount": payment.payment_amount,
    }


class PaymentProcessor:
    """
    Payment lifecycle orchestrator.

    Fatal steps (storage, reload) raise; notifications and event
    publication are best-effort and never change the returned result.
    """

    def __init__(
        self,
        repository: Optional[PaymentRepository] = None,
        outcome_client: Optional[OutcomeClient] = None,
        order_client: Optional[OrderClient] = None,
        user_client: Optional[UserClient] = None,
        event_producer: Optional[PaymentEventProducer] = None,
    ):
        """
        Initialize payment processor.

        Args:
            repository: Payment store
            outcome_client: Outcome API client
            order_client: Order service client
            user_client: User service client
            event_producer: Kafka producer for payment events
        """
        self.repository = repository or PaymentRepository()
        self.outcome_client = outcome_client or OutcomeClient()
        self.order_client = order_client or OrderClient()
        self.user_client = user_client or UserClient()
        self.event_producer = event_producer or PaymentEventProducer()

        logger.info("payment_processor_initialized")

    @staticmethod
    def _validate_payment_request(
        order_id: str,
        user_id: str,
        payment_amount: Optional[Decimal],
    ) -> None:
        """
        Validate payment request parameters.

        Raises:
            InvalidArgumentError: If validation fails
        """
        for name, value in (("order_id", order_id), ("user_id", user_id)):
            if not value or not str(value).strip():
                raise InvalidArgumentError(f"{name} is required")
            if len(str(value)) > MAX_ID_LENGTH:
                raise InvalidArgumentError(f"{name} must be at most {MAX_ID_LENGTH} characters")

        if payment_amount is not None and Decimal(payment_amount) < MIN_PAYMENT_AMOUNT:
            raise InvalidArgumentError(f"payment_amount must be at least {MIN_PAYMENT_AMOUNT}")

    async def _best_effort(
        self, step: str, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> None:
        """Run a side effect; log and count a failure, never raise it."""
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            metrics.record_best_effort_failure(step)
            logger.warning(
                "best_effort_step_failed",
                step=step,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _resolve_outcome(self) -> Optional[int]:
        """Ask the outcome API for a number; any failure counts as no number."""
        try:
            return await self.outcome_client.fetch_number()
        except Exception as e:
            logger.error(
                "outcome_lookup_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def create_payment(
        self,
        request: "CreatePaymentRequest",
        auth_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a payment and resolve its outcome.

        Args:
            request: Order id, user id, amount and optional initial status
            auth_token: Caller's credential, forwarded to the order service

        Returns:
            Dict[str, Any]: The stored payment after resolution

        Raises:
            InvalidArgumentError: If the request is invalid
            StorageError: If either save fails
            PaymentNotFoundError: If the payment cannot be reloaded
        """
        started = time.perf_counter()

        self._validate_payment_request(request.order_id, request.user_id, request.payment_amount)

        payment = Payment(
            order_id=request.order_id,
            user_id=request.user_id,
            payment_amount=request.payment_amount,
            status=request.status or PaymentStatus.CREATED,
            timestamp=datetime.now(timezone.utc),
        )

        payment = await self.repository.save(payment)
        log = logger.bind(payment_id=payment.id, order_id=payment.order_id)
        log.info("payment_created", user_id=payment.user_id, status=payment.status)

        await self._best_effort(
            "notify_processing",
            self.order_client.update_order_status,
            payment.order_id,
            ORDER_STATUS_PROCESSING,
            auth_token,
        )

        number = await self._resolve_outcome()
        metrics.record_outcome(number)
        # No number means no definitive success signal
        payment.status = (
            PaymentStatus.SUCCESS if number is not None and number % 2 == 0 else PaymentStatus.FAILED
        )
        log.info("payment_outcome_resolved", number=number, status=payment.status)

        await self.repository.save(payment)

        reloaded = await self.repository.find_by_id(payment.id)
        if reloaded is None:
            log.error("payment_missing_after_update")
            raise PaymentNotFoundError(payment.id)

        await self._best_effort(
            "notify_canceled",
            self.order_client.update_order_status,
            reloaded.order_id,
            ORDER_STATUS_CANCELED,
            auth_token,
        )
        await self._best_effort(
            "publish_event",
            self.event_producer.publish_payment_created,
            reloaded.id,
            reloaded.order_id,
        )

        result = serialize_payment(reloaded)
        metrics.record_payment_created(result["status"], time.perf_counter() - started)
        log.info("payment_workflow_completed", status=result["status"])
        return result

    async def get_all_payments(self) -> List[Dict[str, Any]]:
        payments = await self.repository.find_all()
        return [serialize_payment(p) for p in payments]

    async def get_payments_by_order_id(self, order_id: str) -> List[Dict[str, Any]]:
        payments = await self.repository.find_by_order_id(order_id)
        return [serialize_payment(p) for p in payments]

    async def get_payments_by_user_id(self, user_id: str) -> List[Dict[str, Any]]:
        payments = await self.repository.find_by_user_id(user_id)
        return [serialize_payment(p) for p in payments]

    async def get_payments_by_statuses(
        self, statuses: Optional[Iterable[Any]]
    ) -> List[Dict[str, Any]]:
        """
        List payments whose status is in the given set.

        Raises:
            InvalidArgumentError: If no statuses are given
        """
        parsed = self._parse_statuses(statuses)
        if not parsed:
            raise InvalidArgumentError("At least one status is required")
        payments = await self.repository.find_by_statuses(parsed)
        return [serialize_payment(p) for p in payments]

    async def get_total_sum(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        statuses: Optional[Iterable[Any]] = None,
    ) -> Dict[str, Any]:
        """
        Sum payment amounts across all users.

        Dates must be given together; the window includes both ends.

        Args:
            start_date: Window start
            end_date: Window end
            statuses: Optional status filter

        Returns:
            Dict[str, Any]: total_sum, payment_count, start_date, end_date

        Raises:
            InvalidArgumentError: If only one date is given or start > end
        """
        window = self._parse_window(start_date, end_date)
        parsed = self._parse_statuses(statuses)

        if window and parsed:
            payments = await self.repository.find_by_statuses_and_timestamp_between(
                parsed, *window
            )
        elif window:
            payments = await self.repository.find_by_timestamp_between(*window)
        elif parsed:
            payments = await self.repository.find_by_statuses(parsed)
        else:
            payments = await self.repository.find_all()

        return self._summarize(payments, window)

    async def get_total_sum_by_user_id(
        self,
        user_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        statuses: Optional[Iterable[Any]] = None,
    ) -> Dict[str, Any]:
        """Same as get_total_sum, restricted to one user."""
        window = self._parse_window(start_date, end_date)
        parsed = self._parse_statuses(statuses)

        if window and parsed:
            payments = await self.repository.find_by_user_id_and_statuses_and_timestamp_between(
                user_id, parsed, *window
            )
        elif window:
            payments = await self.repository.find_by_user_id_and_timestamp_between(
                user_id, *window
            )
        elif parsed:
            payments = await self.repository.find_by_user_id_and_statuses(user_id, parsed)
        else:
            payments = await self.repository.find_by_user_id(user_id)

        return self._summarize(payments, window)

    async def get_my_total_sum(
        self,
        email: str,
        auth_token: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        statuses: Optional[Iterable[Any]] = None,
    ) -> Dict[str, Any]:
        """
        Sum the payments of the user behind a credential.

        Raises:
            IdentityNotFoundError: If the email matches no user
            UserServiceError: If the user service fails
        """
        # Validate before the remote lookup
        self._parse_window(start_date, end_date)
        self._parse_statuses(statuses)

        user = await self.user_client.get_user_by_email(email, auth_token)
        logger.debug("identity_resolved", email=email, user_id=user.id)
        return await self.get_total_sum_by_user_id(str(user.id), start_date, end_date, statuses)

    @staticmethod
    def _parse_window(
        start_date: Optional[datetime], end_date: Optional[datetime]
    ) -> Optional[Tuple[datetime, datetime]]:
        if start_date is None and end_date is None:
            return None
        if start_date is None or end_date is None:
            raise InvalidArgumentError("start_date and end_date must be provided together")

        start, end = to_utc(start_date), to_utc(end_date)
        if start > end:
            raise InvalidArgumentError("start_date must not be after end_date")
        return start, end

    @staticmethod
    def _parse_statuses(statuses: Optional[Iterable[Any]]) -> List[PaymentStatus]:
        """Accept repeated values and comma-separated lists, e.g. "SUCCESS,FAILED"."""
        if not statuses:
            return []
        parsed = []
        for item in statuses:
            if isinstance(item, PaymentStatus):
                parsed.append(item)
                continue
            for status in str(item).split(","):
                status = status.strip()
                if not status:
                    continue
                try:
                    parsed.append(PaymentStatus(status))
                except ValueError as e:
                    raise InvalidArgumentError(f"Unknown payment status: {status}") from e
        return parsed

    @staticmethod
    def _summarize(
        payments: List[Payment], window: Optional[Tuple[datetime, datetime]]
    ) -> Dict[str, Any]:
        total = sum(
            (Decimal(p.payment_amount) for p in payments if p.payment_amount is not None),
            Decimal("0"),
        )
        return {
            "total_sum": total,
            "payment_count": len(payments),
            "start_date": window[0] if window else None,
            "end_date": window[1] if window else None,
        }
