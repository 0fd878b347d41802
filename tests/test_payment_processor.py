"""
Unit tests for payment processor.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, List
from unittest.mock import AsyncMock, MagicMock, call

import pytest

from payment_service.api.schemas import CreatePaymentRequest
from payment_service.core.exceptions import (
    IdentityNotFoundError,
    InvalidArgumentError,
    OrderNotFoundError,
    OrderServiceError,
    PaymentNotFoundError,
    StorageError,
    UserServiceError,
)
from payment_service.core.payment_processor import PaymentProcessor, serialize_payment, to_utc
from payment_service.database.models import Payment, PaymentStatus
from payment_service.database.repository import PaymentRepository

WINDOW_START = datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)
WINDOW_END = datetime(2024, 3, 31, 23, 59, 59, tzinfo=timezone.utc)


def recording_repository(reload_missing: bool = False) -> AsyncMock:
    """Mock store that records the status seen by every save."""
    repo = AsyncMock(spec=PaymentRepository)
    repo.saved_statuses = []
    stored: dict[str, Payment] = {}

    async def save(payment: Payment) -> Payment:
        repo.saved_statuses.append(payment.status)
        payment.id = payment.id or "pay-1"
        stored[payment.id] = payment
        return payment

    async def find_by_id(payment_id: str) -> Payment | None:
        return None if reload_missing else stored.get(payment_id)

    repo.save.side_effect = save
    repo.find_by_id.side_effect = find_by_id
    return repo


async def seed(repository: PaymentRepository, *payments: Payment) -> List[Payment]:
    return [await repository.save(p) for p in payments]


class TestCreatePayment:
    """Create workflow."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_even_number_succeeds(
        self,
        processor: PaymentProcessor,
        sample_payment_request: CreatePaymentRequest,
        order_client: AsyncMock,
        event_producer: MagicMock,
    ) -> None:
        """Oracle 48 resolves to SUCCESS and both notifications go out in order."""
        result = await processor.create_payment(sample_payment_request)

        assert result["status"] == "SUCCESS"
        assert result["order_id"] == "1"
        assert result["user_id"] == "2"
        assert result["payment_amount"] == Decimal("100.50")
        assert result["id"]

        assert order_client.update_order_status.await_args_list == [
            call("1", "PROCESSING", None),
            call("1", "CANCELED", None),
        ]
        event_producer.publish_payment_created.assert_called_once_with(result["id"], "1")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_odd_number_fails(
        self,
        processor: PaymentProcessor,
        sample_payment_request: CreatePaymentRequest,
        outcome_client: AsyncMock,
    ) -> None:
        outcome_client.fetch_number.return_value = 7

        result = await processor.create_payment(sample_payment_request)

        assert result["status"] == "FAILED"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_number_fails_closed(
        self, sample_payment_request: CreatePaymentRequest, outcome_client: AsyncMock,
        order_client: AsyncMock, user_client: AsyncMock, event_producer: MagicMock,
    ) -> None:
        """No number from the oracle means FAILED, still saved twice."""
        outcome_client.fetch_number.return_value = None
        repo = recording_repository()
        processor = PaymentProcessor(repo, outcome_client, order_client, user_client, event_producer)

        result = await processor.create_payment(sample_payment_request)

        assert result["status"] == "FAILED"
        assert repo.save.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_oracle_exception_fails_closed(
        self, sample_payment_request: CreatePaymentRequest, outcome_client: AsyncMock,
        order_client: AsyncMock, user_client: AsyncMock, event_producer: MagicMock,
    ) -> None:
        """An unexpected oracle error still resolves and stores FAILED."""
        outcome_client.fetch_number.side_effect = RuntimeError("invalid outcome url")
        repo = recording_repository()
        processor = PaymentProcessor(repo, outcome_client, order_client, user_client, event_producer)

        result = await processor.create_payment(sample_payment_request)

        assert result["status"] == "FAILED"
        assert repo.saved_statuses == [PaymentStatus.CREATED, PaymentStatus.FAILED]
        stored = await repo.find_by_id(result["id"])
        assert stored.status == PaymentStatus.FAILED
        event_producer.publish_payment_created.assert_called_once_with("pay-1", "1")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_save_carries_resolved_status(
        self, sample_payment_request: CreatePaymentRequest, outcome_client: AsyncMock,
        order_client: AsyncMock, user_client: AsyncMock, event_producer: MagicMock,
    ) -> None:
        repo = recording_repository()
        processor = PaymentProcessor(repo, outcome_client, order_client, user_client, event_producer)

        result = await processor.create_payment(sample_payment_request)

        assert repo.saved_statuses == [PaymentStatus.CREATED, PaymentStatus.SUCCESS]
        assert result["status"] == "SUCCESS"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initial_status_from_request(
        self, outcome_client: AsyncMock, order_client: AsyncMock,
        user_client: AsyncMock, event_producer: MagicMock,
    ) -> None:
        repo = recording_repository()
        processor = PaymentProcessor(repo, outcome_client, order_client, user_client, event_producer)
        request = CreatePaymentRequest(
            order_id="1", user_id="2", payment_amount=Decimal("5"), status=PaymentStatus.PENDING
        )

        await processor.create_payment(request)

        assert repo.saved_statuses[0] == PaymentStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stored_status_matches_returned(
        self,
        processor: PaymentProcessor,
        repository: PaymentRepository,
        sample_payment_request: CreatePaymentRequest,
    ) -> None:
        result = await processor.create_payment(sample_payment_request)

        stored = await repository.find_by_id(result["id"])
        assert stored is not None
        assert stored.status == PaymentStatus.SUCCESS
        assert stored.payment_amount == Decimal("100.50")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timestamp_is_utc_creation_time(
        self, processor: PaymentProcessor, sample_payment_request: CreatePaymentRequest
    ) -> None:
        before = datetime.now(timezone.utc)
        result = await processor.create_payment(sample_payment_request)
        after = datetime.now(timezone.utc)

        assert result["timestamp"].tzinfo is not None
        assert before - timedelta(seconds=1) <= result["timestamp"] <= after + timedelta(seconds=1)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auth_token_forwarded_to_order_service(
        self,
        processor: PaymentProcessor,
        sample_payment_request: CreatePaymentRequest,
        order_client: AsyncMock,
    ) -> None:
        await processor.create_payment(sample_payment_request, auth_token="Bearer abc")

        for args in order_client.update_order_status.await_args_list:
            assert args.args[2] == "Bearer abc"

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [OrderNotFoundError("gone"), OrderServiceError("down")])
    async def test_notifier_failure_does_not_abort(
        self,
        processor: PaymentProcessor,
        sample_payment_request: CreatePaymentRequest,
        order_client: AsyncMock,
        event_producer: MagicMock,
        error: Exception,
    ) -> None:
        """Order service failures are logged and the resolved record is still returned."""
        order_client.update_order_status.side_effect = error

        result = await processor.create_payment(sample_payment_request)

        assert result["status"] == "SUCCESS"
        assert order_client.update_order_status.await_count == 2
        event_producer.publish_payment_created.assert_called_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_publisher_failure_does_not_abort(
        self,
        processor: PaymentProcessor,
        sample_payment_request: CreatePaymentRequest,
        event_producer: MagicMock,
    ) -> None:
        event_producer.publish_payment_created.side_effect = BufferError("queue full")

        result = await processor.create_payment(sample_payment_request)

        assert result["status"] == "SUCCESS"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_first_save_failure_stops_workflow(
        self,
        sample_payment_request: CreatePaymentRequest,
        outcome_client: AsyncMock,
        order_client: AsyncMock,
        user_client: AsyncMock,
        event_producer: MagicMock,
    ) -> None:
        repo = AsyncMock(spec=PaymentRepository)
        repo.save.side_effect = StorageError("disk full")
        processor = PaymentProcessor(repo, outcome_client, order_client, user_client, event_producer)

        with pytest.raises(StorageError):
            await processor.create_payment(sample_payment_request)

        order_client.update_order_status.assert_not_awaited()
        outcome_client.fetch_number.assert_not_awaited()
        event_producer.publish_payment_created.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_save_failure_is_fatal(
        self,
        sample_payment_request: CreatePaymentRequest,
        outcome_client: AsyncMock,
        order_client: AsyncMock,
        user_client: AsyncMock,
        event_producer: MagicMock,
    ) -> None:
        """A failed status update propagates; no cancel notice and no event."""
        repo = AsyncMock(spec=PaymentRepository)

        async def save(payment: Payment) -> Payment:
            if repo.save.await_count > 1:
                raise StorageError(f"Failed to save payment {payment.id}")
            payment.id = "pay-1"
            return payment

        repo.save.side_effect = save
        processor = PaymentProcessor(repo, outcome_client, order_client, user_client, event_producer)

        with pytest.raises(StorageError, match="pay-1"):
            await processor.create_payment(sample_payment_request)

        assert repo.save.await_count == 2
        outcome_client.fetch_number.assert_awaited_once()
        repo.find_by_id.assert_not_awaited()
        assert order_client.update_order_status.await_args_list == [call("1", "PROCESSING", None)]
        event_producer.publish_payment_created.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_after_update_raises(
        self,
        sample_payment_request: CreatePaymentRequest,
        outcome_client: AsyncMock,
        order_client: AsyncMock,
        user_client: AsyncMock,
        event_producer: MagicMock,
    ) -> None:
        repo = recording_repository(reload_missing=True)
        processor = PaymentProcessor(repo, outcome_client, order_client, user_client, event_producer)

        with pytest.raises(PaymentNotFoundError, match="pay-1"):
            await processor.create_payment(sample_payment_request)

        assert order_client.update_order_status.await_args_list == [call("1", "PROCESSING", None)]
        event_producer.publish_payment_created.assert_not_called()

    @pytest.mark.unit
    def test_validate_payment_request_blank_order(self) -> None:
        with pytest.raises(InvalidArgumentError, match="order_id"):
            PaymentProcessor._validate_payment_request("  ", "2", Decimal("1"))

    @pytest.mark.unit
    def test_validate_payment_request_long_user(self) -> None:
        with pytest.raises(InvalidArgumentError, match="user_id"):
            PaymentProcessor._validate_payment_request("1", "u" * 51, Decimal("1"))

    @pytest.mark.unit
    def test_validate_payment_request_below_minimum(self) -> None:
        with pytest.raises(InvalidArgumentError, match="at least 0.01"):
            PaymentProcessor._validate_payment_request("1", "2", Decimal("0.001"))


class TestTotals:
    """Aggregation over stored payments."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_store_sums_to_zero(self, processor: PaymentProcessor) -> None:
        result = await processor.get_total_sum()

        assert result["total_sum"] == Decimal("0")
        assert result["payment_count"] == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sum_skips_null_amounts_but_counts_them(
        self,
        processor: PaymentProcessor,
        repository: PaymentRepository,
        make_payment: Callable[..., Payment],
    ) -> None:
        await seed(
            repository,
            make_payment(payment_amount=Decimal("10.10")),
            make_payment(payment_amount=Decimal("0.20")),
            make_payment(payment_amount=None),
        )

        result = await processor.get_total_sum()

        assert result["total_sum"] == Decimal("10.30")
        assert result["payment_count"] == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "start, end",
        [(WINDOW_START, None), (None, WINDOW_END)],
    )
    async def test_single_date_rejected(
        self, processor: PaymentProcessor, start: Any, end: Any
    ) -> None:
        with pytest.raises(InvalidArgumentError):
            await processor.get_total_sum(start_date=start, end_date=end)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reversed_window_rejected(self, processor: PaymentProcessor) -> None:
        with pytest.raises(InvalidArgumentError, match="after"):
            await processor.get_total_sum(start_date=WINDOW_END, end_date=WINDOW_START)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_window_includes_both_boundaries(
        self,
        processor: PaymentProcessor,
        repository: PaymentRepository,
        make_payment: Callable[..., Payment],
    ) -> None:
        await seed(
            repository,
            make_payment(timestamp=WINDOW_START, payment_amount=Decimal("1.00")),
            make_payment(timestamp=WINDOW_END, payment_amount=Decimal("2.00")),
            make_payment(
                timestamp=WINDOW_START - timedelta(microseconds=1), payment_amount=Decimal("4.00")
            ),
            make_payment(
                timestamp=WINDOW_END + timedelta(seconds=1), payment_amount=Decimal("8.00")
            ),
        )

        result = await processor.get_total_sum(start_date=WINDOW_START, end_date=WINDOW_END)

        assert result["total_sum"] == Decimal("3.00")
        assert result["payment_count"] == 2
        assert result["start_date"] == WINDOW_START
        assert result["end_date"] == WINDOW_END

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_naive_dates_taken_as_utc(
        self,
        processor: PaymentProcessor,
        repository: PaymentRepository,
        make_payment: Callable[..., Payment],
    ) -> None:
        await seed(repository, make_payment(timestamp=WINDOW_START))

        result = await processor.get_total_sum(
            start_date=WINDOW_START.replace(tzinfo=None),
            end_date=WINDOW_END.replace(tzinfo=None),
        )

        assert result["payment_count"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_and_window_filters_combine(
        self,
        processor: PaymentProcessor,
        repository: PaymentRepository,
        make_payment: Callable[..., Payment],
    ) -> None:
        await seed(
            repository,
            make_payment(status=PaymentStatus.SUCCESS, payment_amount=Decimal("5.00")),
            make_payment(status=PaymentStatus.FAILED, payment_amount=Decimal("7.00")),
            make_payment(
                status=PaymentStatus.SUCCESS,
                timestamp=datetime(2023, 1, 1, tzinfo=timezone.utc),
                payment_amount=Decimal("11.00"),
            ),
        )

        by_status = await processor.get_total_sum(statuses=[PaymentStatus.SUCCESS])
        both = await processor.get_total_sum(WINDOW_START, WINDOW_END, ["SUCCESS"])

        assert by_status["total_sum"] == Decimal("16.00")
        assert both["total_sum"] == Decimal("5.00")
        assert both["payment_count"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, processor: PaymentProcessor) -> None:
        with pytest.raises(InvalidArgumentError, match="PAID"):
            await processor.get_total_sum(statuses=["PAID"])

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs, lookup",
        [
            ({}, "find_all"),
            ({"statuses": ["SUCCESS"]}, "find_by_statuses"),
            ({"start_date": WINDOW_START, "end_date": WINDOW_END}, "find_by_timestamp_between"),
            (
                {"start_date": WINDOW_START, "end_date": WINDOW_END, "statuses": ["SUCCESS"]},
                "find_by_statuses_and_timestamp_between",
            ),
        ],
    )
    async def test_total_sum_picks_lookup(self, kwargs: dict, lookup: str) -> None:
        repo = AsyncMock(spec=PaymentRepository)
        for name in (
            "find_all",
            "find_by_statuses",
            "find_by_timestamp_between",
            "find_by_statuses_and_timestamp_between",
        ):
            getattr(repo, name).return_value = []
        processor = PaymentProcessor(repo, AsyncMock(), AsyncMock(), AsyncMock(), MagicMock())

        await processor.get_total_sum(**kwargs)

        getattr(repo, lookup).assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs, lookup",
        [
            ({}, "find_by_user_id"),
            ({"statuses": ["FAILED"]}, "find_by_user_id_and_statuses"),
            (
                {"start_date": WINDOW_START, "end_date": WINDOW_END},
                "find_by_user_id_and_timestamp_between",
            ),
            (
                {"start_date": WINDOW_START, "end_date": WINDOW_END, "statuses": ["FAILED"]},
                "find_by_user_id_and_statuses_and_timestamp_between",
            ),
        ],
    )
    async def test_user_total_picks_lookup(self, kwargs: dict, lookup: str) -> None:
        repo = AsyncMock(spec=PaymentRepository)
        for name in (
            "find_by_user_id",
            "find_by_user_id_and_statuses",
            "find_by_user_id_and_timestamp_between",
            "find_by_user_id_and_statuses_and_timestamp_between",
        ):
            getattr(repo, name).return_value = []
        processor = PaymentProcessor(repo, AsyncMock(), AsyncMock(), AsyncMock(), MagicMock())

        await processor.get_total_sum_by_user_id("2", **kwargs)

        mock = getattr(repo, lookup)
        mock.assert_awaited_once()
        assert mock.await_args.args[0] == "2"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_user_total_scoped_to_user(
        self,
        processor: PaymentProcessor,
        repository: PaymentRepository,
        make_payment: Callable[..., Payment],
    ) -> None:
        await seed(
            repository,
            make_payment(user_id="2", payment_amount=Decimal("3.00")),
            make_payment(user_id="3", payment_amount=Decimal("9.00")),
        )

        result = await processor.get_total_sum_by_user_id("2")

        assert result["total_sum"] == Decimal("3.00")
        assert result["payment_count"] == 1


class TestMyTotal:
    """Totals for the caller's own identity."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_resolves_identity_then_sums(
        self,
        processor: PaymentProcessor,
        repository: PaymentRepository,
        user_client: AsyncMock,
        make_payment: Callable[..., Payment],
    ) -> None:
        await seed(
            repository,
            make_payment(user_id="2", payment_amount=Decimal("100.50")),
            make_payment(user_id="9", payment_amount=Decimal("1.00")),
        )

        result = await processor.get_my_total_sum("jane@example.com", "Bearer t")

        user_client.get_user_by_email.assert_awaited_once_with("jane@example.com", "Bearer t")
        assert result["total_sum"] == Decimal("100.50")
        assert result["payment_count"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_identity_propagates(
        self, processor: PaymentProcessor, user_client: AsyncMock
    ) -> None:
        """An unknown user is an error, not a zero total."""
        user_client.get_user_by_email.side_effect = IdentityNotFoundError("nobody@example.com")

        with pytest.raises(IdentityNotFoundError, match="nobody@example.com"):
            await processor.get_my_total_sum("nobody@example.com", "Bearer t")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_user_service_failure_propagates(
        self, processor: PaymentProcessor, user_client: AsyncMock
    ) -> None:
        user_client.get_user_by_email.side_effect = UserServiceError("down")

        with pytest.raises(UserServiceError):
            await processor.get_my_total_sum("jane@example.com", "Bearer t")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bad_window_rejected_before_lookup(
        self, processor: PaymentProcessor, user_client: AsyncMock
    ) -> None:
        with pytest.raises(InvalidArgumentError):
            await processor.get_my_total_sum("jane@example.com", None, start_date=WINDOW_START)

        user_client.get_user_by_email.assert_not_awaited()


class TestQueries:
    """Plain listing queries."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lists_by_order_user_and_status(
        self,
        processor: PaymentProcessor,
        repository: PaymentRepository,
        make_payment: Callable[..., Payment],
    ) -> None:
        await seed(
            repository,
            make_payment(order_id="A", user_id="u1", status=PaymentStatus.SUCCESS),
            make_payment(order_id="A", user_id="u2", status=PaymentStatus.FAILED),
            make_payment(order_id="B", user_id="u1", status=PaymentStatus.REFUNDED),
        )

        assert len(await processor.get_all_payments()) == 3
        assert {p["user_id"] for p in await processor.get_payments_by_order_id("A")} == {"u1", "u2"}
        assert {p["order_id"] for p in await processor.get_payments_by_user_id("u1")} == {"A", "B"}

        by_status = await processor.get_payments_by_statuses(["FAILED", "REFUNDED"])
        assert sorted(p["status"] for p in by_status) == ["FAILED", "REFUNDED"]

        comma_separated = await processor.get_payments_by_statuses(["FAILED, REFUNDED"])
        assert sorted(p["status"] for p in comma_separated) == ["FAILED", "REFUNDED"]

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "statuses, expected",
        [
            (["SUCCESS,FAILED"], [PaymentStatus.SUCCESS, PaymentStatus.FAILED]),
            (["SUCCESS", "FAILED,REFUNDED"], [
                PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.REFUNDED,
            ]),
            ([PaymentStatus.PENDING], [PaymentStatus.PENDING]),
            (["CREATED,,"], [PaymentStatus.CREATED]),
            ([","], []),
        ],
    )
    def test_parse_statuses_splits_commas(self, statuses: Any, expected: Any) -> None:
        assert PaymentProcessor._parse_statuses(statuses) == expected

    @pytest.mark.unit
    def test_parse_statuses_rejects_unknown_in_list(self) -> None:
        with pytest.raises(InvalidArgumentError, match="Unknown payment status: PAID"):
            PaymentProcessor._parse_statuses(["SUCCESS,PAID"])

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("statuses", [None, []])
    async def test_statuses_required(self, processor: PaymentProcessor, statuses: Any) -> None:
        with pytest.raises(InvalidArgumentError):
            await processor.get_payments_by_statuses(statuses)

    @pytest.mark.unit
    def test_serialize_payment_normalizes_timestamp(self) -> None:
        payment = Payment(
            id="p1",
            order_id="1",
            user_id="2",
            status=PaymentStatus.FAILED,
            timestamp=datetime(2024, 1, 1, 8, 30),
            payment_amount=None,
        )

        data = serialize_payment(payment)

        assert data["status"] == "FAILED"
        assert data["timestamp"] == datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)
        assert data["payment_amount"] is None

    @pytest.mark.unit
    def test_to_utc_converts_offsets(self) -> None:
        plus_two = timezone(timedelta(hours=2))

        assert to_utc(datetime(2024, 1, 1, 10, 0, tzinfo=plus_two)) == datetime(
            2024, 1, 1, 8, 0, tzinfo=timezone.utc
        )
