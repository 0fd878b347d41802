"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payment_service.api.schemas import CreatePaymentRequest
from payment_service.core.payment_processor import PaymentProcessor
from payment_service.database.models import Base, Payment, PaymentStatus
from payment_service.database.repository import PaymentRepository
from payment_service.integrations.event_producer import PaymentEventProducer
from payment_service.integrations.order_client import OrderClient
from payment_service.integrations.outcome_client import OutcomeClient
from payment_service.integrations.user_client import UserClient, UserRecord


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests that wire several components")


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """In-memory SQLite database with the payments table."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository(session_factory: async_sessionmaker[AsyncSession]) -> PaymentRepository:
    return PaymentRepository(session_factory=session_factory)


@pytest.fixture
def outcome_client() -> AsyncMock:
    """Outcome client that answers an even number."""
    client = AsyncMock(spec=OutcomeClient)
    client.fetch_number.return_value = 48
    return client


@pytest.fixture
def order_client() -> AsyncMock:
    return AsyncMock(spec=OrderClient)


@pytest.fixture
def user_client() -> AsyncMock:
    client = AsyncMock(spec=UserClient)
    client.get_user_by_email.return_value = UserRecord(id=2, email="jane@example.com")
    return client


@pytest.fixture
def event_producer() -> MagicMock:
    return MagicMock(spec=PaymentEventProducer)


@pytest.fixture
def processor(
    repository: PaymentRepository,
    outcome_client: AsyncMock,
    order_client: AsyncMock,
    user_client: AsyncMock,
    event_producer: MagicMock,
) -> PaymentProcessor:
    """Processor over the in-memory store with mocked upstreams."""
    return PaymentProcessor(
        repository=repository,
        outcome_client=outcome_client,
        order_client=order_client,
        user_client=user_client,
        event_producer=event_producer,
    )


@pytest.fixture
def sample_payment_request() -> CreatePaymentRequest:
    """Sample payment request."""
    return CreatePaymentRequest(order_id="1", user_id="2", payment_amount=Decimal("100.50"))


@pytest.fixture
def make_payment() -> Callable[..., Payment]:
    """Factory for unsaved payments with sensible defaults."""

    def _make(
        order_id: str = "1",
        user_id: str = "2",
        status: PaymentStatus = PaymentStatus.SUCCESS,
        timestamp: datetime = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        payment_amount: Decimal | None = Decimal("10.00"),
    ) -> Payment:
        return Payment(
            order_id=order_id,
            user_id=user_id,
            status=status,
            timestamp=timestamp,
            payment_amount=payment_amount,
        )

    return _make
