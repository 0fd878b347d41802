"""
Payment repository.

All reads and writes of payment rows go through here. Every operation opens
its own session from the shared factory, so concurrent workflows never share
a session, and every database failure is re-raised as StorageError.
"""
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any, List, Optional

import structlog
from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_service.core.exceptions import StorageError
from payment_service.database.connection import get_session_factory
from payment_service.database.models import Payment, PaymentStatus

logger = structlog.get_logger(__name__)


class PaymentRepository:
    """Async store for Payment records."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        """
        Initialize the repository.

        Args:
            session_factory: Optional session factory (defaults to the app-wide one)
        """
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def save(self, payment: Payment) -> Payment:
        """
        Insert a new payment or update an existing one.

        A payment without an id gets a fresh UUID before the insert.

        Args:
            payment: Payment to persist

        Returns:
            Payment: The persisted payment

        Raises:
            StorageError: If the write fails
        """
        if not payment.id:
            payment.id = str(uuid.uuid4())

        try:
            async with self.session_factory() as session:
                persisted = await session.merge(payment)
                await session.commit()
                await session.refresh(persisted)
        except SQLAlchemyError as e:
            logger.error("payment_save_failed", payment_id=payment.id, error=str(e))
            raise StorageError(f"Failed to save payment {payment.id}", original_error=e) from e

        logger.debug("payment_saved", payment_id=persisted.id, status=persisted.status)
        return persisted

    async def find_by_id(self, payment_id: str) -> Optional[Payment]:
        """
        Load a payment by id.

        Returns:
            Optional[Payment]: The payment, or None if it does not exist
        """
        try:
            async with self.session_factory() as session:
                return await session.get(Payment, payment_id)
        except SQLAlchemyError as e:
            logger.error("payment_lookup_failed", payment_id=payment_id, error=str(e))
            raise StorageError(f"Failed to load payment {payment_id}", original_error=e) from e

    async def find_all(self) -> List[Payment]:
        return await self._find(select(Payment))

    async def find_by_order_id(self, order_id: str) -> List[Payment]:
        return await self._find(select(Payment).where(Payment.order_id == order_id))

    async def find_by_user_id(self, user_id: str) -> List[Payment]:
        return await self._find(select(Payment).where(Payment.user_id == user_id))

    async def find_by_statuses(self, statuses: Sequence[PaymentStatus]) -> List[Payment]:
        return await self._find(select(Payment).where(Payment.status.in_(list(statuses))))

    async def find_by_timestamp_between(
        self, start_date: datetime, end_date: datetime
    ) -> List[Payment]:
        """Both bounds are inclusive."""
        return await self._find(
            select(Payment).where(Payment.timestamp.between(start_date, end_date))
        )

    async def find_by_statuses_and_timestamp_between(
        self,
        statuses: Sequence[PaymentStatus],
        start_date: datetime,
        end_date: datetime,
    ) -> List[Payment]:
        return await self._find(
            select(Payment).where(
                Payment.status.in_(list(statuses)),
                Payment.timestamp.between(start_date, end_date),
            )
        )

    async def find_by_user_id_and_statuses(
        self, user_id: str, statuses: Sequence[PaymentStatus]
    ) -> List[Payment]:
        return await self._find(
            select(Payment).where(
                Payment.user_id == user_id,
                Payment.status.in_(list(statuses)),
            )
        )

    async def find_by_user_id_and_timestamp_between(
        self, user_id: str, start_date: datetime, end_date: datetime
    ) -> List[Payment]:
        return await self._find(
            select(Payment).where(
                Payment.user_id == user_id,
                Payment.timestamp.between(start_date, end_date),
            )
        )

    async def find_by_user_id_and_statuses_and_timestamp_between(
        self,
        user_id: str,
        statuses: Sequence[PaymentStatus],
        start_date: datetime,
        end_date: datetime,
    ) -> List[Payment]:
        return await self._find(
            select(Payment).where(
                Payment.user_id == user_id,
                Payment.status.in_(list(statuses)),
                Payment.timestamp.between(start_date, end_date),
            )
        )

    async def _find(self, stmt: Select[Any]) -> List[Payment]:
        """Run a filtered select, oldest payments first."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt.order_by(Payment.timestamp, Payment.id))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("payment_query_failed", error=str(e))
            raise StorageError("Failed to query payments", original_error=e) from e
