"""SQLAlchemy database models for the payment service."""
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PaymentStatus(str, Enum):
    """Lifecycle states of a payment."""

    CREATED = "CREATED"
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Payment(Base):
    """
    Payment records table.

    One row per payment attempt for an order. The id is assigned by the
    repository on first save; the timestamp is set once at creation.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status",
            native_enum=False,
            length=20,
            validate_strings=True,
        ),
        nullable=False,
        index=True,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(19, 2), nullable=True)

    __table_args__ = (
        CheckConstraint("payment_amount > 0", name="positive_payment_amount"),
        Index("idx_payments_user_status", "user_id", "status"),
        Index("idx_payments_user_timestamp", "user_id", "timestamp"),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, order_id={self.order_id}, user_id={self.user_id}, "
            f"amount={self.payment_amount}, status={self.status})>"
        )
