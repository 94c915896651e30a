"""Payment, payment intent and dispute models."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, enum_values


class PaymentProvider(str, enum.Enum):
    PAYSTACK = "paystack"
    TRADESAFE = "tradesafe"
    MANUAL = "manual"


class PaymentStatus(str, enum.Enum):
    """Possible statuses for a payment."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentEscrowStatus(str, enum.Enum):
    PENDING = "pending"
    FUNDED = "funded"
    RELEASED = "released"
    REFUNDED = "refunded"


class DisputeStatus(str, enum.Enum):
    NONE = "none"
    RAISED = "raised"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class PaymentIntentStatus(str, enum.Enum):
    CREATED = "created"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"


class Payment(Base):
    """Money received from an employer for a gig and held in escrow."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
        Index("ix_payments_created_at", "created_at"),
        Index("ix_payments_status", "status"),
    )

    gig_id: Mapped[int] = mapped_column(ForeignKey("gigs.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("gig_applications.id"), nullable=False)
    employer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    worker_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    fees: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ZAR")
    provider: Mapped[PaymentProvider] = mapped_column(
        SqlEnum(PaymentProvider, values_callable=enum_values, name="paymentprovider"), nullable=False
    )
    provider_txn_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SqlEnum(PaymentStatus, values_callable=enum_values, name="paymentstatus"),
        nullable=False,
        default=PaymentStatus.PROCESSING,
    )
    escrow_status: Mapped[PaymentEscrowStatus] = mapped_column(
        SqlEnum(PaymentEscrowStatus, values_callable=enum_values, name="paymentescrowstatus"),
        nullable=False,
        default=PaymentEscrowStatus.PENDING,
    )
    dispute_status: Mapped[DisputeStatus] = mapped_column(
        SqlEnum(DisputeStatus, values_callable=enum_values, name="disputestatus"),
        nullable=False,
        default=DisputeStatus.NONE,
    )
    verified_via: Mapped[str | None] = mapped_column(String(32), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PaymentIntent(Base):
    """A checkout attempt. Only honored until ``expires_at``."""

    __tablename__ = "payment_intents"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_intent_positive_amount"),
        Index("ix_payment_intents_status_expires", "status", "expires_at"),
    )

    reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    gig_id: Mapped[int] = mapped_column(ForeignKey("gigs.id"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("gig_applications.id"), nullable=False)
    employer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    worker_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ZAR")
    provider: Mapped[PaymentProvider] = mapped_column(
        SqlEnum(PaymentProvider, values_callable=enum_values, name="paymentprovider"), nullable=False
    )
    status: Mapped[PaymentIntentStatus] = mapped_column(
        SqlEnum(PaymentIntentStatus, values_callable=enum_values, name="paymentintentstatus"),
        nullable=False,
        default=PaymentIntentStatus.CREATED,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    checkout_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    provider_txn_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_id: Mapped[int | None] = mapped_column(ForeignKey("payments.id"), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PaymentDispute(Base):
    """A dispute raised against a funded payment. Moves no money by itself."""

    __tablename__ = "payment_disputes"

    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False, index=True)
    gig_id: Mapped[int] = mapped_column(ForeignKey("gigs.id"), nullable=False)
    raised_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    raised_against: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[DisputeStatus] = mapped_column(
        SqlEnum(DisputeStatus, values_callable=enum_values, name="disputestatus"),
        nullable=False,
        default=DisputeStatus.RAISED,
    )
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
