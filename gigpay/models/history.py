"""Payment history model."""
import enum
from decimal import Decimal

from sqlalchemy import Enum as SqlEnum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, enum_values


class HistoryType(str, enum.Enum):
    EARNINGS = "earnings"
    PAYMENTS = "payments"
    REFUNDS = "refunds"
    FEES = "fees"


class HistoryStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentHistoryEntry(Base):
    """Append-only money movement log for a user. Wallet fields stay authoritative."""

    __tablename__ = "payment_history"
    __table_args__ = (Index("ix_payment_history_user_created", "user_id", "created_at"),)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[HistoryType] = mapped_column(
        SqlEnum(HistoryType, values_callable=enum_values, name="historytype"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ZAR")
    status: Mapped[HistoryStatus] = mapped_column(
        SqlEnum(HistoryStatus, values_callable=enum_values, name="historystatus"), nullable=False
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    gig_id: Mapped[int | None] = mapped_column(ForeignKey("gigs.id"), nullable=True, index=True)
    payment_id: Mapped[int | None] = mapped_column(ForeignKey("payments.id"), nullable=True, index=True)
    withdrawal_id: Mapped[int | None] = mapped_column(ForeignKey("withdrawal_requests.id"), nullable=True)
