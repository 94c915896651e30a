"""Escrow account model."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, Enum as SqlEnum, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, enum_values


class EscrowStatus(str, PyEnum):
    """Status of an escrow account."""

    ACTIVE = "active"
    RELEASED = "released"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class EscrowAccount(Base):
    """Funds held for a funded gig until completion is approved or auto-released."""

    __tablename__ = "escrow_accounts"
    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_escrow_total_positive"),
        CheckConstraint("released_amount >= 0", name="ck_escrow_released_non_negative"),
        CheckConstraint("released_amount <= total_amount", name="ck_escrow_released_within_total"),
        Index("ix_escrow_accounts_status", "status"),
    )

    gig_id: Mapped[int] = mapped_column(ForeignKey("gigs.id"), unique=True, nullable=False)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"), nullable=False, index=True)
    employer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    worker_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    released_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ZAR")
    status: Mapped[EscrowStatus] = mapped_column(
        SqlEnum(EscrowStatus, values_callable=enum_values, name="escrowstatus"),
        default=EscrowStatus.ACTIVE,
        nullable=False,
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def remaining_amount(self) -> Decimal:
        return self.total_amount - self.released_amount
