"""Wallet model."""
from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Wallet(Base):
    """Per-user balances. Created lazily on first credit or reservation."""

    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_wallet_pending_non_negative"),
        CheckConstraint("total_earnings >= 0", name="ck_wallet_earnings_non_negative"),
        CheckConstraint("total_withdrawn >= 0", name="ck_wallet_withdrawn_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False, index=True)
    wallet_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    pending_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    total_earnings: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))
    total_withdrawn: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0.00"))

    user = relationship("User", back_populates="wallet")
