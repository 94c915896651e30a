"""Fee configuration model."""
from decimal import Decimal

from sqlalchemy import Boolean, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class FeeConfig(Base):
    """Commission and amount bounds. At most one row is active."""

    __tablename__ = "fee_configs"

    platform_commission_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    minimum_gig_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    maximum_gig_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    escrow_auto_release_days: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
