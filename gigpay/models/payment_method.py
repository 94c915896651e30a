"""Saved payment methods (cards, bank accounts, mobile money)."""
import enum

from sqlalchemy import Boolean, CheckConstraint, Enum as SqlEnum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, enum_values


class PaymentMethodType(str, enum.Enum):
    CARD = "card"
    BANK = "bank"
    MOBILE_MONEY = "mobile_money"
    EFT = "eft"


class PaymentMethod(Base):
    """A way for a user to pay or be paid.

    At most one method per user carries ``is_default``; writers serialise on
    the owning user row to keep it that way.
    """

    __tablename__ = "payment_methods"
    __table_args__ = (
        CheckConstraint("expiry_month IS NULL OR (expiry_month BETWEEN 1 AND 12)", name="ck_payment_method_expiry_month"),
        Index("ix_payment_methods_user_default", "user_id", "is_default"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    type: Mapped[PaymentMethodType] = mapped_column(
        SqlEnum(PaymentMethodType, values_callable=enum_values, name="paymentmethodtype"),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)

    card_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    card_brand: Mapped[str | None] = mapped_column(String(30), nullable=True)
    card_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    expiry_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expiry_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    account_holder: Mapped[str | None] = mapped_column(String(150), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    account_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    branch_code: Mapped[str | None] = mapped_column(String(16), nullable=True)

    mobile_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mobile_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
