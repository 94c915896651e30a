"""Payment method schemas."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from gigpay.models.payment_method import PaymentMethodType


class PaymentMethodCreate(BaseModel):
    type: PaymentMethodType
    provider: str = Field(min_length=2, max_length=50)
    is_default: bool = False

    card_last4: str | None = Field(default=None, pattern=r"^\d{4}$")
    card_brand: str | None = Field(default=None, max_length=30)
    card_type: str | None = Field(default=None, max_length=20)
    expiry_month: int | None = Field(default=None, ge=1, le=12)
    expiry_year: int | None = Field(default=None, ge=2000, le=2100)

    bank_name: str | None = Field(default=None, min_length=2, max_length=100)
    account_type: str | None = Field(default=None, pattern="^(savings|cheque|transmission)$")
    account_holder: str | None = Field(default=None, min_length=2, max_length=150)
    account_number: str | None = Field(default=None, pattern=r"^\d{6,20}$")
    branch_code: str | None = Field(default=None, pattern=r"^\d{4,10}$")

    mobile_provider: str | None = Field(default=None, max_length=50)
    mobile_number: str | None = Field(default=None, pattern=r"^\+?\d{9,15}$")


class PaymentMethodRead(BaseModel):
    id: int
    user_id: int
    type: PaymentMethodType
    provider: str
    card_last4: str | None = None
    card_brand: str | None = None
    card_type: str | None = None
    expiry_month: int | None = None
    expiry_year: int | None = None
    bank_name: str | None = None
    account_type: str | None = None
    account_holder: str | None = None
    account_last4: str | None = None
    mobile_provider: str | None = None
    is_default: bool
    is_verified: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DefaultRepairRead(BaseModel):
    user_id: int
    cleared: int
