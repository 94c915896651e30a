"""Withdrawal schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from gigpay.models.withdrawal import WithdrawalStatus


class BankDetailsIn(BaseModel):
    bank_name: str = Field(min_length=2, max_length=100)
    account_holder: str = Field(min_length=2, max_length=150)
    account_number: str = Field(pattern=r"^\d{6,20}$")
    branch_code: str = Field(pattern=r"^\d{4,10}$")
    account_type: str = Field(default="savings", pattern="^(savings|cheque|transmission)$")


class WithdrawalCreate(BaseModel):
    user_id: int
    amount: Decimal
    bank_details: BankDetailsIn


class WithdrawalRead(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    currency: str
    status: WithdrawalStatus
    bank_name: str
    account_type: str
    failure_reason: str | None = None
    admin_notes: str | None = None
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WithdrawalApprove(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class WithdrawalReject(BaseModel):
    reason: str = Field(min_length=3, max_length=255)
