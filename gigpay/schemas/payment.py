"""Schemas for payments, intents, escrow and disputes."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from gigpay.models.escrow import EscrowStatus
from gigpay.models.payment import (
    DisputeStatus,
    PaymentEscrowStatus,
    PaymentIntentStatus,
    PaymentProvider,
    PaymentStatus,
)


class PaymentIntentCreate(BaseModel):
    gig_id: int
    employer_id: int
    provider: PaymentProvider = PaymentProvider.PAYSTACK
    # TradeSafe party tokens, required only for a TradeSafe checkout
    buyer_token: str | None = None
    seller_token: str | None = None


class PaymentIntentRead(BaseModel):
    id: int
    reference: str
    gig_id: int
    application_id: int
    employer_id: int
    worker_id: int
    amount: Decimal
    currency: str
    provider: PaymentProvider
    status: PaymentIntentStatus
    expires_at: datetime
    checkout_url: str | None = None
    payment_id: int | None = None
    failure_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ProcessPayment(BaseModel):
    reference: str
    provider_txn_id: str = Field(min_length=1, max_length=128)
    gross_amount: Decimal = Field(gt=Decimal("0"))
    fees: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))


class PaymentRead(BaseModel):
    id: int
    gig_id: int
    application_id: int
    employer_id: int
    worker_id: int
    amount: Decimal
    gross_amount: Decimal
    fees: Decimal
    currency: str
    provider: PaymentProvider
    status: PaymentStatus
    escrow_status: PaymentEscrowStatus
    dispute_status: DisputeStatus
    verified_via: str | None = None
    completed_at: datetime | None = None
    released_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EscrowRead(BaseModel):
    id: int
    gig_id: int
    payment_id: int
    employer_id: int
    worker_id: int
    total_amount: Decimal
    released_amount: Decimal
    currency: str
    status: EscrowStatus
    released_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ReleaseRequest(BaseModel):
    amount: Decimal | None = Field(default=None, gt=Decimal("0"))


class DisputeCreate(BaseModel):
    raised_by: int
    reason: str = Field(min_length=3, max_length=255)
    description: str | None = Field(default=None, max_length=4000)


class DisputeResolve(BaseModel):
    resolution: str = Field(min_length=3, max_length=4000)


class DisputeRead(BaseModel):
    id: int
    payment_id: int
    gig_id: int
    raised_by: int
    raised_against: int
    reason: str
    description: str | None = None
    status: DisputeStatus
    resolution: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
