"""Gig and application schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from gigpay.models.gig import (
    ApplicationPaymentStatus,
    ApplicationStatus,
    GigStatus,
    RateParty,
    RateStatus,
)


class GigCreate(BaseModel):
    employer_id: int
    title: str = Field(min_length=3, max_length=200)
    description: str | None = None
    budget: Decimal = Field(gt=Decimal("0"))
    max_applicants: int | None = Field(default=None, ge=1)


class GigRead(BaseModel):
    id: int
    employer_id: int
    title: str
    description: str | None = None
    budget: Decimal
    status: GigStatus
    max_applicants: int | None = None
    assigned_worker_id: int | None = None
    paid_amount: Decimal | None = None
    funded_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GigCancel(BaseModel):
    employer_id: int


class ApplicationCreate(BaseModel):
    applicant_id: int
    proposed_rate: Decimal
    message: str | None = Field(default=None, max_length=2000)


class ApplicationRead(BaseModel):
    id: int
    gig_id: int
    applicant_id: int
    message: str | None = None
    status: ApplicationStatus
    proposed_rate: Decimal
    agreed_rate: Decimal | None = None
    rate_status: RateStatus
    last_rate_update_by: RateParty | None = None
    last_rate_update_amount: Decimal | None = None
    last_rate_update_note: str | None = None
    last_rate_update_at: datetime | None = None
    payment_status: ApplicationPaymentStatus
    completion_requested_at: datetime | None = None
    completion_auto_release_at: datetime | None = None
    completion_disputed_at: datetime | None = None
    completion_dispute_reason: str | None = None
    completed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EmployerAction(BaseModel):
    employer_id: int


class ApplicantAction(BaseModel):
    applicant_id: int


class RateUpdate(BaseModel):
    amount: Decimal
    by: RateParty
    actor_id: int
    note: str | None = Field(default=None, max_length=500)


class RateConfirm(BaseModel):
    by: RateParty
    actor_id: int


class CompletionRequest(BaseModel):
    worker_id: int


class CompletionDispute(BaseModel):
    employer_id: int
    reason: str = Field(max_length=2000)


class AutoReleaseResult(BaseModel):
    application_id: int
    success: bool
    error: str | None = None


class AutoReleaseSummary(BaseModel):
    processed: int
    succeeded: int
    failed: int
    results: list[AutoReleaseResult]
