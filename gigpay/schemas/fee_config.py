"""Fee configuration schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class FeeConfigCreate(BaseModel):
    platform_commission_percent: Decimal
    minimum_gig_amount: Decimal
    maximum_gig_amount: Decimal
    escrow_auto_release_days: int
    is_active: bool = True


class FeeConfigUpdate(BaseModel):
    platform_commission_percent: Decimal | None = None
    minimum_gig_amount: Decimal | None = None
    maximum_gig_amount: Decimal | None = None
    escrow_auto_release_days: int | None = None
    is_active: bool | None = None


class FeeConfigRead(BaseModel):
    id: int
    platform_commission_percent: Decimal
    minimum_gig_amount: Decimal
    maximum_gig_amount: Decimal
    escrow_auto_release_days: int
    is_active: bool
    created_by: str
    updated_by: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FeeBreakdownRead(BaseModel):
    gig_amount: Decimal
    platform_commission: Decimal
    worker_earnings: Decimal
    commission_percent: Decimal

    model_config = ConfigDict(from_attributes=True)


class FeeSettingsRead(BaseModel):
    platform_commission_percent: Decimal
    minimum_gig_amount: Decimal
    maximum_gig_amount: Decimal
    escrow_auto_release_days: int
    config_id: int | None = None

    model_config = ConfigDict(from_attributes=True)
