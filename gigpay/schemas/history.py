"""Payment history, analytics and reconciliation schemas."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from gigpay.models.history import HistoryStatus, HistoryType


class HistoryEntryRead(BaseModel):
    id: int
    user_id: int
    type: HistoryType
    amount: Decimal
    currency: str
    status: HistoryStatus
    description: str
    gig_id: int | None = None
    payment_id: int | None = None
    withdrawal_id: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AnalyticsRead(BaseModel):
    user_id: int
    totals: dict[str, dict[str, Decimal]]
    counts: dict[str, int]
    entry_count: int

    model_config = ConfigDict(from_attributes=True)


class ReconciliationRead(BaseModel):
    user_id: int
    total_earnings_wallet: Decimal
    total_earnings_history: Decimal
    total_withdrawn_wallet: Decimal
    total_withdrawn_requests: Decimal
    consistent: bool

    model_config = ConfigDict(from_attributes=True)
