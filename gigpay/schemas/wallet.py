"""Wallet schemas."""
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class WalletRead(BaseModel):
    user_id: int
    wallet_balance: Decimal
    pending_balance: Decimal
    total_earnings: Decimal
    total_withdrawn: Decimal
    available_balance: Decimal

    model_config = ConfigDict(from_attributes=True)
