"""Shared FastAPI dependencies for injected collaborators."""
from __future__ import annotations

from typing import Any

from fastapi import Request

from gigpay.config import get_settings
from gigpay.core.logging import get_logger
from gigpay.services.fee_config import FeeConfigCache, get_fee_config_cache
from gigpay.services.paystack import PaystackClient
from gigpay.services.tradesafe import TradeSafeClient
from gigpay.services.withdrawals import WithdrawalRateLimiter

logger = get_logger(__name__)


def get_fee_cache() -> FeeConfigCache:
    return get_fee_config_cache()


def get_withdrawal_limiter() -> WithdrawalRateLimiter:
    return WithdrawalRateLimiter()


def open_gateway_clients(state: Any) -> None:
    """Build one client per configured gateway for the life of the app.

    A gateway without credentials gets ``None`` and its endpoints answer 503.
    """

    settings = get_settings()
    state.paystack_client = PaystackClient(settings) if settings.PAYSTACK_SECRET_KEY else None
    state.tradesafe_client = (
        TradeSafeClient(settings)
        if settings.TRADESAFE_CLIENT_ID and settings.TRADESAFE_CLIENT_SECRET
        else None
    )
    logger.info(
        "Gateway clients ready",
        extra={
            "paystack": state.paystack_client is not None,
            "tradesafe": state.tradesafe_client is not None,
        },
    )


def close_gateway_clients(state: Any) -> None:
    for name in ("paystack_client", "tradesafe_client"):
        client = getattr(state, name, None)
        if client is not None:
            client.close()
        setattr(state, name, None)


def get_paystack_client(request: Request) -> PaystackClient | None:
    """Paystack client, or ``None`` when no secret key is configured."""

    return getattr(request.app.state, "paystack_client", None)


def get_tradesafe_client(request: Request) -> TradeSafeClient | None:
    return getattr(request.app.state, "tradesafe_client", None)


__all__ = [
    "close_gateway_clients",
    "get_fee_cache",
    "get_paystack_client",
    "get_tradesafe_client",
    "get_withdrawal_limiter",
    "open_gateway_clients",
]
