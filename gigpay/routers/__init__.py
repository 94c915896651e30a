"""API routers for the gigpay backend."""
from fastapi import APIRouter

from . import (
    apikeys,
    applications,
    cron,
    fee_configs,
    gigs,
    health,
    payment_methods,
    payments,
    psp,
    users,
    withdrawals,
)


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(apikeys.router)
    api_router.include_router(users.router)
    api_router.include_router(payment_methods.router)
    api_router.include_router(gigs.router)
    api_router.include_router(applications.router)
    api_router.include_router(payments.router)
    api_router.include_router(withdrawals.router)
    api_router.include_router(fee_configs.router)
    api_router.include_router(psp.router)
    api_router.include_router(cron.router)
    return api_router
