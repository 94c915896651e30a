"""Routes for PSP webhook handling."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.services import paystack, psp_webhooks, tradesafe

router = APIRouter(prefix="/psp", tags=["psp"])


@router.post("/paystack/webhook", status_code=status.HTTP_200_OK)
async def paystack_webhook(request: Request, db: Session = Depends(get_db)) -> dict[str, bool]:
    raw_body = await request.body()
    return psp_webhooks.handle_paystack_webhook(db, raw_body, request.headers.get(paystack.SIGNATURE_HEADER))


@router.post("/tradesafe/webhook", status_code=status.HTTP_200_OK)
async def tradesafe_webhook(request: Request, db: Session = Depends(get_db)) -> dict[str, bool]:
    raw_body = await request.body()
    return psp_webhooks.handle_tradesafe_webhook(db, raw_body, request.headers.get(tradesafe.SIGNATURE_HEADER))


__all__ = ["router"]
