"""Services handling PSP webhook callbacks (Paystack and TradeSafe)."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gigpay.config import Settings, get_settings
from gigpay.db import atomic
from gigpay.models.escrow import EscrowStatus
from gigpay.models.payment import Payment, PaymentIntentStatus, PaymentProvider
from gigpay.models.psp_webhook import PSPWebhookEvent
from gigpay.services import escrow as escrow_service
from gigpay.services import payments as payments_service
from gigpay.services import paystack, tradesafe
from gigpay.utils.errors import OutOfBounds, SignatureInvalid
from gigpay.utils.money import from_cents, to_decimal
from gigpay.utils.time import utcnow

logger = logging.getLogger(__name__)

FUNDED_STATES = {"FUNDS_RECEIVED", "FUNDS_DEPOSITED"}
CANCELLED_STATES = {"CANCELLED", "DECLINED"}
COMPLETED_STATES = {"COMPLETED", "ACCEPTED"}


def _parse_json(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise OutOfBounds("Webhook payload is not valid JSON.", code="WEBHOOK_PAYLOAD_INVALID") from exc
    if not isinstance(payload, dict):
        raise OutOfBounds("Webhook payload must be a JSON object.", code="WEBHOOK_PAYLOAD_INVALID")
    return payload


def register_event(
    db: Session,
    *,
    provider: str,
    event_id: str,
    psp_ref: str | None,
    kind: str,
    payload: dict[str, Any],
) -> PSPWebhookEvent | None:
    """Stage the event row; ``None`` means this delivery was already seen."""

    existing = db.scalars(
        select(PSPWebhookEvent).where(
            PSPWebhookEvent.provider == provider,
            PSPWebhookEvent.event_id == event_id,
        )
    ).first()
    if existing:
        logger.info("Duplicate PSP webhook ignored", extra={"provider": provider, "event_id": event_id})
        return None

    event = PSPWebhookEvent(
        provider=provider,
        event_id=event_id,
        psp_ref=psp_ref,
        kind=kind,
        raw_json=payload,
        received_at=utcnow(),
    )
    try:
        db.add(event)
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("Duplicate PSP webhook ignored after race", extra={"provider": provider, "event_id": event_id})
        return None
    return event


def _process(db: Session, event: PSPWebhookEvent, handler: Callable[[], None]) -> None:
    try:
        handler()
        with atomic(db):
            event.processed_at = utcnow()
    except Exception:
        db.rollback()
        raise
    logger.info(
        "PSP webhook processed",
        extra={"provider": event.provider, "event_id": event.event_id, "kind": event.kind, "psp_ref": event.psp_ref},
    )


# --- Paystack -----------------------------------------------------------------


def handle_paystack_webhook(
    db: Session,
    raw_body: bytes,
    signature: str | None,
    *,
    settings: Settings | None = None,
) -> dict[str, bool]:
    settings = settings or get_settings()
    if not paystack.verify_webhook_signature(raw_body, signature, secret=settings.PAYSTACK_SECRET_KEY):
        logger.warning("Paystack webhook signature mismatch")
        raise SignatureInvalid("Invalid Paystack signature.", code="PAYSTACK_SIGNATURE_INVALID")

    payload = _parse_json(raw_body)
    kind = str(payload.get("event") or "unknown")
    data = payload.get("data") or {}
    reference = data.get("reference")
    event_id = f"{kind}:{data.get('id') or reference}"

    event = register_event(
        db,
        provider=PaymentProvider.PAYSTACK.value,
        event_id=event_id,
        psp_ref=reference,
        kind=kind,
        payload=payload,
    )
    if event is None:
        return {"received": True, "duplicate": True}

    if kind == "charge.success":
        _process(db, event, lambda: _paystack_charge_success(db, data))
    elif kind == "charge.failed":
        _process(db, event, lambda: _paystack_charge_failed(db, data))
    else:
        logger.info("Unhandled Paystack event type", extra={"event_type": kind})
        _process(db, event, lambda: None)
    return {"received": True, "duplicate": False}


def _paystack_charge_success(db: Session, data: dict[str, Any]) -> None:
    if data.get("status") not in (None, "success"):
        logger.info("Paystack charge not successful", extra={"reference": data.get("reference"), "status": data.get("status")})
        return

    reference = data.get("reference")
    provider_txn_id = str(data.get("id") or reference)
    gross_amount = from_cents(data.get("amount") or 0)
    fees = from_cents(data.get("fees") or 0)

    intent = payments_service.find_intent_for_gateway(db, reference=reference, provider_txn_id=None)
    if intent is not None:
        payments_service.process_payment(
            db,
            reference=intent.reference,
            provider_txn_id=provider_txn_id,
            gross_amount=gross_amount,
            fees=fees,
            verified_via="webhook",
        )
        return

    # checkout started outside an intent; fall back to the metadata
    metadata = data.get("metadata") or {}
    gig_id = str(metadata.get("gigId") or "")
    employer_id = str(metadata.get("employerId") or "")
    if not gig_id.isdigit() or not employer_id.isdigit():
        logger.error("Paystack charge without usable gig metadata", extra={"reference": reference})
        return
    escrow_service.fund_gig(
        db,
        gig_id=int(gig_id),
        employer_id=int(employer_id),
        gross_amount=gross_amount,
        provider=PaymentProvider.PAYSTACK,
        provider_txn_id=provider_txn_id,
        fees=fees,
        verified_via="webhook",
        actor="psp:paystack",
    )


def _paystack_charge_failed(db: Session, data: dict[str, Any]) -> None:
    intent = payments_service.find_intent_for_gateway(db, reference=data.get("reference"), provider_txn_id=None)
    if intent is None:
        logger.info("Paystack failure for unknown intent", extra={"reference": data.get("reference")})
        return
    payments_service.mark_intent_failed(db, intent, reason=f"Payment failed: {data.get('status')}")


# --- TradeSafe ----------------------------------------------------------------


def handle_tradesafe_webhook(
    db: Session,
    raw_body: bytes,
    signature: str | None,
    *,
    settings: Settings | None = None,
) -> dict[str, bool]:
    settings = settings or get_settings()
    if not tradesafe.verify_webhook_signature(raw_body, signature, secret=settings.TRADESAFE_CLIENT_SECRET):
        logger.warning("TradeSafe webhook signature mismatch")
        raise SignatureInvalid("Invalid TradeSafe signature.", code="TRADESAFE_SIGNATURE_INVALID")

    payload = _parse_json(raw_body)
    parsed = tradesafe.parse_webhook(raw_body)
    state = str(parsed["state"] or parsed["event"] or "unknown").upper()
    transaction_id = parsed["transaction_id"]
    if not transaction_id:
        raise OutOfBounds("TradeSafe webhook has no transaction id.", code="WEBHOOK_PAYLOAD_INVALID")

    event = register_event(
        db,
        provider=PaymentProvider.TRADESAFE.value,
        event_id=f"{transaction_id}:{state}",
        psp_ref=transaction_id,
        kind=state,
        payload=payload,
    )
    if event is None:
        return {"received": True, "duplicate": True}

    if state in FUNDED_STATES:
        _process(db, event, lambda: _tradesafe_funded(db, parsed))
    elif state in CANCELLED_STATES:
        _process(db, event, lambda: _tradesafe_cancelled(db, parsed))
    elif state in COMPLETED_STATES:
        _process(db, event, lambda: _tradesafe_completed(db, parsed))
    else:
        logger.info("Unhandled TradeSafe state", extra={"state": state, "transaction_id": transaction_id})
        _process(db, event, lambda: None)
    return {"received": True, "duplicate": False}


def _tradesafe_funded(db: Session, parsed: dict[str, Any]) -> None:
    transaction_id = parsed["transaction_id"]
    intent = payments_service.find_intent_for_gateway(
        db, reference=parsed.get("reference"), provider_txn_id=transaction_id
    )
    if intent is None:
        logger.warning("TradeSafe funds for unknown intent", extra={"transaction_id": transaction_id})
        return
    value = parsed.get("value")
    gross_amount = to_decimal(value) if value is not None else to_decimal(intent.amount)
    payments_service.process_payment(
        db,
        reference=intent.reference,
        provider_txn_id=transaction_id,
        gross_amount=gross_amount,
        verified_via="webhook",
    )


def _tradesafe_cancelled(db: Session, parsed: dict[str, Any]) -> None:
    transaction_id = parsed["transaction_id"]
    intent = payments_service.find_intent_for_gateway(
        db, reference=parsed.get("reference"), provider_txn_id=transaction_id
    )
    if intent is None:
        logger.info("TradeSafe cancellation for unknown intent", extra={"transaction_id": transaction_id})
        return
    if intent.status == PaymentIntentStatus.SUCCEEDED:
        logger.warning(
            "TradeSafe cancelled a funded transaction; escrow left for manual review",
            extra={"transaction_id": transaction_id, "payment_id": intent.payment_id},
        )
        return
    payments_service.mark_intent_failed(db, intent, reason="Cancelled at TradeSafe")


def _tradesafe_completed(db: Session, parsed: dict[str, Any]) -> None:
    transaction_id = parsed["transaction_id"]
    payment = db.scalars(select(Payment).where(Payment.provider_txn_id == transaction_id)).first()
    if payment is None:
        logger.info("TradeSafe completion for unknown payment", extra={"transaction_id": transaction_id})
        return
    escrow = escrow_service.get_escrow_for_gig(db, payment.gig_id)
    if escrow.status != EscrowStatus.ACTIVE:
        logger.info(
            "TradeSafe completion for settled escrow",
            extra={"payment_id": payment.id, "escrow_status": escrow.status.value},
        )
        return
    escrow_service.release_escrow(db, payment_id=payment.id, actor="psp:tradesafe", trigger="gateway_completed")


__all__ = [
    "handle_paystack_webhook",
    "handle_tradesafe_webhook",
    "register_event",
]
