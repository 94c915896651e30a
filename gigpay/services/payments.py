"""Payment intents and gateway confirmation.

An intent is the employer's promise to pay for a gig: it pins the amount due
at the time of checkout and expires after ``PAYMENT_INTENT_TTL_MINUTES``. The
gateway confirms the payment later, by webhook or by an explicit verify call,
and only then is the gig funded.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from gigpay.config import get_settings
from gigpay.db import atomic
from gigpay.models.gig import GigStatus
from gigpay.models.payment import Payment, PaymentIntent, PaymentIntentStatus, PaymentProvider
from gigpay.models.user import User
from gigpay.services import escrow as escrow_service
from gigpay.services.fee_config import FeeConfigCache, get_active_fee_settings
from gigpay.services.gigs import get_gig_or_404
from gigpay.services.idempotency import get_existing_by_key
from gigpay.services.paystack import PaystackClient
from gigpay.services.tradesafe import TradeSafeClient
from gigpay.services.transitions import PAYMENT_INTENT_TRANSITIONS, apply_transition, is_terminal
from gigpay.utils.audit import log_audit
from gigpay.utils.errors import GatewayError, InvalidState, NotFound, Unauthorized
from gigpay.utils.money import ZERO, to_decimal
from gigpay.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

LIVE_INTENT_STATUSES = (PaymentIntentStatus.CREATED, PaymentIntentStatus.PROCESSING)


def new_reference() -> str:
    return f"GIG_{uuid.uuid4().hex[:20].upper()}"


def get_payment_or_404(db: Session, payment_id: int) -> Payment:
    payment = db.get(Payment, payment_id)
    if payment is None:
        raise NotFound("Payment not found.", code="PAYMENT_NOT_FOUND")
    return payment


def get_intent_by_reference(db: Session, reference: str, *, lock: bool = False) -> PaymentIntent:
    stmt = select(PaymentIntent).where(PaymentIntent.reference == reference)
    if lock:
        stmt = stmt.with_for_update()
    intent = db.scalars(stmt).first()
    if intent is None:
        raise NotFound("Payment intent not found.", code="PAYMENT_INTENT_NOT_FOUND")
    return intent


def find_intent_for_gateway(db: Session, *, reference: str | None, provider_txn_id: str | None) -> PaymentIntent | None:
    """Locate an intent by our reference or, failing that, the gateway transaction id."""

    if reference:
        intent = db.scalars(select(PaymentIntent).where(PaymentIntent.reference == reference)).first()
        if intent is not None:
            return intent
    if provider_txn_id:
        return db.scalars(
            select(PaymentIntent)
            .where(PaymentIntent.provider_txn_id == provider_txn_id)
            .order_by(PaymentIntent.id.desc())
        ).first()
    return None


def _is_expired(intent: PaymentIntent, now: datetime) -> bool:
    return as_utc(intent.expires_at) <= now


def create_payment_intent(
    db: Session,
    *,
    gig_id: int,
    employer_id: int,
    provider: PaymentProvider = PaymentProvider.PAYSTACK,
    now: datetime | None = None,
) -> PaymentIntent:
    """Open a checkout for the accepted application's payable rate.

    A still-live intent for the same gig and provider is returned as is, so a
    double click on "Pay" does not create two checkouts.
    """

    settings = get_settings()
    now = now or utcnow()
    with atomic(db):
        gig = get_gig_or_404(db, gig_id, lock=True)
        if gig.employer_id != employer_id:
            raise Unauthorized("Only the gig employer can pay for this gig.", code="NOT_GIG_OWNER")
        if gig.status != GigStatus.IN_PROGRESS:
            raise InvalidState(
                f"Gig cannot be paid for in status {gig.status.value}.",
                code="GIG_NOT_PAYABLE",
                details={"status": gig.status.value},
            )
        application = escrow_service.find_accepted_application(db, gig_id)
        amount = to_decimal(application.payable_rate)

        live = db.scalars(
            select(PaymentIntent)
            .where(
                PaymentIntent.gig_id == gig_id,
                PaymentIntent.application_id == application.id,
                PaymentIntent.provider == provider,
                PaymentIntent.status.in_(LIVE_INTENT_STATUSES),
            )
            .order_by(PaymentIntent.id.desc())
        ).first()
        if live is not None and not _is_expired(live, now) and to_decimal(live.amount) == amount:
            logger.info("Payment intent reused", extra={"reference": live.reference, "gig_id": gig_id})
            return live

        intent = PaymentIntent(
            reference=new_reference(),
            gig_id=gig_id,
            application_id=application.id,
            employer_id=employer_id,
            worker_id=application.applicant_id,
            amount=amount,
            currency=settings.CURRENCY,
            provider=provider,
            status=PaymentIntentStatus.CREATED,
            expires_at=now + timedelta(minutes=settings.PAYMENT_INTENT_TTL_MINUTES),
        )
        db.add(intent)
        db.flush()
        log_audit(
            db,
            actor=f"user:{employer_id}",
            action="PAYMENT_INTENT_CREATED",
            entity="PaymentIntent",
            entity_id=intent.id,
            data={"gig_id": gig_id, "amount": str(amount), "provider": provider.value},
        )
    logger.info(
        "Payment intent created",
        extra={"reference": intent.reference, "gig_id": gig_id, "amount": str(amount)},
    )
    return intent


def start_paystack_checkout(db: Session, intent: PaymentIntent, client: PaystackClient) -> PaymentIntent:
    """Initialise the Paystack transaction and store the checkout URL on the intent."""

    employer = db.get(User, intent.employer_id)
    data = client.initialize_transaction(
        email=employer.email,
        amount=intent.amount,
        reference=intent.reference,
        metadata={
            "gigId": str(intent.gig_id),
            "employerId": str(intent.employer_id),
            "workerId": str(intent.worker_id),
        },
        currency=intent.currency,
    )
    with atomic(db):
        apply_transition(intent, PAYMENT_INTENT_TRANSITIONS, PaymentIntentStatus.PROCESSING, entity="payment_intent")
        intent.checkout_url = data.get("authorization_url")
    return intent


def start_tradesafe_checkout(
    db: Session,
    intent: PaymentIntent,
    client: TradeSafeClient,
    *,
    buyer_token: str,
    seller_token: str,
    fee_cache: FeeConfigCache | None = None,
) -> PaymentIntent:
    """Create the TradeSafe transaction for the intent and store its checkout link."""

    gig = get_gig_or_404(db, intent.gig_id)
    fee_settings = get_active_fee_settings(db, fee_cache)
    transaction = client.create_transaction(
        title=gig.title,
        description=gig.description or gig.title,
        value=intent.amount,
        reference=intent.reference,
        buyer_token=buyer_token,
        seller_token=seller_token,
        agent_fee_percent=fee_settings.platform_commission_percent,
    )
    transaction_id = transaction.get("id")
    if not transaction_id:
        raise GatewayError("TradeSafe did not return a transaction id.", code="TRADESAFE_ERROR")
    checkout_url = client.get_checkout_link(transaction_id)
    with atomic(db):
        apply_transition(intent, PAYMENT_INTENT_TRANSITIONS, PaymentIntentStatus.PROCESSING, entity="payment_intent")
        intent.provider_txn_id = transaction_id
        intent.checkout_url = checkout_url
    return intent


def process_payment(
    db: Session,
    *,
    reference: str,
    provider_txn_id: str,
    gross_amount: Decimal,
    fees: Decimal = ZERO,
    verified_via: str = "webhook",
    now: datetime | None = None,
) -> Payment:
    """Fund the gig behind ``reference`` once the gateway reports success.

    An expired intent is marked expired and refused even if the money was
    taken; the refund is handled with the gateway out of band.
    """

    now = now or utcnow()
    existing = get_existing_by_key(db, Payment, provider_txn_id, key_field="provider_txn_id")
    if existing:
        logger.info("Payment already processed", extra={"payment_id": existing.id, "reference": reference})
        return existing

    intent = get_intent_by_reference(db, reference)
    if intent.status == PaymentIntentStatus.SUCCEEDED and intent.payment_id is not None:
        return get_payment_or_404(db, intent.payment_id)
    if is_terminal(PAYMENT_INTENT_TRANSITIONS, intent.status):
        raise InvalidState(
            f"Payment intent is {intent.status.value}.",
            code="PAYMENT_INTENT_CLOSED",
            details={"status": intent.status.value},
        )
    if _is_expired(intent, now):
        with atomic(db):
            apply_transition(intent, PAYMENT_INTENT_TRANSITIONS, PaymentIntentStatus.EXPIRED, entity="payment_intent")
            intent.failure_reason = "Payment confirmed after the intent expired"
        logger.warning(
            "Payment confirmed for expired intent",
            extra={"reference": reference, "provider_txn_id": provider_txn_id},
        )
        raise InvalidState("Payment intent has expired.", code="PAYMENT_INTENT_EXPIRED")

    return escrow_service.fund_gig(
        db,
        gig_id=intent.gig_id,
        employer_id=intent.employer_id,
        gross_amount=gross_amount,
        provider=intent.provider,
        provider_txn_id=provider_txn_id,
        intent=intent,
        fees=fees,
        verified_via=verified_via,
        actor=f"psp:{intent.provider.value}",
        now=now,
    )


def verify_paystack_payment(db: Session, reference: str, client: PaystackClient) -> Payment:
    """Poll Paystack for ``reference`` and fund the gig if the charge succeeded."""

    data = client.verify_transaction(reference)
    if data.get("status") != "success":
        raise InvalidState(
            f"Payment is not successful (status: {data.get('status')}).",
            code="PAYMENT_NOT_SUCCESSFUL",
            details={"gateway_status": data.get("status")},
        )
    return process_payment(
        db,
        reference=reference,
        provider_txn_id=str(data["id"]),
        gross_amount=data["amount_decimal"],
        fees=data["fees_decimal"],
        verified_via="verify",
    )


def mark_intent_failed(db: Session, intent: PaymentIntent, *, reason: str) -> PaymentIntent:
    """Close a live intent as failed; closed intents are left alone."""

    if is_terminal(PAYMENT_INTENT_TRANSITIONS, intent.status):
        logger.info(
            "Payment intent already closed",
            extra={"reference": intent.reference, "status": intent.status.value},
        )
        return intent
    with atomic(db):
        apply_transition(intent, PAYMENT_INTENT_TRANSITIONS, PaymentIntentStatus.FAILED, entity="payment_intent")
        intent.failure_reason = reason[:255]
    logger.info("Payment intent failed", extra={"reference": intent.reference, "reason": reason})
    return intent


def expire_payment_intents_once(db: Session, *, now: datetime | None = None) -> int:
    """Expire every live intent past its deadline. Returns the number expired."""

    now = now or utcnow()
    with atomic(db):
        due = list(
            db.scalars(
                select(PaymentIntent)
                .where(
                    PaymentIntent.status.in_(LIVE_INTENT_STATUSES),
                    PaymentIntent.expires_at <= now,
                )
                .with_for_update()
            )
        )
        for intent in due:
            apply_transition(intent, PAYMENT_INTENT_TRANSITIONS, PaymentIntentStatus.EXPIRED, entity="payment_intent")
            intent.failure_reason = "expired"
    if due:
        logger.info("Payment intents expired", extra={"count": len(due)})
    return len(due)


def list_payments_for_gig(db: Session, gig_id: int) -> list[Payment]:
    return list(db.scalars(select(Payment).where(Payment.gig_id == gig_id).order_by(Payment.id)))


__all__ = [
    "create_payment_intent",
    "expire_payment_intents_once",
    "find_intent_for_gateway",
    "get_intent_by_reference",
    "get_payment_or_404",
    "list_payments_for_gig",
    "mark_intent_failed",
    "new_reference",
    "process_payment",
    "start_paystack_checkout",
    "start_tradesafe_checkout",
    "verify_paystack_payment",
]
