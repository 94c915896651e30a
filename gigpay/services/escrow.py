"""Escrow orchestration: funding a gig, releasing funds and disputes.

Funding and release each run as one database transaction touching the gig,
the application, the escrow account, the payment, the worker's wallet and the
history log; a failure anywhere rolls all of them back.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gigpay.db import atomic
from gigpay.models.escrow import EscrowAccount, EscrowStatus
from gigpay.models.gig import (
    ApplicationPaymentStatus,
    ApplicationStatus,
    Gig,
    GigApplication,
    GigStatus,
)
from gigpay.models.history import HistoryStatus, HistoryType
from gigpay.models.payment import (
    DisputeStatus,
    Payment,
    PaymentDispute,
    PaymentEscrowStatus,
    PaymentIntent,
    PaymentIntentStatus,
    PaymentProvider,
    PaymentStatus,
)
from gigpay.models.user import User
from gigpay.services import history as history_service
from gigpay.services import wallet as wallet_service
from gigpay.services.gigs import get_gig_or_404
from gigpay.services.idempotency import get_existing_by_key
from gigpay.services.transitions import (
    APPLICATION_TRANSITIONS,
    ESCROW_TRANSITIONS,
    GIG_TRANSITIONS,
    PAYMENT_INTENT_TRANSITIONS,
    apply_transition,
    is_terminal,
)
from gigpay.utils.audit import log_audit
from gigpay.utils.errors import ConsistencyError, InvalidState, NotFound, OutOfBounds, Unauthorized
from gigpay.utils.money import ZERO, to_decimal
from gigpay.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


def _audit(db: Session, *, actor: str, action: str, escrow: EscrowAccount, data: dict[str, Any]) -> None:
    log_audit(db, actor=actor, action=action, entity="EscrowAccount", entity_id=escrow.id, data=data)


def find_accepted_application(db: Session, gig_id: int, *, lock: bool = False) -> GigApplication:
    """Return the single accepted application of a gig."""

    stmt = select(GigApplication).where(
        GigApplication.gig_id == gig_id,
        GigApplication.status == ApplicationStatus.ACCEPTED,
    )
    if lock:
        stmt = stmt.with_for_update()
    accepted = list(db.scalars(stmt))
    if not accepted:
        raise InvalidState("No accepted application for this gig.", code="NO_ACCEPTED_APPLICATION")
    if len(accepted) > 1:
        logger.error("Gig has several accepted applications", extra={"gig_id": gig_id})
        raise ConsistencyError("Gig has more than one accepted application.", code="MULTIPLE_ACCEPTED_APPLICATIONS")
    return accepted[0]


def get_escrow_for_gig(db: Session, gig_id: int) -> EscrowAccount:
    escrow = db.scalars(select(EscrowAccount).where(EscrowAccount.gig_id == gig_id)).first()
    if escrow is None:
        raise NotFound("Escrow not found.", code="ESCROW_NOT_FOUND")
    return escrow


def _lock_escrow(db: Session, *, payment_id: int | None, gig_id: int | None) -> EscrowAccount:
    if payment_id is None and gig_id is None:
        raise OutOfBounds("payment_id or gig_id is required.", code="ESCROW_LOOKUP_REQUIRED")
    stmt = select(EscrowAccount).with_for_update().execution_options(populate_existing=True)
    if payment_id is not None:
        stmt = stmt.where(EscrowAccount.payment_id == payment_id)
    else:
        stmt = stmt.where(EscrowAccount.gig_id == gig_id)
    escrow = db.scalars(stmt).first()
    if escrow is None:
        raise NotFound("Escrow not found.", code="ESCROW_NOT_FOUND")
    return escrow


def _lock_live_intent(db: Session, intent_id: int, now: datetime) -> PaymentIntent:
    """Re-read the intent under lock; it may have closed or expired since the caller looked."""

    stmt = (
        select(PaymentIntent)
        .where(PaymentIntent.id == intent_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    intent = db.scalars(stmt).one()
    if is_terminal(PAYMENT_INTENT_TRANSITIONS, intent.status):
        raise InvalidState(
            f"Payment intent is {intent.status.value}.",
            code="PAYMENT_INTENT_CLOSED",
            details={"status": intent.status.value},
        )
    if as_utc(intent.expires_at) <= now:
        raise InvalidState("Payment intent has expired.", code="PAYMENT_INTENT_EXPIRED")
    return intent


def fund_gig(
    db: Session,
    *,
    gig_id: int,
    employer_id: int,
    gross_amount: Decimal,
    provider: PaymentProvider,
    provider_txn_id: str,
    intent: PaymentIntent | None = None,
    fees: Decimal = ZERO,
    verified_via: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> Payment:
    """Fund the gig's escrow from a confirmed gateway payment.

    Idempotent on ``provider_txn_id``: a repeated webhook or verify call for
    the same gateway transaction returns the existing payment untouched.
    """

    if not provider_txn_id:
        raise OutOfBounds("provider_txn_id is required.", code="PROVIDER_TXN_ID_REQUIRED")

    existing = get_existing_by_key(db, Payment, provider_txn_id, key_field="provider_txn_id")
    if existing:
        logger.info(
            "Idempotent gig funding reused",
            extra={"gig_id": gig_id, "payment_id": existing.id},
        )
        return existing

    try:
        with atomic(db):
            payment = _fund_in_transaction(
                db,
                gig_id=gig_id,
                employer_id=employer_id,
                gross_amount=to_decimal(gross_amount),
                provider=provider,
                provider_txn_id=provider_txn_id,
                intent=intent,
                fees=to_decimal(fees),
                verified_via=verified_via,
                actor=actor or "system",
                now=now or utcnow(),
            )
    except IntegrityError:
        existing = get_existing_by_key(db, Payment, provider_txn_id, key_field="provider_txn_id")
        if existing:
            logger.info(
                "Idempotent gig funding reused after race",
                extra={"gig_id": gig_id, "payment_id": existing.id},
            )
            return existing
        raise

    logger.info(
        "Gig funded",
        extra={"gig_id": gig_id, "payment_id": payment.id, "amount": str(payment.amount)},
    )
    return payment


def _fund_in_transaction(
    db: Session,
    *,
    gig_id: int,
    employer_id: int,
    gross_amount: Decimal,
    provider: PaymentProvider,
    provider_txn_id: str,
    intent: PaymentIntent | None,
    fees: Decimal,
    verified_via: str | None,
    actor: str,
    now: datetime,
) -> Payment:
    if intent is not None:
        intent = _lock_live_intent(db, intent.id, now)
    gig = get_gig_or_404(db, gig_id, lock=True)
    if gig.employer_id != employer_id:
        raise Unauthorized("Only the gig employer can fund this gig.", code="NOT_GIG_OWNER")
    application = find_accepted_application(db, gig_id, lock=True)

    # negotiated rate wins over the listed budget
    paid_amount = to_decimal(application.payable_rate)
    if gross_amount < paid_amount:
        raise InvalidState(
            "Gateway amount is lower than the amount due.",
            code="FUNDING_AMOUNT_MISMATCH",
            details={"gross_amount": str(gross_amount), "amount_due": str(paid_amount)},
        )

    apply_transition(gig, GIG_TRANSITIONS, GigStatus.FUNDED, entity="gig")
    gig.paid_amount = paid_amount
    gig.funded_at = now
    apply_transition(application, APPLICATION_TRANSITIONS, ApplicationStatus.FUNDED, entity="application")
    application.payment_status = ApplicationPaymentStatus.IN_ESCROW

    payment = Payment(
        gig_id=gig.id,
        application_id=application.id,
        employer_id=gig.employer_id,
        worker_id=application.applicant_id,
        amount=paid_amount,
        gross_amount=gross_amount,
        fees=fees,
        provider=provider,
        provider_txn_id=provider_txn_id,
        status=PaymentStatus.PROCESSING,
        escrow_status=PaymentEscrowStatus.FUNDED,
        verified_via=verified_via,
    )
    db.add(payment)
    db.flush()

    escrow = EscrowAccount(
        gig_id=gig.id,
        payment_id=payment.id,
        employer_id=gig.employer_id,
        worker_id=application.applicant_id,
        total_amount=paid_amount,
        released_amount=ZERO,
        status=EscrowStatus.ACTIVE,
    )
    db.add(escrow)
    db.flush()

    wallet_service.reserve_pending(db, application.applicant_id, paid_amount)

    history_service.add_entry(
        db,
        user_id=gig.employer_id,
        type=HistoryType.PAYMENTS,
        amount=paid_amount,
        status=HistoryStatus.PENDING,
        description=f"Payment for gig: {gig.title}",
        gig_id=gig.id,
        payment_id=payment.id,
    )
    history_service.add_entry(
        db,
        user_id=application.applicant_id,
        type=HistoryType.EARNINGS,
        amount=paid_amount,
        status=HistoryStatus.PENDING,
        description=f"Escrow funded for gig: {gig.title}",
        gig_id=gig.id,
        payment_id=payment.id,
    )

    if intent is not None:
        apply_transition(intent, PAYMENT_INTENT_TRANSITIONS, PaymentIntentStatus.SUCCEEDED, entity="payment_intent")
        intent.payment_id = payment.id
        intent.provider_txn_id = provider_txn_id
        intent.completed_at = now

    _audit(
        db,
        actor=actor,
        action="ESCROW_FUNDED",
        escrow=escrow,
        data={
            "gig_id": gig.id,
            "payment_id": payment.id,
            "amount": str(paid_amount),
            "gross_amount": str(gross_amount),
            "provider": provider.value,
            "provider_txn_id": provider_txn_id,
        },
    )
    return payment


def release_escrow(
    db: Session,
    *,
    payment_id: int | None = None,
    gig_id: int | None = None,
    amount: Decimal | None = None,
    actor: str | None = None,
    trigger: str = "manual",
) -> EscrowAccount:
    """Release escrowed funds to the worker's withdrawable balance."""

    with atomic(db):
        escrow = release_in_transaction(
            db, payment_id=payment_id, gig_id=gig_id, amount=amount, actor=actor, trigger=trigger
        )
    logger.info(
        "Escrow released",
        extra={
            "escrow_id": escrow.id,
            "gig_id": escrow.gig_id,
            "released_amount": str(escrow.released_amount),
            "status": escrow.status.value,
            "trigger": trigger,
        },
    )
    return escrow


def release_in_transaction(
    db: Session,
    *,
    payment_id: int | None = None,
    gig_id: int | None = None,
    amount: Decimal | None = None,
    actor: str | None = None,
    trigger: str = "manual",
) -> EscrowAccount:
    """Release inside the caller's transaction. Does not commit."""

    escrow = _lock_escrow(db, payment_id=payment_id, gig_id=gig_id)
    if escrow.status != EscrowStatus.ACTIVE:
        raise InvalidState(
            f"Escrow is {escrow.status.value}; only active escrow can be released.",
            code="ESCROW_NOT_ACTIVE",
            details={"status": escrow.status.value},
        )

    remaining = to_decimal(escrow.total_amount) - to_decimal(escrow.released_amount)
    release_amount = remaining if amount is None else to_decimal(amount)
    if release_amount <= ZERO:
        raise OutOfBounds("Release amount must be greater than 0.", code="RELEASE_AMOUNT_INVALID")
    if release_amount > remaining:
        raise InvalidState(
            "Release amount exceeds the remaining escrow balance.",
            code="RELEASE_EXCEEDS_ESCROW",
            details={"requested": str(release_amount), "remaining": str(remaining)},
        )

    now = utcnow()
    wallet_service.release_pending_to_wallet(db, escrow.worker_id, release_amount)
    escrow.released_amount = to_decimal(escrow.released_amount) + release_amount

    gig = db.get(Gig, escrow.gig_id)
    history_service.add_entry(
        db,
        user_id=escrow.worker_id,
        type=HistoryType.EARNINGS,
        amount=release_amount,
        status=HistoryStatus.COMPLETED,
        description=f"Escrow released for gig: {gig.title if gig else escrow.gig_id}",
        gig_id=escrow.gig_id,
        payment_id=escrow.payment_id,
    )

    if escrow.released_amount == escrow.total_amount:
        _complete(db, escrow, gig=gig, now=now)

    _audit(
        db,
        actor=actor or "system",
        action="ESCROW_RELEASED",
        escrow=escrow,
        data={
            "amount": str(release_amount),
            "released_amount": str(escrow.released_amount),
            "status": escrow.status.value,
            "trigger": trigger,
        },
    )
    return escrow


def _complete(db: Session, escrow: EscrowAccount, *, gig: Gig | None, now) -> None:
    apply_transition(escrow, ESCROW_TRANSITIONS, EscrowStatus.RELEASED, entity="escrow")
    escrow.released_at = now

    payment = db.get(Payment, escrow.payment_id)
    if payment is not None:
        payment.status = PaymentStatus.COMPLETED
        payment.escrow_status = PaymentEscrowStatus.RELEASED
        payment.completed_at = now
        payment.released_at = now
        history_service.add_entry(
            db,
            user_id=payment.employer_id,
            type=HistoryType.PAYMENTS,
            amount=payment.amount,
            status=HistoryStatus.COMPLETED,
            description=f"Payment released for gig: {gig.title if gig else escrow.gig_id}",
            gig_id=escrow.gig_id,
            payment_id=payment.id,
        )

    if gig is not None:
        apply_transition(gig, GIG_TRANSITIONS, GigStatus.COMPLETED, entity="gig")
        gig.completed_at = now

    application = db.scalars(
        select(GigApplication).where(
            GigApplication.gig_id == escrow.gig_id,
            GigApplication.status == ApplicationStatus.FUNDED,
        )
    ).first()
    if application is not None:
        apply_transition(application, APPLICATION_TRANSITIONS, ApplicationStatus.COMPLETED, entity="application")
        application.payment_status = ApplicationPaymentStatus.PAID
        application.completed_at = now

    db.execute(
        update(User)
        .where(User.id == escrow.worker_id)
        .values(completed_gigs=User.completed_gigs + 1)
        .execution_options(synchronize_session=False)
    )


def raise_dispute(
    db: Session,
    *,
    payment_id: int,
    raised_by: int,
    reason: str,
    description: str | None = None,
    actor: str | None = None,
) -> PaymentDispute:
    """Open a dispute on a funded payment. Freezes the escrow, moves no money."""

    with atomic(db):
        dispute = raise_dispute_in_transaction(
            db,
            payment_id=payment_id,
            raised_by=raised_by,
            reason=reason,
            description=description,
            actor=actor,
        )
    logger.info("Payment dispute raised", extra={"payment_id": payment_id, "dispute_id": dispute.id})
    return dispute


def raise_dispute_in_transaction(
    db: Session,
    *,
    payment_id: int,
    raised_by: int,
    reason: str,
    description: str | None = None,
    actor: str | None = None,
) -> PaymentDispute:
    payment = db.scalars(select(Payment).where(Payment.id == payment_id).with_for_update()).first()
    if payment is None:
        raise NotFound("Payment not found.", code="PAYMENT_NOT_FOUND")
    if raised_by == payment.employer_id:
        raised_against = payment.worker_id
    elif raised_by == payment.worker_id:
        raised_against = payment.employer_id
    else:
        raise Unauthorized("Only the employer or the worker can dispute this payment.", code="NOT_PAYMENT_PARTY")
    if payment.dispute_status in (DisputeStatus.RAISED, DisputeStatus.INVESTIGATING):
        raise InvalidState("A dispute is already open for this payment.", code="DISPUTE_ALREADY_OPEN")

    escrow = _lock_escrow(db, payment_id=payment.id, gig_id=None)
    apply_transition(escrow, ESCROW_TRANSITIONS, EscrowStatus.DISPUTED, entity="escrow")

    dispute = PaymentDispute(
        payment_id=payment.id,
        gig_id=payment.gig_id,
        raised_by=raised_by,
        raised_against=raised_against,
        reason=reason,
        description=description,
        status=DisputeStatus.RAISED,
    )
    db.add(dispute)
    db.flush()
    payment.dispute_status = DisputeStatus.RAISED
    _audit(
        db,
        actor=actor or f"user:{raised_by}",
        action="ESCROW_DISPUTED",
        escrow=escrow,
        data={"payment_id": payment.id, "dispute_id": dispute.id, "reason": reason},
    )
    return dispute


def resolve_dispute(db: Session, dispute_id: int, *, resolution: str, actor: str) -> PaymentDispute:
    """Close a dispute and put the escrow back to active so it can be released."""

    with atomic(db):
        dispute = db.scalars(
            select(PaymentDispute).where(PaymentDispute.id == dispute_id).with_for_update()
        ).first()
        if dispute is None:
            raise NotFound("Dispute not found.", code="DISPUTE_NOT_FOUND")
        if dispute.status == DisputeStatus.RESOLVED:
            raise InvalidState("Dispute is already resolved.", code="DISPUTE_ALREADY_RESOLVED")

        now = utcnow()
        dispute.status = DisputeStatus.RESOLVED
        dispute.resolution = resolution
        dispute.resolved_at = now

        payment = db.get(Payment, dispute.payment_id)
        payment.dispute_status = DisputeStatus.RESOLVED
        escrow = _lock_escrow(db, payment_id=payment.id, gig_id=None)
        if escrow.status == EscrowStatus.DISPUTED:
            apply_transition(escrow, ESCROW_TRANSITIONS, EscrowStatus.ACTIVE, entity="escrow")

        application = db.get(GigApplication, payment.application_id)
        if application is not None:
            application.completion_disputed_at = None

        _audit(
            db,
            actor=actor,
            action="ESCROW_DISPUTE_RESOLVED",
            escrow=escrow,
            data={"dispute_id": dispute.id, "resolution": resolution},
        )
    logger.info("Payment dispute resolved", extra={"dispute_id": dispute.id})
    return dispute


__all__ = [
    "find_accepted_application",
    "fund_gig",
    "get_escrow_for_gig",
    "raise_dispute",
    "raise_dispute_in_transaction",
    "release_escrow",
    "release_in_transaction",
    "resolve_dispute",
]
