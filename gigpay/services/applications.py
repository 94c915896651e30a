"""Gig application lifecycle: apply, accept, negotiate the rate, complete."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gigpay.config import get_settings
from gigpay.db import atomic
from gigpay.models.escrow import EscrowAccount, EscrowStatus
from gigpay.models.gig import (
    HOLDING_STATUSES,
    ApplicationStatus,
    GigApplication,
    GigStatus,
    RateParty,
    RateStatus,
)
from gigpay.models.payment import Payment
from gigpay.schemas.gig import AutoReleaseResult, AutoReleaseSummary
from gigpay.services import escrow as escrow_service
from gigpay.services.fee_config import FeeConfigCache, get_active_fee_settings
from gigpay.services.gigs import get_gig_or_404
from gigpay.services.transitions import (
    APPLICATION_TRANSITIONS,
    GIG_TRANSITIONS,
    RATE_TRANSITIONS,
    apply_transition,
)
from gigpay.utils.audit import log_audit
from gigpay.utils.errors import DomainError, InvalidState, NotFound, OutOfBounds, Unauthorized
from gigpay.utils.money import ZERO, to_decimal
from gigpay.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

MIN_DISPUTE_REASON_LENGTH = 10
# Statuses in which the price can still be negotiated
NEGOTIABLE_STATUSES = (ApplicationStatus.PENDING, ApplicationStatus.ACCEPTED)
ACTIVE_STATUSES = (ApplicationStatus.PENDING, ApplicationStatus.ACCEPTED, ApplicationStatus.FUNDED)


def get_application_or_404(db: Session, application_id: int, *, lock: bool = False) -> GigApplication:
    stmt = select(GigApplication).where(GigApplication.id == application_id)
    if lock:
        stmt = stmt.with_for_update()
    application = db.scalars(stmt).first()
    if application is None:
        raise NotFound("Application not found.", code="APPLICATION_NOT_FOUND")
    return application


def list_applications_for_gig(db: Session, gig_id: int) -> list[GigApplication]:
    get_gig_or_404(db, gig_id)
    stmt = select(GigApplication).where(GigApplication.gig_id == gig_id).order_by(GigApplication.id)
    return list(db.scalars(stmt))


def _validate_rate(amount: Decimal) -> Decimal:
    rate = to_decimal(amount)
    if rate <= ZERO:
        raise OutOfBounds("Rate must be greater than 0", code="RATE_NOT_POSITIVE")
    maximum = get_settings().MAX_RATE_AMOUNT
    if rate > maximum:
        raise OutOfBounds(f"Rate cannot exceed R{maximum:,.0f}", code="RATE_TOO_HIGH")
    return rate


def _count_live_applications(db: Session, gig_id: int) -> int:
    stmt = select(func.count(GigApplication.id)).where(
        GigApplication.gig_id == gig_id,
        GigApplication.status.in_(ACTIVE_STATUSES),
    )
    return db.scalar(stmt) or 0


def create_application(
    db: Session,
    *,
    gig_id: int,
    applicant_id: int,
    proposed_rate: Decimal,
    message: str | None = None,
) -> GigApplication:
    """Apply to an open gig. Filling the last slot moves the gig to ``reviewing``."""

    rate = _validate_rate(proposed_rate)
    with atomic(db):
        gig = get_gig_or_404(db, gig_id, lock=True)
        if gig.status != GigStatus.OPEN:
            raise InvalidState(
                f"Gig is not accepting applications (status: {gig.status.value}).",
                code="GIG_NOT_OPEN",
            )
        if gig.employer_id == applicant_id:
            raise InvalidState("You cannot apply to your own gig.", code="OWN_GIG")

        duplicate = db.scalars(
            select(GigApplication.id).where(
                GigApplication.gig_id == gig_id,
                GigApplication.applicant_id == applicant_id,
                GigApplication.status.in_(ACTIVE_STATUSES),
            )
        ).first()
        if duplicate is not None:
            raise InvalidState("You have already applied to this gig.", code="ALREADY_APPLIED")

        live = _count_live_applications(db, gig_id)
        if gig.max_applicants is not None and live >= gig.max_applicants:
            raise InvalidState("This gig has reached its maximum number of applicants.", code="MAX_APPLICANTS_REACHED")

        application = GigApplication(
            gig_id=gig_id,
            applicant_id=applicant_id,
            message=message,
            proposed_rate=rate,
            status=ApplicationStatus.PENDING,
            rate_status=RateStatus.PROPOSED,
        )
        db.add(application)
        db.flush()

        if gig.max_applicants is not None and live + 1 >= gig.max_applicants:
            apply_transition(gig, GIG_TRANSITIONS, GigStatus.REVIEWING, entity="gig")

        log_audit(
            db,
            actor=f"user:{applicant_id}",
            action="APPLICATION_CREATED",
            entity="GigApplication",
            entity_id=application.id,
            data={"gig_id": gig_id, "proposed_rate": str(rate)},
        )
    logger.info(
        "Application created",
        extra={"application_id": application.id, "gig_id": gig_id, "gig_status": gig.status.value},
    )
    return application


def accept_application(db: Session, application_id: int, *, employer_id: int) -> GigApplication:
    """Accept one application and reject every other pending one, atomically."""

    with atomic(db):
        application = get_application_or_404(db, application_id, lock=True)
        gig = get_gig_or_404(db, application.gig_id, lock=True)
        if gig.employer_id != employer_id:
            raise Unauthorized("Only the gig employer can accept applications.", code="NOT_GIG_OWNER")
        _accept_in_transaction(db, application, gig)
    logger.info(
        "Application accepted",
        extra={"application_id": application.id, "gig_id": gig.id, "worker_id": application.applicant_id},
    )
    return application


def _accept_in_transaction(db: Session, application: GigApplication, gig) -> None:
    holder = db.scalars(
        select(GigApplication.id).where(
            GigApplication.gig_id == gig.id,
            GigApplication.id != application.id,
            GigApplication.status.in_(HOLDING_STATUSES),
        )
    ).first()
    if holder is not None:
        raise InvalidState(
            "Another application has already been accepted for this gig.",
            code="APPLICATION_ALREADY_ACCEPTED",
            details={"accepted_application_id": holder},
        )

    apply_transition(application, APPLICATION_TRANSITIONS, ApplicationStatus.ACCEPTED, entity="application")

    others = db.scalars(
        select(GigApplication)
        .where(
            GigApplication.gig_id == gig.id,
            GigApplication.id != application.id,
            GigApplication.status == ApplicationStatus.PENDING,
        )
        .with_for_update()
    )
    rejected_ids = []
    for other in others:
        apply_transition(other, APPLICATION_TRANSITIONS, ApplicationStatus.REJECTED, entity="application")
        rejected_ids.append(other.id)

    apply_transition(gig, GIG_TRANSITIONS, GigStatus.IN_PROGRESS, entity="gig")
    gig.assigned_worker_id = application.applicant_id

    log_audit(
        db,
        actor=f"user:{gig.employer_id}",
        action="APPLICATION_ACCEPTED",
        entity="GigApplication",
        entity_id=application.id,
        data={"gig_id": gig.id, "rejected_application_ids": rejected_ids},
    )


def accept_application_with_rate(db: Session, application_id: int, *, employer_id: int) -> GigApplication:
    """Confirm the outstanding rate as the employer, then accept, in one transaction."""

    with atomic(db):
        application = get_application_or_404(db, application_id, lock=True)
        gig = get_gig_or_404(db, application.gig_id, lock=True)
        if gig.employer_id != employer_id:
            raise Unauthorized("Only the gig employer can accept applications.", code="NOT_GIG_OWNER")
        if application.rate_status != RateStatus.AGREED:
            _confirm_rate_in_transaction(db, application, RateParty.EMPLOYER)
        _accept_in_transaction(db, application, gig)
    logger.info(
        "Application accepted with rate",
        extra={"application_id": application.id, "agreed_rate": str(application.agreed_rate)},
    )
    return application


def reject_application(db: Session, application_id: int, *, employer_id: int) -> GigApplication:
    with atomic(db):
        application = get_application_or_404(db, application_id, lock=True)
        gig = get_gig_or_404(db, application.gig_id, lock=True)
        if gig.employer_id != employer_id:
            raise Unauthorized("Only the gig employer can reject applications.", code="NOT_GIG_OWNER")
        was_accepted = application.status == ApplicationStatus.ACCEPTED
        apply_transition(application, APPLICATION_TRANSITIONS, ApplicationStatus.REJECTED, entity="application")
        if was_accepted and gig.status == GigStatus.IN_PROGRESS:
            # the gig goes back on the market
            apply_transition(gig, GIG_TRANSITIONS, GigStatus.OPEN, entity="gig")
            gig.assigned_worker_id = None
        log_audit(
            db,
            actor=f"user:{employer_id}",
            action="APPLICATION_REJECTED",
            entity="GigApplication",
            entity_id=application.id,
            data={"gig_id": gig.id},
        )
    logger.info("Application rejected", extra={"application_id": application.id})
    return application


def withdraw_application(db: Session, application_id: int, *, applicant_id: int) -> GigApplication:
    """Withdraw a pending application; anything past pending is refused."""

    with atomic(db):
        application = get_application_or_404(db, application_id, lock=True)
        if application.applicant_id != applicant_id:
            raise Unauthorized("Only the applicant can withdraw this application.", code="NOT_APPLICANT")
        if application.status != ApplicationStatus.PENDING:
            raise InvalidState(
                f"Only pending applications can be withdrawn (status: {application.status.value}).",
                code="APPLICATION_NOT_PENDING",
            )
        apply_transition(application, APPLICATION_TRANSITIONS, ApplicationStatus.WITHDRAWN, entity="application")

        gig = get_gig_or_404(db, application.gig_id, lock=True)
        if gig.status == GigStatus.REVIEWING and gig.max_applicants is not None:
            db.flush()
            if _count_live_applications(db, gig.id) < gig.max_applicants:
                apply_transition(gig, GIG_TRANSITIONS, GigStatus.OPEN, entity="gig")
        log_audit(
            db,
            actor=f"user:{applicant_id}",
            action="APPLICATION_WITHDRAWN",
            entity="GigApplication",
            entity_id=application.id,
            data={"gig_id": application.gig_id},
        )
    logger.info("Application withdrawn", extra={"application_id": application.id})
    return application


# --- Rate negotiation -------------------------------------------------------


def _ensure_party(application: GigApplication, gig, by: RateParty, actor_id: int, verb: str) -> None:
    if by == RateParty.WORKER and application.applicant_id != actor_id:
        raise Unauthorized(f"Unauthorized: Only the applicant can {verb} as worker", code="NOT_APPLICANT")
    if by == RateParty.EMPLOYER and gig.employer_id != actor_id:
        raise Unauthorized(f"Unauthorized: Only the employer can {verb} as employer", code="NOT_GIG_OWNER")


def _ensure_negotiable(application: GigApplication) -> None:
    if application.status not in NEGOTIABLE_STATUSES:
        raise InvalidState(
            f"Cannot update rate on application with status: {application.status.value}",
            code="RATE_NOT_NEGOTIABLE",
        )
    if application.rate_status == RateStatus.AGREED:
        raise InvalidState("Rate is already agreed", code="RATE_ALREADY_AGREED")


def update_application_rate(
    db: Session,
    application_id: int,
    *,
    amount: Decimal,
    by: RateParty,
    actor_id: int,
    note: str | None = None,
) -> GigApplication:
    """Propose or counter a rate. Overwrites the last proposal."""

    with atomic(db):
        application = get_application_or_404(db, application_id, lock=True)
        gig = get_gig_or_404(db, application.gig_id)
        _ensure_party(application, gig, by, actor_id, "update rate")
        rate = _validate_rate(amount)
        _ensure_negotiable(application)

        apply_transition(application, RATE_TRANSITIONS, RateStatus.COUNTERED, entity="rate", field="rate_status")
        application.last_rate_update_by = by
        application.last_rate_update_amount = rate
        application.last_rate_update_note = note.strip() if note and note.strip() else None
        application.last_rate_update_at = utcnow()
        log_audit(
            db,
            actor=f"user:{actor_id}",
            action="APPLICATION_RATE_UPDATED",
            entity="GigApplication",
            entity_id=application.id,
            data={"amount": str(rate), "by": by.value},
        )
    logger.info(
        "Application rate updated",
        extra={"application_id": application.id, "by": by.value, "amount": str(rate)},
    )
    return application


def _confirm_rate_in_transaction(db: Session, application: GigApplication, by: RateParty) -> None:
    _ensure_negotiable(application)
    # with no counter-offer on record the standing proposal is the worker's own
    proposer = application.last_rate_update_by or RateParty.WORKER
    if proposer == by:
        raise InvalidState("You cannot confirm your own rate proposal", code="OWN_RATE_PROPOSAL")

    amount = application.last_rate_update_amount
    if amount is None:
        amount = application.proposed_rate
    apply_transition(application, RATE_TRANSITIONS, RateStatus.AGREED, entity="rate", field="rate_status")
    application.agreed_rate = to_decimal(amount)


def confirm_application_rate(db: Session, application_id: int, *, by: RateParty, actor_id: int) -> GigApplication:
    """Accept the other party's latest proposal; the agreed rate becomes binding."""

    with atomic(db):
        application = get_application_or_404(db, application_id, lock=True)
        gig = get_gig_or_404(db, application.gig_id)
        _ensure_party(application, gig, by, actor_id, "confirm")
        _confirm_rate_in_transaction(db, application, by)
        log_audit(
            db,
            actor=f"user:{actor_id}",
            action="APPLICATION_RATE_AGREED",
            entity="GigApplication",
            entity_id=application.id,
            data={"agreed_rate": str(application.agreed_rate), "by": by.value},
        )
    logger.info(
        "Application rate agreed",
        extra={"application_id": application.id, "agreed_rate": str(application.agreed_rate)},
    )
    return application


# --- Completion ---------------------------------------------------------------


def request_completion(
    db: Session,
    application_id: int,
    *,
    worker_id: int,
    fee_cache: FeeConfigCache | None = None,
    now: datetime | None = None,
) -> GigApplication:
    """Worker marks the job done; starts the auto-release clock."""

    auto_release_days = get_active_fee_settings(db, fee_cache).escrow_auto_release_days
    now = now or utcnow()
    with atomic(db):
        application = get_application_or_404(db, application_id, lock=True)
        if application.applicant_id != worker_id:
            raise Unauthorized("Only the assigned worker can request completion", code="NOT_ASSIGNED_WORKER")
        if application.status != ApplicationStatus.FUNDED:
            raise InvalidState("Only funded applications can request completion", code="APPLICATION_NOT_FUNDED")
        if application.completion_requested_at is not None:
            raise InvalidState(
                "Completion has already been requested for this application",
                code="COMPLETION_ALREADY_REQUESTED",
            )
        application.completion_requested_at = now
        application.completion_requested_by = worker_id
        application.completion_auto_release_at = now + timedelta(days=auto_release_days)
        log_audit(
            db,
            actor=f"user:{worker_id}",
            action="COMPLETION_REQUESTED",
            entity="GigApplication",
            entity_id=application.id,
            data={"auto_release_at": application.completion_auto_release_at.isoformat()},
        )
    logger.info(
        "Completion requested",
        extra={"application_id": application.id, "auto_release_days": auto_release_days},
    )
    return application


def _load_for_employer_review(db: Session, application_id: int, employer_id: int, verb: str) -> GigApplication:
    application = get_application_or_404(db, application_id, lock=True)
    gig = get_gig_or_404(db, application.gig_id)
    if gig.employer_id != employer_id:
        raise Unauthorized(f"Only the gig employer can {verb} completion", code="NOT_GIG_OWNER")
    if application.completion_requested_at is None:
        raise InvalidState("No completion request found for this application", code="NO_COMPLETION_REQUEST")
    if application.status != ApplicationStatus.FUNDED:
        raise InvalidState(
            f"Cannot {verb} completion: application status is {application.status.value}",
            code="APPLICATION_NOT_FUNDED",
        )
    return application


def approve_completion(db: Session, application_id: int, *, employer_id: int) -> EscrowAccount:
    """Employer approves the work; releases the full escrow to the worker."""

    with atomic(db):
        application = _load_for_employer_review(db, application_id, employer_id, "approve")
        escrow = escrow_service.release_in_transaction(
            db,
            gig_id=application.gig_id,
            actor=f"user:{employer_id}",
            trigger="employer_approval",
        )
    logger.info("Completion approved", extra={"application_id": application_id, "escrow_id": escrow.id})
    return escrow


def dispute_completion(db: Session, application_id: int, *, employer_id: int, reason: str) -> GigApplication:
    """Employer contests the completion; blocks auto-release until resolved."""

    cleaned = (reason or "").strip()
    if len(cleaned) < MIN_DISPUTE_REASON_LENGTH:
        raise OutOfBounds(
            f"Dispute reason must be at least {MIN_DISPUTE_REASON_LENGTH} characters",
            code="DISPUTE_REASON_TOO_SHORT",
        )
    with atomic(db):
        application = _load_for_employer_review(db, application_id, employer_id, "dispute")
        if application.completion_disputed_at is not None:
            raise InvalidState("Completion has already been disputed", code="COMPLETION_ALREADY_DISPUTED")
        application.completion_disputed_at = utcnow()
        application.completion_dispute_reason = cleaned

        payment = db.scalars(
            select(Payment).where(Payment.application_id == application.id).order_by(Payment.id.desc())
        ).first()
        if payment is not None:
            escrow_service.raise_dispute_in_transaction(
                db,
                payment_id=payment.id,
                raised_by=employer_id,
                reason="completion_disputed",
                description=cleaned,
            )
    logger.info("Completion disputed", extra={"application_id": application.id})
    return application


# --- Auto-release -------------------------------------------------------------


def check_and_process_auto_release(db: Session, application_id: int, *, now: datetime | None = None) -> bool:
    """Release the escrow if the auto-release deadline has passed.

    Returns ``False`` without side effects when the application is not
    eligible (missing, not funded, no request, disputed, not yet due).
    Safe to call repeatedly.
    """

    now = now or utcnow()
    application = db.get(GigApplication, application_id)
    if application is None:
        return False
    if not _is_due(application, now):
        return False

    with atomic(db):
        application = get_application_or_404(db, application_id, lock=True)
        if not _is_due(application, now):
            return False
        escrow = db.scalars(select(EscrowAccount).where(EscrowAccount.gig_id == application.gig_id)).first()
        if escrow is None or escrow.status != EscrowStatus.ACTIVE:
            return False
        escrow_service.release_in_transaction(
            db,
            gig_id=application.gig_id,
            actor="system:auto-release",
            trigger="auto_release",
        )
    logger.info("Escrow auto-released", extra={"application_id": application_id, "gig_id": application.gig_id})
    return True


def _is_due(application: GigApplication, now: datetime) -> bool:
    return (
        application.status == ApplicationStatus.FUNDED
        and application.completion_requested_at is not None
        and application.completion_disputed_at is None
        and application.completion_auto_release_at is not None
        and as_utc(application.completion_auto_release_at) <= now
    )


def applications_eligible_for_auto_release(db: Session, *, now: datetime | None = None) -> list[GigApplication]:
    now = now or utcnow()
    stmt = (
        select(GigApplication)
        .where(
            GigApplication.status == ApplicationStatus.FUNDED,
            GigApplication.completion_requested_at.is_not(None),
            GigApplication.completion_disputed_at.is_(None),
            GigApplication.completion_auto_release_at.is_not(None),
            GigApplication.completion_auto_release_at <= now,
        )
        .order_by(GigApplication.completion_auto_release_at, GigApplication.id)
    )
    return list(db.scalars(stmt))


def process_all_auto_releases(db: Session, *, now: datetime | None = None) -> AutoReleaseSummary:
    """Release every due escrow, continuing past individual failures."""

    now = now or utcnow()
    results: list[AutoReleaseResult] = []
    for application in applications_eligible_for_auto_release(db, now=now):
        try:
            released = check_and_process_auto_release(db, application.id, now=now)
        except (DomainError, SQLAlchemyError) as exc:
            logger.error(
                "Auto-release failed",
                extra={"application_id": application.id, "error": str(exc)},
            )
            results.append(AutoReleaseResult(application_id=application.id, success=False, error=str(exc)))
            continue
        if released:
            results.append(AutoReleaseResult(application_id=application.id, success=True))
        else:
            results.append(
                AutoReleaseResult(application_id=application.id, success=False, error="Not eligible for auto-release")
            )

    succeeded = sum(1 for r in results if r.success)
    summary = AutoReleaseSummary(
        processed=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=results,
    )
    logger.info(
        "Auto-release run finished",
        extra={"processed": summary.processed, "succeeded": summary.succeeded, "failed": summary.failed},
    )
    return summary


__all__ = [
    "accept_application",
    "accept_application_with_rate",
    "applications_eligible_for_auto_release",
    "approve_completion",
    "check_and_process_auto_release",
    "confirm_application_rate",
    "create_application",
    "dispute_completion",
    "get_application_or_404",
    "list_applications_for_gig",
    "process_all_auto_releases",
    "reject_application",
    "request_completion",
    "update_application_rate",
    "withdraw_application",
]
