"""Gig services."""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from gigpay.db import atomic
from gigpay.models.gig import ApplicationStatus, Gig, GigApplication, GigStatus
from gigpay.models.user import User
from gigpay.schemas.gig import GigCreate
from gigpay.services.fee_config import (
    FeeConfigCache,
    ensure_gig_amount_within_bounds,
    get_active_fee_settings,
)
from gigpay.services.transitions import APPLICATION_TRANSITIONS, GIG_TRANSITIONS, apply_transition
from gigpay.utils.audit import log_audit
from gigpay.utils.errors import InvalidState, NotFound, Unauthorized
from gigpay.utils.money import to_decimal

logger = logging.getLogger(__name__)


def get_gig_or_404(db: Session, gig_id: int, *, lock: bool = False) -> Gig:
    stmt = select(Gig).where(Gig.id == gig_id)
    if lock:
        stmt = stmt.with_for_update()
    gig = db.scalars(stmt).first()
    if gig is None:
        raise NotFound("Gig not found.", code="GIG_NOT_FOUND")
    return gig


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found.", code="USER_NOT_FOUND")
    return user


def create_gig(
    db: Session,
    payload: GigCreate,
    *,
    actor: str | None = None,
    fee_cache: FeeConfigCache | None = None,
) -> Gig:
    """Post a gig; the budget must sit inside the configured gig amount range."""

    get_user_or_404(db, payload.employer_id)
    budget = to_decimal(payload.budget)
    ensure_gig_amount_within_bounds(budget, get_active_fee_settings(db, fee_cache))

    with atomic(db):
        gig = Gig(
            employer_id=payload.employer_id,
            title=payload.title,
            description=payload.description,
            budget=budget,
            max_applicants=payload.max_applicants,
            status=GigStatus.OPEN,
        )
        db.add(gig)
        db.flush()
        log_audit(
            db,
            actor=actor or f"user:{payload.employer_id}",
            action="GIG_CREATED",
            entity="Gig",
            entity_id=gig.id,
            data={"budget": str(budget), "max_applicants": payload.max_applicants},
        )
    logger.info("Gig created", extra={"gig_id": gig.id, "employer_id": gig.employer_id})
    return gig


def cancel_gig(db: Session, gig_id: int, *, employer_id: int, actor: str | None = None) -> Gig:
    """Cancel a gig that has not been funded yet."""

    with atomic(db):
        gig = get_gig_or_404(db, gig_id, lock=True)
        if gig.employer_id != employer_id:
            raise Unauthorized("Only the gig owner can cancel it.", code="NOT_GIG_OWNER")
        if gig.status == GigStatus.FUNDED:
            raise InvalidState(
                "A funded gig cannot be cancelled; raise a dispute instead.", code="GIG_ALREADY_FUNDED"
            )
        apply_transition(gig, GIG_TRANSITIONS, GigStatus.CANCELLED, entity="gig")
        open_applications = db.scalars(
            select(GigApplication).where(
                GigApplication.gig_id == gig.id,
                GigApplication.status.in_((ApplicationStatus.PENDING, ApplicationStatus.ACCEPTED)),
            )
        )
        for application in open_applications:
            apply_transition(application, APPLICATION_TRANSITIONS, ApplicationStatus.REJECTED, entity="application")
        gig.assigned_worker_id = None
        log_audit(
            db,
            actor=actor or f"user:{employer_id}",
            action="GIG_CANCELLED",
            entity="Gig",
            entity_id=gig.id,
            data={},
        )
    logger.info("Gig cancelled", extra={"gig_id": gig.id})
    return gig


def list_open_gigs(db: Session, *, limit: int = 50) -> list[Gig]:
    stmt = select(Gig).where(Gig.status == GigStatus.OPEN).order_by(Gig.created_at.desc()).limit(limit)
    return list(db.scalars(stmt))
