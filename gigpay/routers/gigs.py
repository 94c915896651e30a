"""Gig endpoints: posting, cancelling, applying and escrow lookup."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.dependencies import get_fee_cache
from gigpay.models.api_key import ApiKey, ApiScope
from gigpay.schemas.gig import ApplicationCreate, ApplicationRead, GigCancel, GigCreate, GigRead
from gigpay.schemas.payment import EscrowRead, PaymentRead
from gigpay.security import ensure_actor, require_scope
from gigpay.services import applications as applications_service
from gigpay.services import escrow as escrow_service
from gigpay.services import gigs as gigs_service
from gigpay.services import payments as payments_service
from gigpay.services.fee_config import FeeConfigCache
from gigpay.utils.audit import actor_from_api_key

router = APIRouter(prefix="/gigs", tags=["gigs"])

ANY_SCOPE = {ApiScope.user, ApiScope.support, ApiScope.admin}


@router.post("", response_model=GigRead, status_code=status.HTTP_201_CREATED)
def create_gig(
    payload: GigCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
    fee_cache: FeeConfigCache = Depends(get_fee_cache),
):
    ensure_actor(api_key, payload.employer_id)
    return gigs_service.create_gig(
        db,
        payload,
        actor=actor_from_api_key(api_key, fallback=f"user:{payload.employer_id}"),
        fee_cache=fee_cache,
    )


@router.get("", response_model=list[GigRead])
def list_open_gigs(
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return gigs_service.list_open_gigs(db, limit=limit)


@router.get("/{gig_id}", response_model=GigRead)
def get_gig(
    gig_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return gigs_service.get_gig_or_404(db, gig_id)


@router.post("/{gig_id}/cancel", response_model=GigRead)
def cancel_gig(
    gig_id: int,
    payload: GigCancel,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return gigs_service.cancel_gig(
        db,
        gig_id,
        employer_id=ensure_actor(api_key, payload.employer_id),
        actor=actor_from_api_key(api_key, fallback=f"user:{payload.employer_id}"),
    )


@router.get("/{gig_id}/applications", response_model=list[ApplicationRead])
def list_applications(
    gig_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return applications_service.list_applications_for_gig(db, gig_id)


@router.post("/{gig_id}/applications", response_model=ApplicationRead, status_code=status.HTTP_201_CREATED)
def apply_to_gig(
    gig_id: int,
    payload: ApplicationCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return applications_service.create_application(
        db,
        gig_id=gig_id,
        applicant_id=ensure_actor(api_key, payload.applicant_id),
        proposed_rate=payload.proposed_rate,
        message=payload.message,
    )


@router.get("/{gig_id}/escrow", response_model=EscrowRead)
def get_escrow(
    gig_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    gigs_service.get_gig_or_404(db, gig_id)
    return escrow_service.get_escrow_for_gig(db, gig_id)


@router.get("/{gig_id}/payments", response_model=list[PaymentRead])
def list_gig_payments(
    gig_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    gigs_service.get_gig_or_404(db, gig_id)
    return payments_service.list_payments_for_gig(db, gig_id)
