"""Application endpoints: hiring decisions, rate negotiation and completion."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.dependencies import get_fee_cache
from gigpay.models.api_key import ApiKey, ApiScope
from gigpay.schemas.gig import (
    ApplicantAction,
    ApplicationRead,
    CompletionDispute,
    CompletionRequest,
    EmployerAction,
    RateConfirm,
    RateUpdate,
)
from gigpay.schemas.payment import EscrowRead
from gigpay.security import ensure_actor, require_scope
from gigpay.services import applications as applications_service
from gigpay.services.fee_config import FeeConfigCache

router = APIRouter(prefix="/applications", tags=["applications"])

ANY_SCOPE = {ApiScope.user, ApiScope.support, ApiScope.admin}


@router.get("/{application_id}", response_model=ApplicationRead)
def get_application(
    application_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return applications_service.get_application_or_404(db, application_id)


@router.post("/{application_id}/accept", response_model=ApplicationRead)
def accept_application(
    application_id: int,
    payload: EmployerAction,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    employer_id = ensure_actor(api_key, payload.employer_id)
    return applications_service.accept_application(db, application_id, employer_id=employer_id)


@router.post("/{application_id}/accept-with-rate", response_model=ApplicationRead)
def accept_application_with_rate(
    application_id: int,
    payload: EmployerAction,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    employer_id = ensure_actor(api_key, payload.employer_id)
    return applications_service.accept_application_with_rate(db, application_id, employer_id=employer_id)


@router.post("/{application_id}/reject", response_model=ApplicationRead)
def reject_application(
    application_id: int,
    payload: EmployerAction,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    employer_id = ensure_actor(api_key, payload.employer_id)
    return applications_service.reject_application(db, application_id, employer_id=employer_id)


@router.post("/{application_id}/withdraw", response_model=ApplicationRead)
def withdraw_application(
    application_id: int,
    payload: ApplicantAction,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    applicant_id = ensure_actor(api_key, payload.applicant_id)
    return applications_service.withdraw_application(db, application_id, applicant_id=applicant_id)


@router.post("/{application_id}/rate", response_model=ApplicationRead)
def update_rate(
    application_id: int,
    payload: RateUpdate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return applications_service.update_application_rate(
        db,
        application_id,
        amount=payload.amount,
        by=payload.by,
        actor_id=ensure_actor(api_key, payload.actor_id),
        note=payload.note,
    )


@router.post("/{application_id}/rate/confirm", response_model=ApplicationRead)
def confirm_rate(
    application_id: int,
    payload: RateConfirm,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return applications_service.confirm_application_rate(
        db, application_id, by=payload.by, actor_id=ensure_actor(api_key, payload.actor_id)
    )


@router.post("/{application_id}/completion", response_model=ApplicationRead)
def request_completion(
    application_id: int,
    payload: CompletionRequest,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
    fee_cache: FeeConfigCache = Depends(get_fee_cache),
):
    return applications_service.request_completion(
        db, application_id, worker_id=ensure_actor(api_key, payload.worker_id), fee_cache=fee_cache
    )


@router.post("/{application_id}/completion/approve", response_model=EscrowRead)
def approve_completion(
    application_id: int,
    payload: EmployerAction,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    employer_id = ensure_actor(api_key, payload.employer_id)
    return applications_service.approve_completion(db, application_id, employer_id=employer_id)


@router.post("/{application_id}/completion/dispute", response_model=ApplicationRead)
def dispute_completion(
    application_id: int,
    payload: CompletionDispute,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return applications_service.dispute_completion(
        db, application_id, employer_id=ensure_actor(api_key, payload.employer_id), reason=payload.reason
    )
