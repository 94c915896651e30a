"""Withdrawal endpoints for workers and admins."""
from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.dependencies import get_withdrawal_limiter
from gigpay.models.api_key import ApiKey, ApiScope
from gigpay.models.withdrawal import WithdrawalStatus
from gigpay.schemas.withdrawal import WithdrawalApprove, WithdrawalCreate, WithdrawalRead, WithdrawalReject
from gigpay.security import ensure_actor, require_scope
from gigpay.services import withdrawals as withdrawals_service
from gigpay.services.withdrawals import BankDetails, WithdrawalRateLimiter
from gigpay.utils.audit import actor_from_api_key

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])

ANY_SCOPE = {ApiScope.user, ApiScope.support, ApiScope.admin}
ADMIN_SCOPE = {ApiScope.admin}


@router.post("", response_model=WithdrawalRead, status_code=status.HTTP_201_CREATED)
def request_withdrawal(
    payload: WithdrawalCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
    limiter: WithdrawalRateLimiter = Depends(get_withdrawal_limiter),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    return withdrawals_service.request_withdrawal(
        db,
        user_id=ensure_actor(api_key, payload.user_id),
        amount=payload.amount,
        bank_details=BankDetails(**payload.bank_details.model_dump()),
        idempotency_key=idempotency_key,
        limiter=limiter,
    )


@router.get("", response_model=list[WithdrawalRead])
def list_withdrawals(
    status_filter: WithdrawalStatus | None = Query(default=None, alias="status"),
    user_id: int | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin, ApiScope.support})),
):
    return withdrawals_service.list_withdrawals(db, status=status_filter, user_id=user_id, limit=limit)


@router.get("/{withdrawal_id}", response_model=WithdrawalRead)
def get_withdrawal(
    withdrawal_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    withdrawal = withdrawals_service.get_withdrawal_or_404(db, withdrawal_id)
    ensure_actor(api_key, withdrawal.user_id)
    return withdrawal


@router.post("/{withdrawal_id}/processing", response_model=WithdrawalRead)
def mark_processing(
    withdrawal_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ADMIN_SCOPE)),
):
    return withdrawals_service.mark_processing(
        db, withdrawal_id, actor=actor_from_api_key(api_key, fallback="admin")
    )


@router.post("/{withdrawal_id}/approve", response_model=WithdrawalRead)
def approve_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalApprove,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ADMIN_SCOPE)),
):
    return withdrawals_service.approve_withdrawal(
        db, withdrawal_id, actor=actor_from_api_key(api_key, fallback="admin"), notes=payload.notes
    )


@router.post("/{withdrawal_id}/reject", response_model=WithdrawalRead)
def reject_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalReject,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ADMIN_SCOPE)),
):
    return withdrawals_service.reject_withdrawal(
        db, withdrawal_id, reason=payload.reason, actor=actor_from_api_key(api_key, fallback="admin")
    )
