"""User, wallet and payment history endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.models.api_key import ApiKey, ApiScope
from gigpay.models.history import HistoryType
from gigpay.models.user import User
from gigpay.schemas.history import AnalyticsRead, HistoryEntryRead, ReconciliationRead
from gigpay.schemas.user import UserCreate, UserRead
from gigpay.schemas.wallet import WalletRead
from gigpay.security import ensure_actor, require_scope
from gigpay.services import history as history_service
from gigpay.services import wallet as wallet_service
from gigpay.services.gigs import get_user_or_404
from gigpay.utils.audit import actor_from_api_key, log_audit
from gigpay.utils.errors import error_response

router = APIRouter(prefix="/users", tags=["users"])

ANY_SCOPE = {ApiScope.user, ApiScope.support, ApiScope.admin}


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin, ApiScope.support})),
) -> User:
    """Create a new user together with an empty wallet."""

    user = User(**payload.model_dump())
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("USER_CREATE_FAILED", "Could not create user."),
        ) from exc

    wallet_service.ensure_wallet(db, user.id)
    log_audit(
        db,
        actor=actor_from_api_key(api_key, fallback="apikey:unknown"),
        action="CREATE_USER",
        entity="User",
        entity_id=user.id,
        data={"username": user.username, "email": user.email},
    )
    db.commit()
    db.refresh(user)
    return user


@router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
) -> User:
    return get_user_or_404(db, user_id)


@router.get("/{user_id}/wallet", response_model=WalletRead)
def get_wallet(
    user_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
) -> WalletRead:
    get_user_or_404(db, ensure_actor(api_key, user_id))
    balance = wallet_service.get_balance(db, user_id)
    return WalletRead(
        user_id=balance.user_id,
        wallet_balance=balance.wallet_balance,
        pending_balance=balance.pending_balance,
        total_earnings=balance.total_earnings,
        total_withdrawn=balance.total_withdrawn,
        available_balance=balance.available_balance,
    )


@router.get("/{user_id}/history", response_model=list[HistoryEntryRead])
def get_history(
    user_id: int,
    limit: int = Query(default=history_service.DEFAULT_HISTORY_LIMIT, ge=1, le=500),
    type: HistoryType | None = Query(default=None),
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    get_user_or_404(db, ensure_actor(api_key, user_id))
    return history_service.list_entries(db, user_id, limit=limit, type=type)


@router.get("/{user_id}/analytics", response_model=AnalyticsRead)
def get_analytics(
    user_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    get_user_or_404(db, ensure_actor(api_key, user_id))
    return history_service.get_user_analytics(db, user_id)


@router.get("/{user_id}/reconcile", response_model=ReconciliationRead)
def reconcile(
    user_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin, ApiScope.support})),
) -> ReconciliationRead:
    get_user_or_404(db, user_id)
    result = history_service.reconcile_wallet(db, user_id)
    return ReconciliationRead(
        user_id=result.user_id,
        total_earnings_wallet=result.total_earnings_wallet,
        total_earnings_history=result.total_earnings_history,
        total_withdrawn_wallet=result.total_withdrawn_wallet,
        total_withdrawn_requests=result.total_withdrawn_requests,
        consistent=result.consistent,
    )
