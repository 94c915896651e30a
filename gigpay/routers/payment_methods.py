"""Saved payment methods of a user."""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.models.api_key import ApiKey, ApiScope
from gigpay.schemas.payment_method import DefaultRepairRead, PaymentMethodCreate, PaymentMethodRead
from gigpay.security import ensure_actor, require_scope
from gigpay.services import payment_methods as payment_methods_service
from gigpay.services.gigs import get_user_or_404
from gigpay.utils.audit import actor_from_api_key

router = APIRouter(prefix="/users/{user_id}/payment-methods", tags=["payment-methods"])

ANY_SCOPE = {ApiScope.user, ApiScope.support, ApiScope.admin}


@router.post("", response_model=PaymentMethodRead, status_code=status.HTTP_201_CREATED)
def add_payment_method(
    user_id: int,
    payload: PaymentMethodCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return payment_methods_service.add_payment_method(
        db,
        ensure_actor(api_key, user_id),
        payload,
        actor=actor_from_api_key(api_key, fallback=f"user:{user_id}"),
    )


@router.get("", response_model=list[PaymentMethodRead])
def list_payment_methods(
    user_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    get_user_or_404(db, ensure_actor(api_key, user_id))
    return payment_methods_service.list_payment_methods(db, user_id)


@router.post("/{method_id}/default", response_model=PaymentMethodRead)
def set_default_payment_method(
    user_id: int,
    method_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return payment_methods_service.set_default_payment_method(
        db,
        ensure_actor(api_key, user_id),
        method_id,
        actor=actor_from_api_key(api_key, fallback=f"user:{user_id}"),
    )


@router.delete("/{method_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def remove_payment_method(
    user_id: int,
    method_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
) -> Response:
    payment_methods_service.remove_payment_method(
        db,
        ensure_actor(api_key, user_id),
        method_id,
        actor=actor_from_api_key(api_key, fallback=f"user:{user_id}"),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/repair-defaults", response_model=DefaultRepairRead)
def repair_default_payment_methods(
    user_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin, ApiScope.support})),
) -> DefaultRepairRead:
    cleared = payment_methods_service.fix_multiple_default_payment_methods(
        db, user_id, actor=actor_from_api_key(api_key, fallback="support")
    )
    return DefaultRepairRead(user_id=user_id, cleared=cleared)
