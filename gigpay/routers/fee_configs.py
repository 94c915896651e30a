"""Fee configuration endpoints (admin) and the public fee breakdown."""
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.dependencies import get_fee_cache
from gigpay.models.api_key import ApiKey, ApiScope
from gigpay.schemas.fee_config import (
    FeeBreakdownRead,
    FeeConfigCreate,
    FeeConfigRead,
    FeeConfigUpdate,
    FeeSettingsRead,
)
from gigpay.security import require_scope
from gigpay.services import fee_config as fee_service
from gigpay.services.fee_config import FeeConfigCache
from gigpay.utils.audit import actor_from_api_key

router = APIRouter(prefix="/fee-configs", tags=["fee-configs"])

ANY_SCOPE = {ApiScope.user, ApiScope.support, ApiScope.admin}


@router.get("", response_model=list[FeeConfigRead], dependencies=[Depends(require_scope({ApiScope.admin}))])
def list_fee_configs(db: Session = Depends(get_db)):
    return fee_service.list_fee_configs(db)


@router.get("/active", response_model=FeeSettingsRead, dependencies=[Depends(require_scope(ANY_SCOPE))])
def get_active(db: Session = Depends(get_db), fee_cache: FeeConfigCache = Depends(get_fee_cache)):
    return fee_service.get_active_fee_settings(db, fee_cache)


@router.get("/breakdown", response_model=FeeBreakdownRead, dependencies=[Depends(require_scope(ANY_SCOPE))])
def fee_breakdown(
    amount: Decimal = Query(gt=Decimal("0")),
    db: Session = Depends(get_db),
    fee_cache: FeeConfigCache = Depends(get_fee_cache),
):
    return fee_service.calculate_fee_breakdown(amount, fee_service.get_active_fee_settings(db, fee_cache))


@router.post("", response_model=FeeConfigRead, status_code=status.HTTP_201_CREATED)
def create_fee_config(
    payload: FeeConfigCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
    fee_cache: FeeConfigCache = Depends(get_fee_cache),
):
    return fee_service.create_fee_config(
        db, payload, actor=actor_from_api_key(api_key, fallback="admin"), cache=fee_cache
    )


@router.patch("/{config_id}", response_model=FeeConfigRead)
def update_fee_config(
    config_id: int,
    payload: FeeConfigUpdate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
    fee_cache: FeeConfigCache = Depends(get_fee_cache),
):
    return fee_service.update_fee_config(
        db, config_id, payload, actor=actor_from_api_key(api_key, fallback="admin"), cache=fee_cache
    )
