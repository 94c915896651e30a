"""API key management (admin only)."""
from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.models.api_key import ApiKey, ApiScope
from gigpay.security import require_scope
from gigpay.utils.apikey import gen_key
from gigpay.utils.audit import actor_from_api_key, log_audit
from gigpay.utils.errors import error_response
from gigpay.utils.time import utcnow

router = APIRouter(prefix="/apikeys", tags=["apikeys"])

ADMIN_ONLY = require_scope({ApiScope.admin})


class CreateKeyIn(BaseModel):
    name: str
    scope: ApiScope
    # ties a user-scope key to the worker or employer it acts for
    user_id: int | None = None
    days_valid: int | None = Field(default=90, ge=1, le=730)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("name cannot be blank")
        return value.strip()


class ApiKeyCreateOut(BaseModel):
    """Returned once by ``POST /apikeys``; the raw key is never shown again."""
    id: int
    name: str
    scope: ApiScope
    key: str
    expires_at: datetime | None


class ApiKeyRead(BaseModel):
    id: int
    name: str
    prefix: str
    scope: ApiScope
    user_id: int | None
    is_active: bool
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


def _get_key_or_404(db: Session, api_key_id: int) -> ApiKey:
    row = db.get(ApiKey, api_key_id)
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("APIKEY_NOT_FOUND", "API key not found."),
        )
    return row


@router.post("", response_model=ApiKeyCreateOut, status_code=status.HTTP_201_CREATED)
def create_api_key(
    payload: CreateKeyIn,
    db: Session = Depends(get_db),
    caller: ApiKey = Depends(ADMIN_ONLY),
) -> ApiKeyCreateOut:
    raw, prefix, key_hash = gen_key()
    row = ApiKey(
        name=payload.name,
        prefix=prefix,
        key_hash=key_hash,
        scope=payload.scope,
        user_id=payload.user_id,
        expires_at=utcnow() + timedelta(days=payload.days_valid) if payload.days_valid else None,
        is_active=True,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("APIKEY_EXISTS", "Key name already exists."),
        ) from exc

    log_audit(
        db,
        actor=actor_from_api_key(caller, fallback="admin"),
        action="CREATE_API_KEY",
        entity="ApiKey",
        entity_id=row.id,
        data={"name": row.name, "scope": row.scope.value, "user_id": row.user_id},
    )
    db.commit()
    return ApiKeyCreateOut(id=row.id, name=row.name, scope=row.scope, key=raw, expires_at=row.expires_at)


@router.get("", response_model=list[ApiKeyRead], dependencies=[Depends(ADMIN_ONLY)])
def list_api_keys(
    scope: ApiScope | None = Query(default=None),
    active: bool | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[ApiKey]:
    stmt = select(ApiKey).order_by(ApiKey.id)
    if scope is not None:
        stmt = stmt.where(ApiKey.scope == scope)
    if active is not None:
        stmt = stmt.where(ApiKey.is_active.is_(active))
    return list(db.scalars(stmt))


@router.get("/{api_key_id}", response_model=ApiKeyRead, dependencies=[Depends(ADMIN_ONLY)])
def get_apikey(api_key_id: int, db: Session = Depends(get_db)) -> ApiKey:
    return _get_key_or_404(db, api_key_id)


@router.delete("/{api_key_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def revoke_apikey(
    api_key_id: int,
    db: Session = Depends(get_db),
    caller: ApiKey = Depends(ADMIN_ONLY),
) -> Response:
    row = _get_key_or_404(db, api_key_id)
    action = "REVOKE_API_KEY" if row.is_active else "REVOKE_API_KEY_NOOP"
    row.is_active = False
    log_audit(
        db,
        actor=actor_from_api_key(caller, fallback="admin"),
        action=action,
        entity="ApiKey",
        entity_id=api_key_id,
        data={"name": row.name},
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
