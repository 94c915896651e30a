"""Saved payment methods and the one-default-per-user rule.

Every write starts by locking the owning user row, so two requests changing
the default for the same user run one after the other.
"""
from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gigpay.db import atomic
from gigpay.models.payment_method import PaymentMethod, PaymentMethodType
from gigpay.models.user import User
from gigpay.schemas.payment_method import PaymentMethodCreate
from gigpay.utils.audit import log_audit
from gigpay.utils.errors import NotFound, OutOfBounds

logger = logging.getLogger(__name__)

_BANK_FIELDS = ("bank_name", "account_holder", "account_number", "branch_code")

REQUIRED_FIELDS: dict[PaymentMethodType, tuple[str, ...]] = {
    PaymentMethodType.CARD: ("card_last4",),
    PaymentMethodType.BANK: _BANK_FIELDS,
    PaymentMethodType.EFT: _BANK_FIELDS,
    PaymentMethodType.MOBILE_MONEY: ("mobile_provider", "mobile_number"),
}


def _lock_owner(db: Session, user_id: int) -> None:
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values(updated_at=User.updated_at)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        raise NotFound("User not found.", code="USER_NOT_FOUND")


def _clear_defaults(db: Session, user_id: int, *, keep_id: int | None = None) -> int:
    stmt = update(PaymentMethod).where(PaymentMethod.user_id == user_id, PaymentMethod.is_default.is_(True))
    if keep_id is not None:
        stmt = stmt.where(PaymentMethod.id != keep_id)
    result = db.execute(stmt.values(is_default=False))
    return result.rowcount


def _audit(db: Session, *, actor: str, action: str, method: PaymentMethod, data: dict | None = None) -> None:
    log_audit(
        db,
        actor=actor,
        action=action,
        entity="PaymentMethod",
        entity_id=method.id,
        data={"user_id": method.user_id, "type": method.type.value, **(data or {})},
    )


def _check_required(payload: PaymentMethodCreate) -> None:
    missing = [name for name in REQUIRED_FIELDS[payload.type] if not getattr(payload, name)]
    if missing:
        raise OutOfBounds(
            f"Missing details for a {payload.type.value} payment method.",
            code="PAYMENT_METHOD_INCOMPLETE",
            details={"missing": missing},
        )


def add_payment_method(
    db: Session,
    user_id: int,
    payload: PaymentMethodCreate,
    *,
    actor: str,
) -> PaymentMethod:
    """Save a new method; when it is the default, the previous default is cleared."""

    _check_required(payload)
    data = payload.model_dump()
    if data.get("account_number"):
        data["account_last4"] = data["account_number"][-4:]

    with atomic(db):
        _lock_owner(db, user_id)
        if payload.is_default:
            _clear_defaults(db, user_id)
        method = PaymentMethod(user_id=user_id, is_verified=False, **data)
        db.add(method)
        db.flush()
        _audit(db, actor=actor, action="PAYMENT_METHOD_ADDED", method=method, data={"is_default": method.is_default})

    logger.info(
        "Payment method added",
        extra={"user_id": user_id, "payment_method_id": method.id, "type": method.type.value},
    )
    return method


def list_payment_methods(db: Session, user_id: int) -> list[PaymentMethod]:
    stmt = (
        select(PaymentMethod)
        .where(PaymentMethod.user_id == user_id)
        .order_by(PaymentMethod.created_at.desc(), PaymentMethod.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(db.scalars(stmt))


def get_payment_method_or_404(db: Session, user_id: int, method_id: int) -> PaymentMethod:
    method = db.scalars(
        select(PaymentMethod)
        .where(PaymentMethod.id == method_id, PaymentMethod.user_id == user_id)
        .execution_options(populate_existing=True)
    ).first()
    if method is None:
        raise NotFound("Payment method not found.", code="PAYMENT_METHOD_NOT_FOUND")
    return method


def set_default_payment_method(db: Session, user_id: int, method_id: int, *, actor: str) -> PaymentMethod:
    """Make ``method_id`` the user's only default in one transaction."""

    with atomic(db):
        _lock_owner(db, user_id)
        method = get_payment_method_or_404(db, user_id, method_id)
        cleared = _clear_defaults(db, user_id, keep_id=method.id)
        method.is_default = True
        _audit(db, actor=actor, action="PAYMENT_METHOD_DEFAULT_SET", method=method, data={"cleared": cleared})

    logger.info("Default payment method set", extra={"user_id": user_id, "payment_method_id": method.id})
    return method


def remove_payment_method(db: Session, user_id: int, method_id: int, *, actor: str) -> None:
    with atomic(db):
        _lock_owner(db, user_id)
        method = get_payment_method_or_404(db, user_id, method_id)
        _audit(db, actor=actor, action="PAYMENT_METHOD_REMOVED", method=method, data={"was_default": method.is_default})
        db.delete(method)

    logger.info("Payment method removed", extra={"user_id": user_id, "payment_method_id": method_id})


def fix_multiple_default_payment_methods(db: Session, user_id: int, *, actor: str) -> int:
    """Keep the newest default and clear the rest. Returns how many were cleared."""

    with atomic(db):
        _lock_owner(db, user_id)
        newest = db.scalars(
            select(PaymentMethod)
            .where(PaymentMethod.user_id == user_id, PaymentMethod.is_default.is_(True))
            .order_by(PaymentMethod.created_at.desc(), PaymentMethod.id.desc())
            .limit(1)
        ).first()
        if newest is None:
            return 0
        cleared = _clear_defaults(db, user_id, keep_id=newest.id)
        if cleared:
            _audit(db, actor=actor, action="PAYMENT_METHOD_DEFAULTS_REPAIRED", method=newest, data={"cleared": cleared})

    if cleared:
        logger.warning("Duplicate default payment methods cleared", extra={"user_id": user_id, "cleared": cleared})
    return cleared


__all__ = [
    "REQUIRED_FIELDS",
    "add_payment_method",
    "fix_multiple_default_payment_methods",
    "get_payment_method_or_404",
    "list_payment_methods",
    "remove_payment_method",
    "set_default_payment_method",
]
