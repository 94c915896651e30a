"""Idempotency helpers."""
from typing import Any, Mapping, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

T = TypeVar("T")


def normalize_key(key_value: str | None) -> str | None:
    """Strip an incoming ``Idempotency-Key`` header; blank keys count as missing."""

    if key_value is None:
        return None
    cleaned = key_value.strip()
    return cleaned or None


def get_existing_by_key(
    db: Session,
    model: Type[T],
    key_value: str | None,
    *,
    key_field: str = "idempotency_key",
    scope: Mapping[str, Any] | None = None,
) -> Optional[T]:
    """Return existing record for a given idempotency key if present.

    ``scope`` narrows the lookup to the caller's own rows, e.g.
    ``{"user_id": 12}`` for keys that are unique per user.
    """
    if not key_value:
        return None
    if not hasattr(model, key_field):
        raise AttributeError(f"{model.__name__} has no field '{key_field}'")

    column = getattr(model, key_field)
    stmt = select(model).where(column == key_value)
    for field, value in (scope or {}).items():
        stmt = stmt.where(getattr(model, field) == value)
    return db.scalars(stmt.limit(1)).first()
