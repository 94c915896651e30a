"""Audit logging with masking of bank, card and gateway identifiers."""
from __future__ import annotations

from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from gigpay.models.audit import AuditLog
from gigpay.utils.time import utcnow


def _last_four(value: Any) -> str:
    digits = str(value).replace(" ", "")
    return f"***{digits[-4:]}"


def _hidden(value: Any) -> str:
    return "***masked***"


def _email(value: Any) -> str:
    text = str(value)
    if "@" not in text:
        return "***"
    return f"***@{text.split('@', 1)[1]}"


def _gateway_ref(value: Any) -> str:
    text = str(value)
    return "***" if len(text) <= 6 else f"***{text[-4:]}"


MASKERS: dict[str, Callable[[Any], str]] = {
    "account_number": _last_four,
    "card_number": _last_four,
    "branch_code": _last_four,
    "authorization_code": _last_four,
    "account_holder": _hidden,
    "email": _email,
    "provider_txn_id": _gateway_ref,
}


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with bank details and gateway references masked."""

    if isinstance(data, Mapping):
        return {
            key: MASKERS[key](value) if key in MASKERS and value is not None else sanitize_payload_for_audit(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]
    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> None:
    """Stage an audit row; it commits with the caller's unit of work."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id if entity_id is not None else 0,
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


def actor_from_api_key(api_key: Any, fallback: str = "system") -> str:
    prefix = getattr(api_key, "prefix", None)
    return f"apikey:{prefix}" if prefix else fallback
