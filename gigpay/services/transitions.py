"""Transition tables for every lifecycle in the system.

Each state machine has exactly one table below; services never assign a
status directly, they call :func:`apply_transition`, which refuses any move
the table does not list.

Applications:
    pending → accepted | rejected | withdrawn
    accepted → funded | rejected
    funded → completed

Gigs:
    open ⇄ reviewing, open | reviewing → in-progress → funded → completed
    any non-terminal state → cancelled
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from gigpay.models.escrow import EscrowStatus
from gigpay.models.gig import ApplicationStatus, GigStatus, RateStatus
from gigpay.models.payment import PaymentIntentStatus
from gigpay.models.withdrawal import WithdrawalStatus
from gigpay.utils.errors import InvalidState

Table = Mapping[Enum, frozenset]

APPLICATION_TRANSITIONS: Table = {
    ApplicationStatus.PENDING: frozenset(
        {ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED, ApplicationStatus.WITHDRAWN}
    ),
    ApplicationStatus.ACCEPTED: frozenset({ApplicationStatus.FUNDED, ApplicationStatus.REJECTED}),
    ApplicationStatus.FUNDED: frozenset({ApplicationStatus.COMPLETED}),
    ApplicationStatus.WITHDRAWN: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
    ApplicationStatus.COMPLETED: frozenset(),
}

# agreed is terminal for the negotiation
RATE_TRANSITIONS: Table = {
    RateStatus.PROPOSED: frozenset({RateStatus.COUNTERED, RateStatus.AGREED}),
    RateStatus.COUNTERED: frozenset({RateStatus.COUNTERED, RateStatus.AGREED}),
    RateStatus.AGREED: frozenset(),
}

GIG_TRANSITIONS: Table = {
    GigStatus.OPEN: frozenset({GigStatus.REVIEWING, GigStatus.IN_PROGRESS, GigStatus.CANCELLED}),
    GigStatus.REVIEWING: frozenset({GigStatus.OPEN, GigStatus.IN_PROGRESS, GigStatus.CANCELLED}),
    GigStatus.IN_PROGRESS: frozenset({GigStatus.FUNDED, GigStatus.OPEN, GigStatus.CANCELLED}),
    GigStatus.FUNDED: frozenset({GigStatus.COMPLETED, GigStatus.CANCELLED}),
    GigStatus.COMPLETED: frozenset(),
    GigStatus.CANCELLED: frozenset(),
}

ESCROW_TRANSITIONS: Table = {
    EscrowStatus.ACTIVE: frozenset({EscrowStatus.RELEASED, EscrowStatus.DISPUTED, EscrowStatus.CANCELLED}),
    EscrowStatus.DISPUTED: frozenset({EscrowStatus.ACTIVE, EscrowStatus.CANCELLED}),
    EscrowStatus.RELEASED: frozenset(),
    EscrowStatus.CANCELLED: frozenset(),
}

WITHDRAWAL_TRANSITIONS: Table = {
    WithdrawalStatus.PENDING: frozenset(
        {WithdrawalStatus.PROCESSING, WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED}
    ),
    WithdrawalStatus.PROCESSING: frozenset({WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED}),
    WithdrawalStatus.COMPLETED: frozenset(),
    WithdrawalStatus.FAILED: frozenset(),
}

PAYMENT_INTENT_TRANSITIONS: Table = {
    PaymentIntentStatus.CREATED: frozenset(
        {
            PaymentIntentStatus.PROCESSING,
            PaymentIntentStatus.SUCCEEDED,
            PaymentIntentStatus.FAILED,
            PaymentIntentStatus.EXPIRED,
        }
    ),
    PaymentIntentStatus.PROCESSING: frozenset(
        {PaymentIntentStatus.SUCCEEDED, PaymentIntentStatus.FAILED, PaymentIntentStatus.EXPIRED}
    ),
    PaymentIntentStatus.SUCCEEDED: frozenset(),
    PaymentIntentStatus.FAILED: frozenset(),
    PaymentIntentStatus.EXPIRED: frozenset(),
}


def can_transition(table: Table, current: Enum, target: Enum) -> bool:
    return target in table.get(current, frozenset())


def is_terminal(table: Table, state: Enum) -> bool:
    return not table.get(state)


def ensure_transition(table: Table, current: Enum, target: Enum, *, entity: str) -> None:
    """Raise ``InvalidState`` unless ``current → target`` is listed in ``table``."""

    if can_transition(table, current, target):
        return
    allowed = sorted(s.value for s in table.get(current, frozenset()))
    raise InvalidState(
        f"Cannot move {entity} from {current.value} to {target.value}.",
        code=f"{entity.upper()}_INVALID_TRANSITION",
        details={"from": current.value, "to": target.value, "allowed": allowed},
    )


def apply_transition(
    obj: Any,
    table: Table,
    target: Enum,
    *,
    entity: str,
    field: str = "status",
) -> None:
    """Validate and set ``obj.<field>`` to ``target``."""

    ensure_transition(table, getattr(obj, field), target, entity=entity)
    setattr(obj, field, target)


__all__ = [
    "APPLICATION_TRANSITIONS",
    "RATE_TRANSITIONS",
    "GIG_TRANSITIONS",
    "ESCROW_TRANSITIONS",
    "WITHDRAWAL_TRANSITIONS",
    "PAYMENT_INTENT_TRANSITIONS",
    "apply_transition",
    "can_transition",
    "ensure_transition",
    "is_terminal",
]
