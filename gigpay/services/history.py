"""Per-user payment history, analytics and reconciliation against the wallet.

History is append-only: a pending entry written at funding time is never
updated, the release appends its own ``completed`` entry instead.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gigpay.models.history import HistoryStatus, HistoryType, PaymentHistoryEntry
from gigpay.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from gigpay.services import wallet as wallet_service
from gigpay.utils.money import ZERO, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def add_entry(
    db: Session,
    *,
    user_id: int,
    type: HistoryType,
    amount: Decimal,
    status: HistoryStatus,
    description: str,
    gig_id: int | None = None,
    payment_id: int | None = None,
    withdrawal_id: int | None = None,
    currency: str = "ZAR",
) -> PaymentHistoryEntry:
    """Append one entry. Does not commit."""

    entry = PaymentHistoryEntry(
        user_id=user_id,
        type=type,
        amount=to_decimal(amount),
        status=status,
        description=description,
        gig_id=gig_id,
        payment_id=payment_id,
        withdrawal_id=withdrawal_id,
        currency=currency,
    )
    db.add(entry)
    return entry


def list_entries(
    db: Session,
    user_id: int,
    *,
    limit: int = DEFAULT_HISTORY_LIMIT,
    type: HistoryType | None = None,
) -> list[PaymentHistoryEntry]:
    """Most recent entries first."""

    stmt = select(PaymentHistoryEntry).where(PaymentHistoryEntry.user_id == user_id)
    if type is not None:
        stmt = stmt.where(PaymentHistoryEntry.type == type)
    stmt = stmt.order_by(PaymentHistoryEntry.created_at.desc(), PaymentHistoryEntry.id.desc()).limit(limit)
    return list(db.scalars(stmt))


@dataclass
class PaymentAnalytics:
    user_id: int
    totals: dict[str, dict[str, Decimal]] = field(default_factory=dict)
    counts: dict[str, int] = field(default_factory=dict)
    entry_count: int = 0

    def total(self, type: HistoryType, status: HistoryStatus) -> Decimal:
        return self.totals.get(type.value, {}).get(status.value, ZERO)


def get_user_analytics(db: Session, user_id: int) -> PaymentAnalytics:
    """Aggregate a user's history by type and status."""

    stmt = (
        select(
            PaymentHistoryEntry.type,
            PaymentHistoryEntry.status,
            func.count(PaymentHistoryEntry.id),
            func.coalesce(func.sum(PaymentHistoryEntry.amount), 0),
        )
        .where(PaymentHistoryEntry.user_id == user_id)
        .group_by(PaymentHistoryEntry.type, PaymentHistoryEntry.status)
    )
    stats = PaymentAnalytics(user_id=user_id)
    for type_, status_, count, amount in db.execute(stmt):
        stats.totals.setdefault(type_.value, {})[status_.value] = to_decimal(amount)
        stats.counts[status_.value] = stats.counts.get(status_.value, 0) + count
        stats.entry_count += count
    return stats


@dataclass(frozen=True)
class Reconciliation:
    user_id: int
    total_earnings_wallet: Decimal
    total_earnings_history: Decimal
    total_withdrawn_wallet: Decimal
    total_withdrawn_requests: Decimal

    @property
    def consistent(self) -> bool:
        return (
            self.total_earnings_wallet == self.total_earnings_history
            and self.total_withdrawn_wallet == self.total_withdrawn_requests
        )


def _sum(db: Session, stmt) -> Decimal:
    value = db.scalar(stmt)
    return to_decimal(value or 0)


def reconcile_wallet(db: Session, user_id: int) -> Reconciliation:
    """Check ``total_earnings`` against completed earnings entries and
    ``total_withdrawn`` against completed withdrawal requests."""

    balance = wallet_service.get_balance(db, user_id)
    earned = _sum(
        db,
        select(func.sum(PaymentHistoryEntry.amount)).where(
            PaymentHistoryEntry.user_id == user_id,
            PaymentHistoryEntry.type == HistoryType.EARNINGS,
            PaymentHistoryEntry.status == HistoryStatus.COMPLETED,
        ),
    )
    withdrawn = _sum(
        db,
        select(func.sum(WithdrawalRequest.amount)).where(
            WithdrawalRequest.user_id == user_id,
            WithdrawalRequest.status == WithdrawalStatus.COMPLETED,
        ),
    )
    result = Reconciliation(
        user_id=user_id,
        total_earnings_wallet=balance.total_earnings,
        total_earnings_history=earned,
        total_withdrawn_wallet=balance.total_withdrawn,
        total_withdrawn_requests=withdrawn,
    )
    if not result.consistent:
        logger.error(
            "Wallet does not reconcile with history",
            extra={
                "user_id": user_id,
                "total_earnings_wallet": str(result.total_earnings_wallet),
                "total_earnings_history": str(result.total_earnings_history),
                "total_withdrawn_wallet": str(result.total_withdrawn_wallet),
                "total_withdrawn_requests": str(result.total_withdrawn_requests),
            },
        )
    return result


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "PaymentAnalytics",
    "Reconciliation",
    "add_entry",
    "get_user_analytics",
    "list_entries",
    "reconcile_wallet",
]
