"""Withdrawal requests: reserve funds, then hand off to an admin for payout.

The debit and the request row are written together. If the follow-up
history entry fails, the debit is refunded and the request is marked failed;
a refund that also fails is surfaced as :class:`ConsistencyError` for manual
repair.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gigpay.config import get_settings
from gigpay.db import atomic
from gigpay.models.history import HistoryStatus, HistoryType
from gigpay.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from gigpay.services import history as history_service
from gigpay.services import wallet as wallet_service
from gigpay.services.gigs import get_user_or_404
from gigpay.services.idempotency import get_existing_by_key, normalize_key
from gigpay.services.transitions import WITHDRAWAL_TRANSITIONS, apply_transition
from gigpay.utils.audit import log_audit
from gigpay.utils.errors import ConsistencyError, InvalidState, NotFound, OutOfBounds, RateLimited
from gigpay.utils.money import format_currency, to_decimal
from gigpay.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BankDetails:
    bank_name: str
    account_holder: str
    account_number: str
    branch_code: str
    account_type: str = "savings"


class WithdrawalRateLimiter:
    """Caps withdrawal requests per user over a trailing window.

    Counts rows in the withdrawal table, so the limit holds across every
    worker process sharing the database.
    """

    def __init__(
        self,
        max_requests: int | None = None,
        window: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.max_requests = max_requests if max_requests is not None else settings.WITHDRAWAL_MAX_REQUESTS_PER_WINDOW
        self.window = window or timedelta(hours=settings.WITHDRAWAL_WINDOW_HOURS)
        self._clock = clock

    def recent_count(self, db: Session, user_id: int) -> int:
        since = self._clock() - self.window
        stmt = select(func.count(WithdrawalRequest.id)).where(
            WithdrawalRequest.user_id == user_id,
            WithdrawalRequest.created_at >= since,
        )
        return db.scalar(stmt) or 0

    def check(self, db: Session, user_id: int) -> None:
        count = self.recent_count(db, user_id)
        if count >= self.max_requests:
            logger.warning("Withdrawal rate limit hit", extra={"user_id": user_id, "recent_requests": count})
            raise RateLimited(
                f"Too many withdrawal requests. Maximum {self.max_requests} requests per "
                f"{int(self.window.total_seconds() // 3600)} hours.",
                code="WITHDRAWAL_RATE_LIMITED",
                details={"limit": self.max_requests, "recent_requests": count},
            )


def _ensure_bounds(amount: Decimal) -> None:
    settings = get_settings()
    minimum = to_decimal(settings.WITHDRAWAL_MIN_AMOUNT)
    maximum = to_decimal(settings.WITHDRAWAL_MAX_AMOUNT)
    if amount < minimum:
        raise OutOfBounds(
            f"Minimum withdrawal amount is {format_currency(minimum)}",
            code="WITHDRAWAL_BELOW_MINIMUM",
            details={"minimum": str(minimum)},
        )
    if amount > maximum:
        raise OutOfBounds(
            f"Maximum withdrawal amount is {format_currency(maximum)}",
            code="WITHDRAWAL_ABOVE_MAXIMUM",
            details={"maximum": str(maximum)},
        )


def get_withdrawal_or_404(db: Session, withdrawal_id: int, *, lock: bool = False) -> WithdrawalRequest:
    stmt = select(WithdrawalRequest).where(WithdrawalRequest.id == withdrawal_id)
    if lock:
        stmt = stmt.with_for_update()
    withdrawal = db.scalars(stmt).first()
    if withdrawal is None:
        raise NotFound("Withdrawal request not found.", code="WITHDRAWAL_NOT_FOUND")
    return withdrawal


def _find_replay(db: Session, user_id: int, key: str | None, amount: Decimal) -> WithdrawalRequest | None:
    existing = get_existing_by_key(db, WithdrawalRequest, key, scope={"user_id": user_id})
    if existing is None:
        return None
    if to_decimal(existing.amount) != amount:
        raise InvalidState(
            "Idempotency-Key was already used for a different withdrawal.",
            code="IDEMPOTENCY_KEY_MISMATCH",
            details={"withdrawal_id": existing.id},
        )
    logger.info("Idempotent withdrawal reused", extra={"withdrawal_id": existing.id, "user_id": user_id})
    return existing


def request_withdrawal(
    db: Session,
    *,
    user_id: int,
    amount: Decimal,
    bank_details: BankDetails,
    idempotency_key: str | None = None,
    limiter: WithdrawalRateLimiter | None = None,
) -> WithdrawalRequest:
    """Reserve ``amount`` from the wallet and open a pending withdrawal request.

    The replay lookup, rate-limit count, debit and insert share one
    transaction that starts by locking the user's wallet, so concurrent
    requests for one user are counted one after another.
    """

    key = normalize_key(idempotency_key)
    value = to_decimal(amount)
    existing = _find_replay(db, user_id, key, value)
    if existing:
        return existing

    get_user_or_404(db, user_id)
    limiter = limiter or WithdrawalRateLimiter()

    try:
        with atomic(db):
            wallet_service.lock_wallet(db, user_id)
            existing = _find_replay(db, user_id, key, value)
            if existing:
                return existing
            limiter.check(db, user_id)
            _ensure_bounds(value)
            wallet_service.debit_atomic(db, user_id, value, count_withdrawn=False)
            withdrawal = WithdrawalRequest(
                user_id=user_id,
                amount=value,
                currency=get_settings().CURRENCY,
                status=WithdrawalStatus.PENDING,
                bank_name=bank_details.bank_name,
                account_holder=bank_details.account_holder,
                account_number=bank_details.account_number,
                branch_code=bank_details.branch_code,
                account_type=bank_details.account_type,
                idempotency_key=key,
            )
            db.add(withdrawal)
            db.flush()
    except IntegrityError:
        # the rollback already returned the debit
        existing = _find_replay(db, user_id, key, value)
        if existing:
            return existing
        raise

    try:
        with atomic(db):
            history_service.add_entry(
                db,
                user_id=user_id,
                type=HistoryType.PAYMENTS,
                amount=value,
                status=HistoryStatus.PENDING,
                description=f"Withdrawal to {bank_details.bank_name}",
                withdrawal_id=withdrawal.id,
            )
            log_audit(
                db,
                actor=f"user:{user_id}",
                action="WITHDRAWAL_REQUESTED",
                entity="WithdrawalRequest",
                entity_id=withdrawal.id,
                data={
                    "amount": str(value),
                    "bank_name": bank_details.bank_name,
                    "account_number": bank_details.account_number,
                },
            )
    except Exception:
        _compensate(db, withdrawal.id, user_id, value)
        raise

    logger.info(
        "Withdrawal requested",
        extra={"withdrawal_id": withdrawal.id, "user_id": user_id, "amount": str(value)},
    )
    return withdrawal


def _compensate(db: Session, withdrawal_id: int, user_id: int, amount: Decimal) -> None:
    try:
        with atomic(db):
            wallet_service.refund(db, user_id, amount)
            withdrawal = get_withdrawal_or_404(db, withdrawal_id, lock=True)
            apply_transition(withdrawal, WITHDRAWAL_TRANSITIONS, WithdrawalStatus.FAILED, entity="withdrawal")
            withdrawal.failure_reason = "Request could not be recorded; funds returned."
    except Exception as exc:
        logger.error(
            "Withdrawal refund failed; wallet needs manual correction",
            extra={"withdrawal_id": withdrawal_id, "user_id": user_id, "amount": str(amount)},
            exc_info=True,
        )
        raise ConsistencyError(
            "Withdrawal could not be recorded and the refund failed. Contact support.",
            code="WITHDRAWAL_REFUND_FAILED",
            details={"user_id": user_id, "amount": str(amount)},
        ) from exc
    logger.warning(
        "Withdrawal reservation refunded",
        extra={"withdrawal_id": withdrawal_id, "user_id": user_id, "amount": str(amount)},
    )


def mark_processing(db: Session, withdrawal_id: int, *, actor: str) -> WithdrawalRequest:
    with atomic(db):
        withdrawal = get_withdrawal_or_404(db, withdrawal_id, lock=True)
        apply_transition(withdrawal, WITHDRAWAL_TRANSITIONS, WithdrawalStatus.PROCESSING, entity="withdrawal")
        withdrawal.processed_at = utcnow()
        log_audit(
            db,
            actor=actor,
            action="WITHDRAWAL_PROCESSING",
            entity="WithdrawalRequest",
            entity_id=withdrawal.id,
            data={},
        )
    return withdrawal


def approve_withdrawal(
    db: Session,
    withdrawal_id: int,
    *,
    actor: str,
    notes: str | None = None,
) -> WithdrawalRequest:
    """Mark the payout as done. The funds were reserved at request time."""

    with atomic(db):
        withdrawal = get_withdrawal_or_404(db, withdrawal_id, lock=True)
        apply_transition(withdrawal, WITHDRAWAL_TRANSITIONS, WithdrawalStatus.COMPLETED, entity="withdrawal")
        now = utcnow()
        withdrawal.approved_by = actor
        withdrawal.admin_notes = notes
        withdrawal.processed_at = withdrawal.processed_at or now
        withdrawal.completed_at = now
        wallet_service.record_withdrawn(db, withdrawal.user_id, withdrawal.amount)
        history_service.add_entry(
            db,
            user_id=withdrawal.user_id,
            type=HistoryType.PAYMENTS,
            amount=withdrawal.amount,
            status=HistoryStatus.COMPLETED,
            description=f"Withdrawal paid to {withdrawal.bank_name}",
            withdrawal_id=withdrawal.id,
        )
        log_audit(
            db,
            actor=actor,
            action="WITHDRAWAL_APPROVED",
            entity="WithdrawalRequest",
            entity_id=withdrawal.id,
            data={"amount": str(withdrawal.amount)},
        )
    logger.info("Withdrawal approved", extra={"withdrawal_id": withdrawal.id, "amount": str(withdrawal.amount)})
    return withdrawal


def reject_withdrawal(db: Session, withdrawal_id: int, *, reason: str, actor: str) -> WithdrawalRequest:
    """Fail the request and return the reserved amount to the wallet."""

    with atomic(db):
        withdrawal = get_withdrawal_or_404(db, withdrawal_id, lock=True)
        apply_transition(withdrawal, WITHDRAWAL_TRANSITIONS, WithdrawalStatus.FAILED, entity="withdrawal")
        withdrawal.failure_reason = reason[:255]
        withdrawal.rejected_by = actor
        withdrawal.processed_at = withdrawal.processed_at or utcnow()
        wallet_service.refund(db, withdrawal.user_id, withdrawal.amount)
        history_service.add_entry(
            db,
            user_id=withdrawal.user_id,
            type=HistoryType.PAYMENTS,
            amount=withdrawal.amount,
            status=HistoryStatus.FAILED,
            description=f"Withdrawal rejected: {reason}",
            withdrawal_id=withdrawal.id,
        )
        history_service.add_entry(
            db,
            user_id=withdrawal.user_id,
            type=HistoryType.REFUNDS,
            amount=withdrawal.amount,
            status=HistoryStatus.COMPLETED,
            description="Withdrawal amount returned to wallet",
            withdrawal_id=withdrawal.id,
        )
        log_audit(
            db,
            actor=actor,
            action="WITHDRAWAL_REJECTED",
            entity="WithdrawalRequest",
            entity_id=withdrawal.id,
            data={"amount": str(withdrawal.amount), "reason": reason},
        )
    logger.info("Withdrawal rejected", extra={"withdrawal_id": withdrawal.id, "reason": reason})
    return withdrawal


def list_withdrawals(
    db: Session,
    *,
    status: WithdrawalStatus | None = None,
    user_id: int | None = None,
    limit: int = 100,
) -> list[WithdrawalRequest]:
    stmt = select(WithdrawalRequest)
    if status is not None:
        stmt = stmt.where(WithdrawalRequest.status == status)
    if user_id is not None:
        stmt = stmt.where(WithdrawalRequest.user_id == user_id)
    stmt = stmt.order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc()).limit(limit)
    return list(db.scalars(stmt))


__all__ = [
    "BankDetails",
    "WithdrawalRateLimiter",
    "approve_withdrawal",
    "get_withdrawal_or_404",
    "list_withdrawals",
    "mark_processing",
    "reject_withdrawal",
    "request_withdrawal",
]
