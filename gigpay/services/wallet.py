"""Wallet ledger primitives.

These functions never commit: callers wrap them in :func:`gigpay.db.atomic`
together with the rest of the unit of work. Every balance change is a single
conditional ``UPDATE`` so that a stale read can never drive a balance below
zero, even when two requests race on the same wallet.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gigpay.models.wallet import Wallet
from gigpay.utils.errors import InsufficientBalance, OutOfBounds
from gigpay.utils.money import ZERO, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletBalance:
    user_id: int
    wallet_balance: Decimal
    pending_balance: Decimal
    total_earnings: Decimal
    total_withdrawn: Decimal

    @property
    def available_balance(self) -> Decimal:
        return self.wallet_balance


def _positive(amount: Decimal) -> Decimal:
    value = to_decimal(amount)
    if value <= ZERO:
        raise OutOfBounds("Amount must be greater than 0.", code="AMOUNT_NOT_POSITIVE", details={"amount": str(value)})
    return value


def _get_wallet(db: Session, user_id: int, *, lock: bool = False) -> Wallet | None:
    stmt = select(Wallet).where(Wallet.user_id == user_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update()
    return db.scalars(stmt).first()


def ensure_wallet(db: Session, user_id: int) -> Wallet:
    """Return the user's wallet, creating an empty one on first use."""

    wallet = _get_wallet(db, user_id, lock=True)
    if wallet is None:
        wallet = Wallet(
            user_id=user_id,
            wallet_balance=ZERO,
            pending_balance=ZERO,
            total_earnings=ZERO,
            total_withdrawn=ZERO,
        )
        db.add(wallet)
        db.flush()
        logger.info("Wallet created", extra={"user_id": user_id})
    return wallet


def _apply(db: Session, user_id: int, *conditions, **values) -> bool:
    stmt = (
        update(Wallet)
        .where(Wallet.user_id == user_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def lock_wallet(db: Session, user_id: int) -> None:
    """Hold the user's wallet for the rest of the current transaction.

    The lock is a no-op ``UPDATE`` of the wallet row. On PostgreSQL it takes
    the row lock; on SQLite it takes the database write lock. A second
    request for the same user waits here until the first commits.
    """

    if not _apply(db, user_id, wallet_balance=Wallet.wallet_balance):
        ensure_wallet(db, user_id)


def credit(db: Session, user_id: int, amount: Decimal) -> None:
    """Add released earnings straight to the withdrawable balance."""

    value = _positive(amount)
    ensure_wallet(db, user_id)
    _apply(
        db,
        user_id,
        wallet_balance=Wallet.wallet_balance + value,
        total_earnings=Wallet.total_earnings + value,
    )
    logger.info("Wallet credited", extra={"user_id": user_id, "amount": str(value)})


def debit_atomic(db: Session, user_id: int, amount: Decimal, *, count_withdrawn: bool = True) -> None:
    """Take ``amount`` from the withdrawable balance or raise ``InsufficientBalance``.

    The balance check and the write are one statement
    (``... WHERE wallet_balance >= amount``): two concurrent debits cannot both
    pass against the same funds.
    """

    value = _positive(amount)
    values = {"wallet_balance": Wallet.wallet_balance - value}
    if count_withdrawn:
        values["total_withdrawn"] = Wallet.total_withdrawn + value
    if not _apply(db, user_id, Wallet.wallet_balance >= value, **values):
        balance = get_balance(db, user_id)
        logger.warning(
            "Wallet debit refused",
            extra={"user_id": user_id, "amount": str(value), "available": str(balance.wallet_balance)},
        )
        raise InsufficientBalance(
            "Insufficient balance.",
            details={"requested": str(value), "available": str(balance.wallet_balance)},
        )
    logger.info("Wallet debited", extra={"user_id": user_id, "amount": str(value)})


def debit(db: Session, user_id: int, amount: Decimal) -> None:
    """Plain debit; same guarantees as :func:`debit_atomic`."""

    debit_atomic(db, user_id, amount)


def reserve_pending(db: Session, user_id: int, amount: Decimal) -> None:
    """Record escrowed funds owed to the worker."""

    value = _positive(amount)
    ensure_wallet(db, user_id)
    _apply(db, user_id, pending_balance=Wallet.pending_balance + value)
    logger.info("Pending balance reserved", extra={"user_id": user_id, "amount": str(value)})


def release_pending_to_wallet(db: Session, user_id: int, amount: Decimal) -> None:
    """Move released escrow from pending to withdrawable and count it as earnings."""

    value = _positive(amount)
    moved = _apply(
        db,
        user_id,
        Wallet.pending_balance >= value,
        pending_balance=Wallet.pending_balance - value,
        wallet_balance=Wallet.wallet_balance + value,
        total_earnings=Wallet.total_earnings + value,
    )
    if not moved:
        balance = get_balance(db, user_id)
        raise InsufficientBalance(
            "Insufficient pending balance.",
            code="PENDING_BALANCE_INSUFFICIENT",
            details={"requested": str(value), "pending": str(balance.pending_balance)},
        )
    logger.info("Pending balance released", extra={"user_id": user_id, "amount": str(value)})


def refund(db: Session, user_id: int, amount: Decimal) -> None:
    """Give back a reserved withdrawal. Not counted as earnings."""

    value = _positive(amount)
    ensure_wallet(db, user_id)
    _apply(db, user_id, wallet_balance=Wallet.wallet_balance + value)
    logger.info("Wallet refunded", extra={"user_id": user_id, "amount": str(value)})


def record_withdrawn(db: Session, user_id: int, amount: Decimal) -> None:
    value = _positive(amount)
    ensure_wallet(db, user_id)
    _apply(db, user_id, total_withdrawn=Wallet.total_withdrawn + value)


def get_balance(db: Session, user_id: int) -> WalletBalance:
    """Return the four balance fields; zeros when the user has no wallet yet."""

    wallet = _get_wallet(db, user_id)
    if wallet is None:
        return WalletBalance(user_id, ZERO, ZERO, ZERO, ZERO)
    return WalletBalance(
        user_id=user_id,
        wallet_balance=to_decimal(wallet.wallet_balance),
        pending_balance=to_decimal(wallet.pending_balance),
        total_earnings=to_decimal(wallet.total_earnings),
        total_withdrawn=to_decimal(wallet.total_withdrawn),
    )


__all__ = [
    "WalletBalance",
    "credit",
    "debit",
    "debit_atomic",
    "ensure_wallet",
    "get_balance",
    "lock_wallet",
    "record_withdrawn",
    "refund",
    "release_pending_to_wallet",
    "reserve_pending",
]
