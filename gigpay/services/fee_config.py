"""Platform fee configuration and fee breakdowns."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gigpay.config import get_settings
from gigpay.db import atomic
from gigpay.models.fee_config import FeeConfig
from gigpay.schemas.fee_config import FeeConfigCreate, FeeConfigUpdate
from gigpay.utils.audit import log_audit
from gigpay.utils.errors import NotFound, OutOfBounds
from gigpay.utils.money import CENTS, to_decimal

logger = logging.getLogger(__name__)

COMMISSION_RANGE = (Decimal("0"), Decimal("50"))
MINIMUM_AMOUNT_RANGE = (Decimal("1"), Decimal("10000"))
MAXIMUM_AMOUNT_RANGE = (Decimal("1000"), Decimal("1000000"))
AUTO_RELEASE_DAYS_RANGE = (1, 30)


@dataclass(frozen=True)
class FeeSettings:
    """Detached snapshot of the active fee configuration."""

    platform_commission_percent: Decimal
    minimum_gig_amount: Decimal
    maximum_gig_amount: Decimal
    escrow_auto_release_days: int
    config_id: int | None = None

    @classmethod
    def from_model(cls, row: FeeConfig) -> "FeeSettings":
        return cls(
            platform_commission_percent=Decimal(row.platform_commission_percent),
            minimum_gig_amount=to_decimal(row.minimum_gig_amount),
            maximum_gig_amount=to_decimal(row.maximum_gig_amount),
            escrow_auto_release_days=row.escrow_auto_release_days,
            config_id=row.id,
        )


DEFAULT_FEE_SETTINGS = FeeSettings(
    platform_commission_percent=Decimal("10"),
    minimum_gig_amount=Decimal("100.00"),
    maximum_gig_amount=Decimal("100000.00"),
    escrow_auto_release_days=7,
)


@dataclass(frozen=True)
class FeeBreakdown:
    gig_amount: Decimal
    platform_commission: Decimal
    worker_earnings: Decimal
    commission_percent: Decimal


class FeeConfigCache:
    """Single-slot TTL cache for the active fee settings.

    Writers call :meth:`invalidate` in the same request that changed the
    configuration, so the next read goes back to the store.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value: FeeSettings | None = None
        self._loaded_at: float | None = None

    def get(self, loader: Callable[[], FeeSettings]) -> FeeSettings:
        with self._lock:
            now = self._clock()
            if (
                self._value is not None
                and self._loaded_at is not None
                and now - self._loaded_at < self.ttl_seconds
            ):
                return self._value
        value = loader()
        with self._lock:
            self._value = value
            self._loaded_at = self._clock()
        return value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._loaded_at = None


_cache: FeeConfigCache | None = None


def get_fee_config_cache() -> FeeConfigCache:
    """Return the process-wide cache (FastAPI dependency)."""

    global _cache
    if _cache is None:
        _cache = FeeConfigCache(ttl_seconds=get_settings().FEE_CONFIG_CACHE_TTL_SECONDS)
    return _cache


def _load_active(db: Session) -> FeeSettings:
    stmt = select(FeeConfig).where(FeeConfig.is_active.is_(True)).order_by(FeeConfig.id.desc()).limit(1)
    row = db.scalars(stmt).first()
    if row is None:
        return DEFAULT_FEE_SETTINGS
    return FeeSettings.from_model(row)


def get_active_fee_settings(db: Session, cache: FeeConfigCache | None = None) -> FeeSettings:
    """Return the active configuration, or the defaults when none is stored."""

    if cache is None:
        return _load_active(db)
    return cache.get(lambda: _load_active(db))


def calculate_fee_breakdown(gig_amount: Decimal, config: FeeSettings = DEFAULT_FEE_SETTINGS) -> FeeBreakdown:
    """Split ``gig_amount`` into platform commission and worker earnings.

    The commission is rounded half-up to cents and the worker gets the
    remainder, so the two parts always add up to the gig amount exactly.
    """

    amount = to_decimal(gig_amount)
    percent = Decimal(config.platform_commission_percent)
    commission = (amount * percent / Decimal("100")).quantize(CENTS, rounding=ROUND_HALF_UP)
    return FeeBreakdown(
        gig_amount=amount,
        platform_commission=commission,
        worker_earnings=amount - commission,
        commission_percent=percent,
    )


def validate_fee_config(
    *,
    platform_commission_percent: Decimal,
    minimum_gig_amount: Decimal,
    maximum_gig_amount: Decimal,
    escrow_auto_release_days: int,
) -> list[str]:
    """Return the list of validation errors; empty when the values are acceptable."""

    errors: list[str] = []
    low, high = COMMISSION_RANGE
    if not low <= platform_commission_percent <= high:
        errors.append("Platform commission must be between 0% and 50%")
    low, high = MINIMUM_AMOUNT_RANGE
    if not low <= minimum_gig_amount <= high:
        errors.append("Minimum gig amount must be between R1 and R10,000")
    low, high = MAXIMUM_AMOUNT_RANGE
    if not low <= maximum_gig_amount <= high:
        errors.append("Maximum gig amount must be between R1,000 and R1,000,000")
    if minimum_gig_amount >= maximum_gig_amount:
        errors.append("Minimum gig amount must be lower than maximum gig amount")
    low_days, high_days = AUTO_RELEASE_DAYS_RANGE
    if not low_days <= escrow_auto_release_days <= high_days:
        errors.append("Escrow auto-release days must be between 1 and 30")
    return errors


def _ensure_valid(values: dict) -> None:
    errors = validate_fee_config(**values)
    if errors:
        raise OutOfBounds("Invalid fee configuration.", code="FEE_CONFIG_INVALID", details={"errors": errors})


def _deactivate_others(db: Session, keep_id: int | None) -> None:
    stmt = update(FeeConfig).where(FeeConfig.is_active.is_(True))
    if keep_id is not None:
        stmt = stmt.where(FeeConfig.id != keep_id)
    db.execute(stmt.values(is_active=False))


def create_fee_config(
    db: Session,
    payload: FeeConfigCreate,
    *,
    actor: str,
    cache: FeeConfigCache | None = None,
) -> FeeConfig:
    """Store a new configuration; activating it deactivates every other row."""

    values = {
        "platform_commission_percent": payload.platform_commission_percent,
        "minimum_gig_amount": to_decimal(payload.minimum_gig_amount),
        "maximum_gig_amount": to_decimal(payload.maximum_gig_amount),
        "escrow_auto_release_days": payload.escrow_auto_release_days,
    }
    _ensure_valid(values)

    with atomic(db):
        if payload.is_active:
            _deactivate_others(db, keep_id=None)
        row = FeeConfig(**values, is_active=payload.is_active, created_by=actor)
        db.add(row)
        db.flush()
        log_audit(
            db,
            actor=actor,
            action="FEE_CONFIG_CREATED",
            entity="FeeConfig",
            entity_id=row.id,
            data={k: str(v) for k, v in values.items()} | {"is_active": row.is_active},
        )
    if cache is not None:
        cache.invalidate()
    logger.info("Fee config created", extra={"fee_config_id": row.id, "is_active": row.is_active})
    return row


def update_fee_config(
    db: Session,
    config_id: int,
    payload: FeeConfigUpdate,
    *,
    actor: str,
    cache: FeeConfigCache | None = None,
) -> FeeConfig:
    row = db.get(FeeConfig, config_id)
    if row is None:
        raise NotFound("Fee configuration not found.", code="FEE_CONFIG_NOT_FOUND")

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    values = {
        "platform_commission_percent": changes.get(
            "platform_commission_percent", Decimal(row.platform_commission_percent)
        ),
        "minimum_gig_amount": to_decimal(changes.get("minimum_gig_amount", row.minimum_gig_amount)),
        "maximum_gig_amount": to_decimal(changes.get("maximum_gig_amount", row.maximum_gig_amount)),
        "escrow_auto_release_days": changes.get("escrow_auto_release_days", row.escrow_auto_release_days),
    }
    _ensure_valid(values)

    with atomic(db):
        for key, value in values.items():
            setattr(row, key, value)
        if "is_active" in changes:
            row.is_active = changes["is_active"]
        if row.is_active:
            _deactivate_others(db, keep_id=row.id)
        row.updated_by = actor
        log_audit(
            db,
            actor=actor,
            action="FEE_CONFIG_UPDATED",
            entity="FeeConfig",
            entity_id=row.id,
            data={k: str(v) for k, v in changes.items()},
        )
    if cache is not None:
        cache.invalidate()
    logger.info("Fee config updated", extra={"fee_config_id": row.id, "is_active": row.is_active})
    return row


def list_fee_configs(db: Session) -> list[FeeConfig]:
    return list(db.scalars(select(FeeConfig).order_by(FeeConfig.created_at.desc(), FeeConfig.id.desc())))


def ensure_gig_amount_within_bounds(amount: Decimal, config: FeeSettings) -> None:
    """Raise ``OutOfBounds`` when ``amount`` falls outside the configured gig range."""

    if amount < config.minimum_gig_amount or amount > config.maximum_gig_amount:
        raise OutOfBounds(
            f"Gig amount must be between R{config.minimum_gig_amount:,.2f} and R{config.maximum_gig_amount:,.2f}.",
            code="GIG_AMOUNT_OUT_OF_BOUNDS",
            details={
                "amount": str(amount),
                "minimum": str(config.minimum_gig_amount),
                "maximum": str(config.maximum_gig_amount),
            },
        )


__all__ = [
    "DEFAULT_FEE_SETTINGS",
    "FeeBreakdown",
    "FeeConfigCache",
    "FeeSettings",
    "calculate_fee_breakdown",
    "create_fee_config",
    "ensure_gig_amount_within_bounds",
    "get_active_fee_settings",
    "get_fee_config_cache",
    "list_fee_configs",
    "update_fee_config",
    "validate_fee_config",
]
