"""Deadline jobs run by an external trigger (``/cron/*`` endpoints or a scheduler)."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from gigpay.db import get_sessionmaker
from gigpay.schemas.gig import AutoReleaseSummary
from gigpay.services import applications as applications_service
from gigpay.services import payments as payments_service
from gigpay.utils.time import utcnow


def release_due_escrows_once(db: Session | None = None, *, now: datetime | None = None) -> AutoReleaseSummary:
    """Auto-release every escrow whose completion deadline has passed."""

    now = now or utcnow()
    if db is not None:
        return applications_service.process_all_auto_releases(db, now=now)

    session: Session = get_sessionmaker()()
    try:
        return applications_service.process_all_auto_releases(session, now=now)
    finally:
        session.close()


def expire_payment_intents_once(db: Session | None = None, *, now: datetime | None = None) -> int:
    """Expire payment intents whose checkout window has elapsed."""

    now = now or utcnow()
    if db is not None:
        return payments_service.expire_payment_intents_once(db, now=now)

    session: Session = get_sessionmaker()()
    try:
        return payments_service.expire_payment_intents_once(session, now=now)
    finally:
        session.close()


def count_due_auto_releases(db: Session, *, now: datetime | None = None) -> int:
    return len(applications_service.applications_eligible_for_auto_release(db, now=now or utcnow()))


__all__ = ["count_due_auto_releases", "expire_payment_intents_once", "release_due_escrows_once"]
