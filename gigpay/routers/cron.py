"""Endpoints for the external scheduler (``Authorization: Bearer <CRON_SECRET>``)."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.schemas.gig import AutoReleaseSummary
from gigpay.security import require_cron_secret
from gigpay.services import cron as cron_service
from gigpay.utils.time import utcnow

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/auto-release", response_model=AutoReleaseSummary)
def run_auto_release(db: Session = Depends(get_db)):
    return cron_service.release_due_escrows_once(db)


@router.get("/auto-release")
def auto_release_status(db: Session = Depends(get_db)) -> dict[str, object]:
    """Dry run: how many escrows would be released right now."""

    now = utcnow()
    return {"eligibleCount": cron_service.count_due_auto_releases(db, now=now), "checkedAt": now.isoformat()}


@router.post("/expire-intents")
def run_expire_intents(db: Session = Depends(get_db)) -> dict[str, int]:
    return {"expired": cron_service.expire_payment_intents_once(db)}
