"""Seed a local database with an employer, a worker, an open gig and the default fee configuration."""
from __future__ import annotations

from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from gigpay import models
from gigpay.config import get_settings
from gigpay.db import create_all, get_sessionmaker
from gigpay.services import wallet as wallet_service
from gigpay.services.fee_config import DEFAULT_FEE_SETTINGS


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    create_all()
    session = get_sessionmaker()()

    try:
        employer = models.User(username="thandi", email="thandi@example.com")
        worker = models.User(username="sipho", email="sipho@example.com")
        session.add_all([employer, worker])
        session.flush()

        for user in (employer, worker):
            wallet_service.ensure_wallet(session, user.id)

        session.add(
            models.FeeConfig(
                platform_commission_percent=DEFAULT_FEE_SETTINGS.platform_commission_percent,
                minimum_gig_amount=DEFAULT_FEE_SETTINGS.minimum_gig_amount,
                maximum_gig_amount=DEFAULT_FEE_SETTINGS.maximum_gig_amount,
                escrow_auto_release_days=DEFAULT_FEE_SETTINGS.escrow_auto_release_days,
                is_active=True,
                created_by="seed",
            )
        )
        session.add(
            models.Gig(
                employer_id=employer.id,
                title="Garden clean-up",
                description="Two hours of weeding and hedge trimming.",
                budget=Decimal("450.00"),
                max_applicants=5,
            )
        )
        session.commit()
        print("Seed data inserted.")
    finally:
        session.close()


if __name__ == "__main__":
    main()
