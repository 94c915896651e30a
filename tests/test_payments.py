import json
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from gigpay.config import get_settings
from gigpay.dependencies import get_paystack_client
from gigpay.main import app
from gigpay.models.gig import GigStatus
from gigpay.models.payment import Payment, PaymentIntentStatus, PaymentProvider, PaymentStatus
from gigpay.services import escrow as escrow_service
from gigpay.services import payments as payments_service
from gigpay.services.paystack import PaystackClient
from gigpay.utils.errors import InvalidState
from gigpay.utils.time import as_utc, utcnow


def _paystack(handler) -> PaystackClient:
    return PaystackClient(get_settings(), transport=httpx.MockTransport(handler))


def test_intent_pins_payable_rate_and_expiry(db_session, make_hired_gig):
    hired = make_hired_gig(budget="600.00", rate="550.00")
    now = utcnow()

    intent = payments_service.create_payment_intent(
        db_session, gig_id=hired.gig.id, employer_id=hired.employer.id, now=now
    )

    assert intent.reference.startswith("GIG_")
    assert intent.amount == Decimal("550.00")
    assert intent.status == PaymentIntentStatus.CREATED
    assert intent.worker_id == hired.worker.id
    assert as_utc(intent.expires_at) == now + timedelta(minutes=30)


def test_live_intent_is_reused(db_session, make_hired_gig):
    hired = make_hired_gig()
    first = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)
    second = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)
    assert first.id == second.id


def test_expired_intent_is_not_reused(db_session, make_hired_gig):
    hired = make_hired_gig()
    stale = payments_service.create_payment_intent(
        db_session, gig_id=hired.gig.id, employer_id=hired.employer.id, now=utcnow() - timedelta(hours=1)
    )
    fresh = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)
    assert fresh.id != stale.id


def test_intent_requires_hired_gig(db_session, make_user, make_gig):
    employer = make_user("employer")
    gig = make_gig(employer)
    with pytest.raises(InvalidState) as exc:
        payments_service.create_payment_intent(db_session, gig_id=gig.id, employer_id=employer.id)
    assert exc.value.code == "GIG_NOT_PAYABLE"


def test_process_payment_funds_gig_once(db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)

    payment = payments_service.process_payment(
        db_session,
        reference=intent.reference,
        provider_txn_id="ps-1001",
        gross_amount=Decimal("515.00"),
        fees=Decimal("15.00"),
    )
    assert payment.amount == Decimal("500.00")
    assert payment.gross_amount == Decimal("515.00")
    assert payment.fees == Decimal("15.00")
    assert payment.provider == PaymentProvider.PAYSTACK
    assert payment.status == PaymentStatus.PROCESSING
    assert intent.status == PaymentIntentStatus.SUCCEEDED
    assert intent.payment_id == payment.id
    assert hired.gig.status == GigStatus.FUNDED

    again = payments_service.process_payment(
        db_session, reference=intent.reference, provider_txn_id="ps-1001", gross_amount=Decimal("515.00")
    )
    assert again.id == payment.id

    other_txn = payments_service.process_payment(
        db_session, reference=intent.reference, provider_txn_id="ps-1002", gross_amount=Decimal("515.00")
    )
    assert other_txn.id == payment.id


def test_expired_intent_is_refused_and_marked(db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(
        db_session, gig_id=hired.gig.id, employer_id=hired.employer.id, now=utcnow() - timedelta(hours=1)
    )

    with pytest.raises(InvalidState) as exc:
        payments_service.process_payment(
            db_session, reference=intent.reference, provider_txn_id="ps-late", gross_amount=Decimal("500.00")
        )
    assert exc.value.code == "PAYMENT_INTENT_EXPIRED"

    db_session.refresh(intent)
    assert intent.status == PaymentIntentStatus.EXPIRED
    db_session.refresh(hired.gig)
    assert hired.gig.status == GigStatus.IN_PROGRESS

    with pytest.raises(InvalidState) as exc:
        payments_service.process_payment(
            db_session, reference=intent.reference, provider_txn_id="ps-later", gross_amount=Decimal("500.00")
        )
    assert exc.value.code == "PAYMENT_INTENT_CLOSED"


def test_funding_rechecks_intent_closed_by_another_session(db_session, session_factory, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)

    other = session_factory()
    try:
        assert payments_service.expire_payment_intents_once(other, now=utcnow() + timedelta(hours=1)) == 1
    finally:
        other.close()
    assert intent.status == PaymentIntentStatus.CREATED

    with pytest.raises(InvalidState) as exc:
        escrow_service.fund_gig(
            db_session,
            gig_id=hired.gig.id,
            employer_id=hired.employer.id,
            gross_amount=Decimal("500.00"),
            provider=PaymentProvider.PAYSTACK,
            provider_txn_id="ps-stale",
            intent=intent,
        )
    assert exc.value.code == "PAYMENT_INTENT_CLOSED"
    db_session.refresh(hired.gig)
    assert hired.gig.status == GigStatus.IN_PROGRESS
    assert db_session.scalar(select(func.count(Payment.id))) == 0


def test_funding_refuses_intent_that_expired_meanwhile(db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)

    with pytest.raises(InvalidState) as exc:
        escrow_service.fund_gig(
            db_session,
            gig_id=hired.gig.id,
            employer_id=hired.employer.id,
            gross_amount=Decimal("500.00"),
            provider=PaymentProvider.PAYSTACK,
            provider_txn_id="ps-slow",
            intent=intent,
            now=as_utc(intent.expires_at) + timedelta(seconds=1),
        )
    assert exc.value.code == "PAYMENT_INTENT_EXPIRED"
    db_session.refresh(hired.gig)
    assert hired.gig.status == GigStatus.IN_PROGRESS
    assert db_session.scalar(select(func.count(Payment.id))) == 0


def test_expire_payment_intents_once(db_session, make_hired_gig):
    stale_gig = make_hired_gig()
    live_gig = make_hired_gig()
    stale = payments_service.create_payment_intent(
        db_session, gig_id=stale_gig.gig.id, employer_id=stale_gig.employer.id, now=utcnow() - timedelta(hours=2)
    )
    live = payments_service.create_payment_intent(db_session, gig_id=live_gig.gig.id, employer_id=live_gig.employer.id)

    assert payments_service.expire_payment_intents_once(db_session) == 1
    assert stale.status == PaymentIntentStatus.EXPIRED
    assert stale.failure_reason == "expired"
    assert live.status == PaymentIntentStatus.CREATED
    assert payments_service.expire_payment_intents_once(db_session) == 0


def test_paystack_checkout_stores_authorization_url(db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": "https://checkout.paystack.com/abc123",
                    "access_code": "abc123",
                    "reference": intent.reference,
                },
            },
        )

    payments_service.start_paystack_checkout(db_session, intent, _paystack(handler))

    assert intent.status == PaymentIntentStatus.PROCESSING
    assert intent.checkout_url == "https://checkout.paystack.com/abc123"
    body = json.loads(seen[0].content)
    assert body["amount"] == 50000
    assert body["email"] == hired.employer.email
    assert body["metadata"]["gigId"] == str(hired.gig.id)


def test_verify_paystack_payment_funds_gig(db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/transaction/verify/{intent.reference}"
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {"id": 4242, "status": "success", "amount": 50000, "fees": 750, "reference": intent.reference},
            },
        )

    payment = payments_service.verify_paystack_payment(db_session, intent.reference, _paystack(handler))

    assert payment.provider_txn_id == "4242"
    assert payment.gross_amount == Decimal("500.00")
    assert payment.fees == Decimal("7.50")
    assert payment.verified_via == "verify"


def test_verify_refuses_unsuccessful_charge(db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": True, "data": {"id": 1, "status": "abandoned", "amount": 50000}})

    with pytest.raises(InvalidState) as exc:
        payments_service.verify_paystack_payment(db_session, intent.reference, _paystack(handler))
    assert exc.value.code == "PAYMENT_NOT_SUCCESSFUL"


@pytest.mark.anyio
async def test_intent_and_manual_process_api(client, auth_headers, admin_headers, user_headers, headers_for, make_hired_gig):
    hired = make_hired_gig()

    as_worker = await client.post(
        "/payments/intents",
        json={"gig_id": hired.gig.id, "employer_id": hired.employer.id, "provider": "paystack"},
        headers=headers_for(hired.worker),
    )
    assert as_worker.status_code == 403

    created = await client.post(
        "/payments/intents",
        json={"gig_id": hired.gig.id, "employer_id": hired.employer.id, "provider": "paystack"},
        headers=headers_for(hired.employer),
    )
    assert created.status_code == 201
    reference = created.json()["reference"]
    assert created.json()["status"] == "created"

    fetched = await client.get(f"/payments/intents/{reference}", headers=user_headers)
    assert fetched.json()["id"] == created.json()["id"]

    not_admin = await client.post(
        "/payments/process",
        json={"reference": reference, "provider_txn_id": "manual-1", "gross_amount": "500.00"},
        headers=user_headers,
    )
    assert not_admin.status_code == 403

    processed = await client.post(
        "/payments/process",
        json={"reference": reference, "provider_txn_id": "manual-1", "gross_amount": "500.00"},
        headers={**admin_headers, "Idempotency-Key": "bank-ref-778"},
    )
    assert processed.status_code == 200
    assert processed.json()["verified_via"] == "manual"
    payment_id = processed.json()["id"]

    retried = await client.post(
        "/payments/process",
        json={"reference": reference, "provider_txn_id": "manual-2", "gross_amount": "500.00"},
        headers={**admin_headers, "Idempotency-Key": "bank-ref-778"},
    )
    assert retried.json()["id"] == payment_id

    payment = await client.get(f"/payments/{payment_id}", headers=auth_headers)
    assert payment.json()["escrow_status"] == "funded"


@pytest.mark.anyio
async def test_verify_endpoint_needs_paystack(client, user_headers):
    response = await client.post("/payments/verify/GIG_UNKNOWN", headers=user_headers)
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "PAYSTACK_NOT_CONFIGURED"


@pytest.mark.anyio
async def test_verify_endpoint_with_paystack(client, db_session, user_headers, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"status": True, "data": {"id": 9001, "status": "success", "amount": 50000, "fees": 0}},
        )

    app.dependency_overrides[get_paystack_client] = lambda: _paystack(handler)
    response = await client.post(f"/payments/verify/{intent.reference}", headers=user_headers)
    assert response.status_code == 200
    assert response.json()["gig_id"] == hired.gig.id
    assert response.json()["verified_via"] == "verify"
