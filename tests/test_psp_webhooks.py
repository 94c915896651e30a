import json
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from gigpay.models.escrow import EscrowStatus
from gigpay.models.gig import GigStatus
from gigpay.models.payment import Payment, PaymentIntentStatus, PaymentProvider
from gigpay.models.psp_webhook import PSPWebhookEvent
from gigpay.services import escrow as escrow_service
from gigpay.services import payments as payments_service
from gigpay.services import paystack, tradesafe
from gigpay.services import wallet as wallet_service

PAYSTACK_SECRET = "sk_test_gigpay"
TRADESAFE_SECRET = "ts-secret"


def _paystack_body(event: str, **data) -> bytes:
    return json.dumps({"event": event, "data": data}).encode()


def _paystack_headers(body: bytes) -> dict[str, str]:
    return {
        paystack.SIGNATURE_HEADER: paystack.compute_signature(PAYSTACK_SECRET, body),
        "Content-Type": "application/json",
    }


def _tradesafe_headers(body: bytes) -> dict[str, str]:
    return {
        tradesafe.SIGNATURE_HEADER: tradesafe.compute_signature(TRADESAFE_SECRET, body),
        "Content-Type": "application/json",
    }


@pytest.mark.anyio
async def test_paystack_charge_success_funds_gig_once(client, db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)
    body = _paystack_body(
        "charge.success", id=987654, reference=intent.reference, status="success", amount=50000, fees=750
    )

    response = await client.post("/psp/paystack/webhook", content=body, headers=_paystack_headers(body))
    assert response.status_code == 200
    assert response.json() == {"received": True, "duplicate": False}

    payment = db_session.scalars(select(Payment).where(Payment.gig_id == hired.gig.id)).one()
    assert payment.provider_txn_id == "987654"
    assert payment.fees == Decimal("7.50")
    assert payment.verified_via == "webhook"
    assert hired.gig.status == GigStatus.FUNDED
    assert intent.status == PaymentIntentStatus.SUCCEEDED

    event = db_session.scalars(select(PSPWebhookEvent)).one()
    assert event.event_id == "charge.success:987654"
    assert event.processed_at is not None

    again = await client.post("/psp/paystack/webhook", content=body, headers=_paystack_headers(body))
    assert again.json() == {"received": True, "duplicate": True}
    assert db_session.scalar(select(func.count(Payment.id))) == 1


@pytest.mark.anyio
async def test_paystack_bad_signature_is_rejected(client, db_session):
    body = _paystack_body("charge.success", id=1, reference="GIG_X", amount=100)
    response = await client.post(
        "/psp/paystack/webhook",
        content=body,
        headers={paystack.SIGNATURE_HEADER: "deadbeef", "Content-Type": "application/json"},
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "PAYSTACK_SIGNATURE_INVALID"
    assert db_session.scalar(select(func.count(PSPWebhookEvent.id))) == 0


@pytest.mark.anyio
async def test_paystack_charge_failed_closes_intent(client, db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)
    body = _paystack_body("charge.failed", id=555, reference=intent.reference, status="failed")

    response = await client.post("/psp/paystack/webhook", content=body, headers=_paystack_headers(body))

    assert response.status_code == 200
    assert intent.status == PaymentIntentStatus.FAILED
    assert intent.failure_reason == "Payment failed: failed"
    assert hired.gig.status == GigStatus.IN_PROGRESS


@pytest.mark.anyio
async def test_paystack_metadata_fallback_without_intent(client, db_session, make_hired_gig):
    hired = make_hired_gig()
    body = _paystack_body(
        "charge.success",
        id=31337,
        reference="external-checkout-1",
        status="success",
        amount=50000,
        metadata={"gigId": str(hired.gig.id), "employerId": str(hired.employer.id)},
    )

    response = await client.post("/psp/paystack/webhook", content=body, headers=_paystack_headers(body))

    assert response.status_code == 200
    payment = db_session.scalars(select(Payment).where(Payment.gig_id == hired.gig.id)).one()
    assert payment.provider == PaymentProvider.PAYSTACK
    assert payment.provider_txn_id == "31337"
    assert wallet_service.get_balance(db_session, hired.worker.id).pending_balance == Decimal("500.00")


@pytest.mark.anyio
async def test_paystack_underpayment_keeps_event_retryable(client, db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = payments_service.create_payment_intent(db_session, gig_id=hired.gig.id, employer_id=hired.employer.id)
    body = _paystack_body("charge.success", id=42, reference=intent.reference, status="success", amount=40000)

    response = await client.post("/psp/paystack/webhook", content=body, headers=_paystack_headers(body))

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "FUNDING_AMOUNT_MISMATCH"
    assert db_session.scalar(select(func.count(PSPWebhookEvent.id))) == 0
    assert db_session.scalar(select(func.count(Payment.id))) == 0


@pytest.mark.anyio
async def test_paystack_unhandled_event_is_recorded(client, db_session):
    body = _paystack_body("transfer.success", id=77, reference="TRF_1")
    response = await client.post("/psp/paystack/webhook", content=body, headers=_paystack_headers(body))
    assert response.status_code == 200
    event = db_session.scalars(select(PSPWebhookEvent)).one()
    assert event.kind == "transfer.success"
    assert event.processed_at is not None


def _tradesafe_intent(db_session, hired, transaction_id):
    intent = payments_service.create_payment_intent(
        db_session, gig_id=hired.gig.id, employer_id=hired.employer.id, provider=PaymentProvider.TRADESAFE
    )
    intent.provider_txn_id = transaction_id
    intent.status = PaymentIntentStatus.PROCESSING
    db_session.commit()
    return intent


@pytest.mark.anyio
async def test_tradesafe_funding_then_completion_releases(client, db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = _tradesafe_intent(db_session, hired, "ts-txn-1")

    funded = json.dumps({"transaction": {"id": "ts-txn-1", "state": "FUNDS_RECEIVED", "value": 500}}).encode()
    response = await client.post("/psp/tradesafe/webhook", content=funded, headers=_tradesafe_headers(funded))
    assert response.status_code == 200

    payment = db_session.scalars(select(Payment).where(Payment.provider_txn_id == "ts-txn-1")).one()
    assert payment.provider == PaymentProvider.TRADESAFE
    assert intent.status == PaymentIntentStatus.SUCCEEDED
    assert escrow_service.get_escrow_for_gig(db_session, hired.gig.id).status == EscrowStatus.ACTIVE

    completed = json.dumps({"transaction": {"id": "ts-txn-1", "state": "COMPLETED"}}).encode()
    response = await client.post("/psp/tradesafe/webhook", content=completed, headers=_tradesafe_headers(completed))
    assert response.status_code == 200

    assert escrow_service.get_escrow_for_gig(db_session, hired.gig.id).status == EscrowStatus.RELEASED
    assert wallet_service.get_balance(db_session, hired.worker.id).wallet_balance == Decimal("500.00")

    events = db_session.scalars(select(PSPWebhookEvent.event_id).order_by(PSPWebhookEvent.id)).all()
    assert events == ["ts-txn-1:FUNDS_RECEIVED", "ts-txn-1:COMPLETED"]


@pytest.mark.anyio
async def test_tradesafe_cancellation_fails_intent(client, db_session, make_hired_gig):
    hired = make_hired_gig()
    intent = _tradesafe_intent(db_session, hired, "ts-txn-2")

    body = json.dumps({"transactionId": "ts-txn-2", "state": "CANCELLED"}).encode()
    response = await client.post("/psp/tradesafe/webhook", content=body, headers=_tradesafe_headers(body))

    assert response.status_code == 200
    assert intent.status == PaymentIntentStatus.FAILED
    assert intent.failure_reason == "Cancelled at TradeSafe"


@pytest.mark.anyio
async def test_tradesafe_webhook_requires_transaction_id(client, db_session):
    body = json.dumps({"state": "FUNDS_RECEIVED"}).encode()
    response = await client.post("/psp/tradesafe/webhook", content=body, headers=_tradesafe_headers(body))
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "WEBHOOK_PAYLOAD_INVALID"


@pytest.mark.anyio
async def test_tradesafe_bad_signature_is_rejected(client):
    body = json.dumps({"transaction": {"id": "ts-txn-3", "state": "COMPLETED"}}).encode()
    response = await client.post(
        "/psp/tradesafe/webhook",
        content=body,
        headers={tradesafe.SIGNATURE_HEADER: "nope", "Content-Type": "application/json"},
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "TRADESAFE_SIGNATURE_INVALID"
