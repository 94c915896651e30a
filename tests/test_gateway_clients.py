import json
from decimal import Decimal
from types import SimpleNamespace
from urllib.parse import parse_qs

import httpx
import pytest

from gigpay.config import get_settings
from gigpay.dependencies import get_paystack_client, get_tradesafe_client
from gigpay.main import app
from gigpay.services import paystack, tradesafe
from gigpay.services.paystack import PaystackClient
from gigpay.services.tradesafe import TradeSafeClient
from gigpay.utils.errors import GatewayError


def test_paystack_initialize_sends_cents_and_bearer():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"status": True, "data": {"authorization_url": "https://checkout.paystack.com/x", "reference": "GIG_1"}},
        )

    client = PaystackClient(get_settings(), transport=httpx.MockTransport(handler))
    data = client.initialize_transaction(
        email="employer@example.com", amount=Decimal("1234.56"), reference="GIG_1", metadata={"gigId": "7"}
    )

    assert data["authorization_url"] == "https://checkout.paystack.com/x"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/transaction/initialize"
    assert request.headers["Authorization"] == "Bearer sk_test_gigpay"
    body = json.loads(request.content)
    assert body["amount"] == 123456
    assert body["currency"] == "ZAR"
    assert body["metadata"] == {"gigId": "7"}


def test_paystack_verify_converts_amounts():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": True, "data": {"id": 1, "amount": 10050, "fees": 151}})

    client = PaystackClient(get_settings(), transport=httpx.MockTransport(handler))
    data = client.verify_transaction("GIG_2")

    assert data["amount_decimal"] == Decimal("100.50")
    assert data["fees_decimal"] == Decimal("1.51")


def test_paystack_rejection_surfaces_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"status": False, "message": "Invalid email address"})

    client = PaystackClient(get_settings(), transport=httpx.MockTransport(handler))
    with pytest.raises(GatewayError) as exc:
        client.initialize_transaction(email="nope", amount=Decimal("10"), reference="GIG_3")

    assert exc.value.code == "PAYSTACK_ERROR"
    assert exc.value.message == "Invalid email address"
    assert exc.value.status_code == 502


def test_paystack_network_error_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = PaystackClient(get_settings(), transport=httpx.MockTransport(handler))
    with pytest.raises(GatewayError) as exc:
        client.verify_transaction("GIG_4")
    assert exc.value.code == "PAYSTACK_UNAVAILABLE"


def test_paystack_signature_check():
    body = b'{"event":"charge.success"}'
    signature = paystack.compute_signature("sk_test_gigpay", body)

    assert len(signature) == 128
    assert paystack.verify_webhook_signature(body, signature, secret="sk_test_gigpay")
    assert not paystack.verify_webhook_signature(body + b" ", signature, secret="sk_test_gigpay")
    assert not paystack.verify_webhook_signature(body, None, secret="sk_test_gigpay")
    assert not paystack.verify_webhook_signature(body, signature, secret=None)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _tradesafe(handler, clock=None) -> TradeSafeClient:
    return TradeSafeClient(get_settings(), transport=httpx.MockTransport(handler), clock=clock or FakeClock())


def test_tradesafe_token_is_cached_until_refresh_margin():
    auth_calls = []
    clock = FakeClock()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.tradesafe.co.za":
            auth_calls.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"access_token": f"token-{len(auth_calls)}", "expires_in": 3600})
        assert request.headers["Authorization"] == f"Bearer token-{len(auth_calls)}"
        return httpx.Response(200, json={"data": {"checkoutLink": "https://pay.tradesafe.co.za/c/1"}})

    client = _tradesafe(handler, clock)

    assert client.get_checkout_link("txn-1") == "https://pay.tradesafe.co.za/c/1"
    clock.now += 3000
    client.get_checkout_link("txn-1")
    assert len(auth_calls) == 1
    assert auth_calls[0]["grant_type"] == ["client_credentials"]
    assert auth_calls[0]["client_id"] == ["ts-client"]

    clock.now += 301
    client.get_checkout_link("txn-1")
    assert len(auth_calls) == 2


def test_tradesafe_graphql_errors_raise():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.tradesafe.co.za":
            return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
        return httpx.Response(200, json={"errors": [{"message": "Token not found"}]})

    with pytest.raises(GatewayError) as exc:
        _tradesafe(handler).get_transaction("missing")
    assert exc.value.code == "TRADESAFE_GRAPHQL_ERROR"
    assert exc.value.message == "TradeSafe GraphQL error: Token not found"


def test_tradesafe_auth_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid_client"})

    with pytest.raises(GatewayError) as exc:
        _tradesafe(handler).get_checkout_link("txn")
    assert exc.value.code == "TRADESAFE_AUTH_FAILED"


def test_tradesafe_create_transaction_without_agent():
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.tradesafe.co.za":
            return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"data": {"transactionCreate": {"id": "ts-99", "state": "CREATED"}}})

    transaction = _tradesafe(handler).create_transaction(
        title="Paint fence",
        description="Two coats",
        value=Decimal("750"),
        reference="GIG_ABC",
        buyer_token="buyer-token",
        seller_token="seller-token",
        agent_fee_percent=Decimal("10"),
    )

    assert transaction == {"id": "ts-99", "state": "CREATED"}
    payload = sent[0]["variables"]["input"]
    assert payload["feeAllocation"] == "SELLER"
    assert [p["role"] for p in payload["parties"]["create"]] == ["BUYER", "SELLER"]
    assert payload["allocations"]["create"][0]["value"] == 750.0
    assert payload["reference"] == "GIG_ABC"


def test_tradesafe_webhook_parsing_and_signature():
    body = json.dumps({"transaction": {"id": "ts-1", "state": "FUNDS_RECEIVED", "reference": "GIG_Z"}}).encode()
    parsed = tradesafe.parse_webhook(body)

    assert parsed["transaction_id"] == "ts-1"
    assert parsed["state"] == "FUNDS_RECEIVED"
    assert parsed["reference"] == "GIG_Z"
    assert parsed["allocation_id"] is None

    signature = tradesafe.compute_signature("ts-secret", body)
    assert len(signature) == 64
    assert tradesafe.verify_webhook_signature(body, signature, secret="ts-secret")
    assert not tradesafe.verify_webhook_signature(body, signature, secret="other")


@pytest.mark.anyio
async def test_gateway_clients_live_for_the_app_lifespan(monkeypatch):
    closed = []

    def tracking(cls, label):
        original = cls.close

        def close(self):
            closed.append(label)
            original(self)

        monkeypatch.setattr(cls, "close", close)

    tracking(PaystackClient, "paystack")
    tracking(TradeSafeClient, "tradesafe")
    request = SimpleNamespace(app=app)

    async with app.router.lifespan_context(app):
        paystack_client = get_paystack_client(request)
        tradesafe_client = get_tradesafe_client(request)
        assert isinstance(paystack_client, PaystackClient)
        assert isinstance(tradesafe_client, TradeSafeClient)
        assert get_paystack_client(request) is paystack_client
        assert get_tradesafe_client(request) is tradesafe_client
        assert closed == []

    assert sorted(closed) == ["paystack", "tradesafe"]
    assert get_paystack_client(request) is None
    assert get_tradesafe_client(request) is None
