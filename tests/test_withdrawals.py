from decimal import Decimal

import pytest
from sqlalchemy import func, select

from gigpay.models.history import HistoryStatus, HistoryType, PaymentHistoryEntry
from gigpay.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from gigpay.services import history as history_service
from gigpay.services import wallet as wallet_service
from gigpay.services import withdrawals as withdrawals_service
from gigpay.services.withdrawals import BankDetails, WithdrawalRateLimiter
from gigpay.utils.errors import ConsistencyError, InsufficientBalance, InvalidState, OutOfBounds, RateLimited

BANK = BankDetails(
    bank_name="Capitec",
    account_holder="Thandi Mokoena",
    account_number="1234567890",
    branch_code="470010",
)

BANK_JSON = {
    "bank_name": "Capitec",
    "account_holder": "Thandi Mokoena",
    "account_number": "1234567890",
    "branch_code": "470010",
    "account_type": "savings",
}


def _request(db_session, user, amount, **kwargs):
    return withdrawals_service.request_withdrawal(
        db_session, user_id=user.id, amount=Decimal(amount), bank_details=BANK, **kwargs
    )


def test_request_reserves_funds(db_session, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "1000.00")

    withdrawal = _request(db_session, worker, "300.00")

    assert withdrawal.status == WithdrawalStatus.PENDING
    assert withdrawal.amount == Decimal("300.00")
    assert withdrawal.currency == "ZAR"
    balance = wallet_service.get_balance(db_session, worker.id)
    assert balance.wallet_balance == Decimal("700.00")
    assert balance.total_withdrawn == Decimal("0.00")

    entry = db_session.scalars(
        select(PaymentHistoryEntry).where(PaymentHistoryEntry.withdrawal_id == withdrawal.id)
    ).one()
    assert entry.type == HistoryType.PAYMENTS
    assert entry.status == HistoryStatus.PENDING


@pytest.mark.parametrize(
    "amount, code, message",
    [
        ("49.99", "WITHDRAWAL_BELOW_MINIMUM", "Minimum withdrawal amount is R50.00"),
        ("50000.01", "WITHDRAWAL_ABOVE_MAXIMUM", "Maximum withdrawal amount is R50,000.00"),
    ],
)
def test_withdrawal_bounds(db_session, make_user, fund_wallet, amount, code, message):
    worker = make_user("worker")
    fund_wallet(worker, "60000.00")

    with pytest.raises(OutOfBounds) as exc:
        _request(db_session, worker, amount)
    assert exc.value.code == code
    assert exc.value.message == message
    assert wallet_service.get_balance(db_session, worker.id).wallet_balance == Decimal("60000.00")


def test_insufficient_funds_leaves_no_request(db_session, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "100.00")

    with pytest.raises(InsufficientBalance):
        _request(db_session, worker, "100.01")

    assert db_session.scalar(select(func.count(WithdrawalRequest.id))) == 0
    assert wallet_service.get_balance(db_session, worker.id).wallet_balance == Decimal("100.00")


def test_rate_limiter_caps_requests(db_session, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "1000.00")
    limiter = WithdrawalRateLimiter(max_requests=2)

    _request(db_session, worker, "100.00", limiter=limiter)
    _request(db_session, worker, "100.00", limiter=limiter)
    with pytest.raises(RateLimited) as exc:
        _request(db_session, worker, "100.00", limiter=limiter)

    assert exc.value.code == "WITHDRAWAL_RATE_LIMITED"
    assert exc.value.status_code == 429
    assert wallet_service.get_balance(db_session, worker.id).wallet_balance == Decimal("800.00")


def test_fourth_request_in_a_day_is_refused_without_debit(db_session, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "1000.00")

    for _ in range(3):
        _request(db_session, worker, "100.00")
    with pytest.raises(RateLimited):
        _request(db_session, worker, "100.00")

    assert wallet_service.get_balance(db_session, worker.id).wallet_balance == Decimal("700.00")


def test_idempotency_key_returns_same_request(db_session, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "500.00")

    first = _request(db_session, worker, "200.00", idempotency_key=" wd-001 ")
    second = _request(db_session, worker, "200.00", idempotency_key="wd-001")

    assert first.id == second.id
    assert wallet_service.get_balance(db_session, worker.id).wallet_balance == Decimal("300.00")


def test_idempotency_keys_are_per_user(db_session, make_user, fund_wallet):
    first_worker = make_user("worker")
    second_worker = make_user("worker")
    fund_wallet(first_worker, "500.00")
    fund_wallet(second_worker, "500.00")

    first = _request(db_session, first_worker, "100.00", idempotency_key="k1")
    second = _request(db_session, second_worker, "200.00", idempotency_key="k1")

    assert first.id != second.id
    assert second.user_id == second_worker.id
    assert second.amount == Decimal("200.00")
    assert wallet_service.get_balance(db_session, first_worker.id).wallet_balance == Decimal("400.00")
    assert wallet_service.get_balance(db_session, second_worker.id).wallet_balance == Decimal("300.00")


def test_reused_key_with_other_amount_conflicts(db_session, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "500.00")
    _request(db_session, worker, "100.00", idempotency_key="k1")

    with pytest.raises(InvalidState) as exc:
        _request(db_session, worker, "200.00", idempotency_key="k1")

    assert exc.value.code == "IDEMPOTENCY_KEY_MISMATCH"
    assert exc.value.status_code == 409
    assert db_session.scalar(select(func.count(WithdrawalRequest.id))) == 1
    assert wallet_service.get_balance(db_session, worker.id).wallet_balance == Decimal("400.00")


def test_approve_records_total_withdrawn(db_session, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "500.00")
    withdrawal = _request(db_session, worker, "200.00")

    withdrawals_service.mark_processing(db_session, withdrawal.id, actor="admin")
    approved = withdrawals_service.approve_withdrawal(db_session, withdrawal.id, actor="admin", notes="EFT sent")

    assert approved.status == WithdrawalStatus.COMPLETED
    assert approved.admin_notes == "EFT sent"
    assert approved.completed_at is not None
    balance = wallet_service.get_balance(db_session, worker.id)
    assert balance.wallet_balance == Decimal("300.00")
    assert balance.total_withdrawn == Decimal("200.00")

    with pytest.raises(InvalidState) as exc:
        withdrawals_service.approve_withdrawal(db_session, withdrawal.id, actor="admin")
    assert exc.value.code == "WITHDRAWAL_INVALID_TRANSITION"
    assert wallet_service.get_balance(db_session, worker.id).total_withdrawn == Decimal("200.00")


def test_reject_returns_reserved_funds(db_session, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "500.00")
    withdrawal = _request(db_session, worker, "200.00")

    rejected = withdrawals_service.reject_withdrawal(
        db_session, withdrawal.id, reason="Account number mismatch", actor="admin"
    )

    assert rejected.status == WithdrawalStatus.FAILED
    assert rejected.failure_reason == "Account number mismatch"
    balance = wallet_service.get_balance(db_session, worker.id)
    assert balance.wallet_balance == Decimal("500.00")
    assert balance.total_withdrawn == Decimal("0.00")

    types = db_session.scalars(
        select(PaymentHistoryEntry.type).where(
            PaymentHistoryEntry.withdrawal_id == withdrawal.id,
            PaymentHistoryEntry.status != HistoryStatus.PENDING,
        )
    ).all()
    assert sorted(t.value for t in types) == ["payments", "refunds"]


def test_failed_write_is_compensated(db_session, make_user, fund_wallet, monkeypatch):
    worker = make_user("worker")
    fund_wallet(worker, "500.00")

    def broken_add_entry(*args, **kwargs):
        raise RuntimeError("history store down")

    monkeypatch.setattr(history_service, "add_entry", broken_add_entry)

    with pytest.raises(RuntimeError):
        _request(db_session, worker, "200.00")

    assert wallet_service.get_balance(db_session, worker.id).wallet_balance == Decimal("500.00")
    withdrawal = db_session.scalars(select(WithdrawalRequest)).one()
    assert withdrawal.status == WithdrawalStatus.FAILED
    assert withdrawal.failure_reason


def test_failed_refund_raises_consistency_error(db_session, make_user, fund_wallet, monkeypatch):
    worker = make_user("worker")
    fund_wallet(worker, "500.00")

    def broken(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(history_service, "add_entry", broken)
    monkeypatch.setattr(wallet_service, "refund", broken)

    with pytest.raises(ConsistencyError) as exc:
        _request(db_session, worker, "200.00")

    assert exc.value.code == "WITHDRAWAL_REFUND_FAILED"
    assert exc.value.status_code == 500
    assert wallet_service.get_balance(db_session, worker.id).wallet_balance == Decimal("300.00")


@pytest.mark.anyio
async def test_withdrawal_api(client, admin_headers, headers_for, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "800.00")
    user_headers = headers_for(worker)

    created = await client.post(
        "/withdrawals",
        json={"user_id": worker.id, "amount": "250.00", "bank_details": BANK_JSON},
        headers={**user_headers, "Idempotency-Key": "wd-api-1"},
    )
    assert created.status_code == 201
    withdrawal_id = created.json()["id"]
    assert created.json()["status"] == "pending"
    assert "account_number" not in created.json()

    repeated = await client.post(
        "/withdrawals",
        json={"user_id": worker.id, "amount": "250.00", "bank_details": BANK_JSON},
        headers={**user_headers, "Idempotency-Key": "wd-api-1"},
    )
    assert repeated.json()["id"] == withdrawal_id

    forbidden = await client.post(f"/withdrawals/{withdrawal_id}/approve", json={}, headers=user_headers)
    assert forbidden.status_code == 403

    approved = await client.post(
        f"/withdrawals/{withdrawal_id}/approve", json={"notes": "Paid"}, headers=admin_headers
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "completed"

    listed = await client.get("/withdrawals", params={"user_id": worker.id}, headers=admin_headers)
    assert [w["id"] for w in listed.json()] == [withdrawal_id]

    wallet = await client.get(f"/users/{worker.id}/wallet", headers=user_headers)
    assert Decimal(wallet.json()["wallet_balance"]) == Decimal("550.00")
    assert Decimal(wallet.json()["total_withdrawn"]) == Decimal("250.00")


@pytest.mark.anyio
async def test_withdrawal_api_validates_bank_details(client, user_headers, make_user):
    worker = make_user("worker")
    response = await client.post(
        "/withdrawals",
        json={"user_id": worker.id, "amount": "100.00", "bank_details": {**BANK_JSON, "account_number": "12ab"}},
        headers=user_headers,
    )
    assert response.status_code == 422


@pytest.mark.anyio
async def test_user_key_cannot_withdraw_from_another_wallet(
    client, db_session, headers_for, support_headers, make_user, fund_wallet
):
    victim = make_user("worker")
    attacker = make_user("worker")
    fund_wallet(victim, "1000.00")

    response = await client.post(
        "/withdrawals",
        json={"user_id": victim.id, "amount": "900.00", "bank_details": BANK_JSON},
        headers=headers_for(attacker),
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ACTOR_MISMATCH"
    assert db_session.scalar(select(func.count(WithdrawalRequest.id))) == 0
    assert wallet_service.get_balance(db_session, victim.id).wallet_balance == Decimal("1000.00")

    own = await client.post(
        "/withdrawals",
        json={"user_id": victim.id, "amount": "100.00", "bank_details": BANK_JSON},
        headers=headers_for(victim),
    )
    assert own.status_code == 201

    peek = await client.get(f"/withdrawals/{own.json()['id']}", headers=headers_for(attacker))
    assert peek.status_code == 403
    on_behalf = await client.get(f"/withdrawals/{own.json()['id']}", headers=support_headers)
    assert on_behalf.status_code == 200


@pytest.mark.anyio
async def test_withdrawal_api_key_reuse_with_other_amount(client, headers_for, make_user, fund_wallet):
    worker = make_user("worker")
    fund_wallet(worker, "800.00")
    headers = {**headers_for(worker), "Idempotency-Key": "wd-api-2"}

    first = await client.post(
        "/withdrawals",
        json={"user_id": worker.id, "amount": "100.00", "bank_details": BANK_JSON},
        headers=headers,
    )
    assert first.status_code == 201

    second = await client.post(
        "/withdrawals",
        json={"user_id": worker.id, "amount": "200.00", "bank_details": BANK_JSON},
        headers=headers,
    )
    assert second.status_code == 409
    assert second.json()["error"]["code"] == "IDEMPOTENCY_KEY_MISMATCH"
