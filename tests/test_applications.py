from decimal import Decimal

import pytest

from gigpay.models.gig import ApplicationStatus, GigStatus, RateParty, RateStatus
from gigpay.services import applications as applications_service
from gigpay.services import gigs as gigs_service
from gigpay.utils.errors import InvalidState, OutOfBounds, Unauthorized


def _apply(db_session, gig, worker, rate="500.00"):
    return applications_service.create_application(
        db_session, gig_id=gig.id, applicant_id=worker.id, proposed_rate=Decimal(rate)
    )


def test_apply_to_open_gig(db_session, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)

    application = _apply(db_session, gig, worker, rate="480")
    assert application.status == ApplicationStatus.PENDING
    assert application.rate_status == RateStatus.PROPOSED
    assert application.proposed_rate == Decimal("480.00")
    assert application.payable_rate == Decimal("480.00")


def test_cannot_apply_to_own_gig(db_session, make_user, make_gig):
    employer = make_user("employer")
    gig = make_gig(employer)
    with pytest.raises(InvalidState) as exc:
        _apply(db_session, gig, employer)
    assert exc.value.code == "OWN_GIG"


def test_cannot_apply_twice(db_session, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)
    _apply(db_session, gig, worker)
    with pytest.raises(InvalidState) as exc:
        _apply(db_session, gig, worker)
    assert exc.value.code == "ALREADY_APPLIED"


@pytest.mark.parametrize(
    "rate, code, message",
    [
        ("0", "RATE_NOT_POSITIVE", "Rate must be greater than 0"),
        ("100000.01", "RATE_TOO_HIGH", "Rate cannot exceed R100,000"),
    ],
)
def test_rate_bounds(db_session, make_user, make_gig, rate, code, message):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)
    with pytest.raises(OutOfBounds) as exc:
        _apply(db_session, gig, worker, rate=rate)
    assert exc.value.code == code
    assert exc.value.message == message


def test_last_slot_moves_gig_to_reviewing_and_withdraw_reopens(db_session, make_user, make_gig):
    employer = make_user("employer")
    first, second, third = make_user("worker"), make_user("worker"), make_user("worker")
    gig = make_gig(employer, max_applicants=2)

    first_application = _apply(db_session, gig, first)
    assert gig.status == GigStatus.OPEN
    _apply(db_session, gig, second)
    assert gig.status == GigStatus.REVIEWING

    with pytest.raises(InvalidState) as exc:
        _apply(db_session, gig, third)
    assert exc.value.code == "GIG_NOT_OPEN"

    applications_service.withdraw_application(db_session, first_application.id, applicant_id=first.id)
    assert first_application.status == ApplicationStatus.WITHDRAWN
    assert gig.status == GigStatus.OPEN

    _apply(db_session, gig, third)
    assert gig.status == GigStatus.REVIEWING


def test_accept_rejects_other_pending_applications(db_session, make_user, make_gig):
    employer = make_user("employer")
    chosen, other = make_user("worker"), make_user("worker")
    gig = make_gig(employer)
    chosen_application = _apply(db_session, gig, chosen)
    other_application = _apply(db_session, gig, other)

    applications_service.accept_application(db_session, chosen_application.id, employer_id=employer.id)

    assert chosen_application.status == ApplicationStatus.ACCEPTED
    assert other_application.status == ApplicationStatus.REJECTED
    assert gig.status == GigStatus.IN_PROGRESS
    assert gig.assigned_worker_id == chosen.id

    with pytest.raises(InvalidState) as exc:
        applications_service.accept_application(db_session, other_application.id, employer_id=employer.id)
    assert exc.value.code == "APPLICATION_ALREADY_ACCEPTED"


def test_only_the_employer_can_accept(db_session, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)
    application = _apply(db_session, gig, worker)

    with pytest.raises(Unauthorized) as exc:
        applications_service.accept_application(db_session, application.id, employer_id=worker.id)
    assert exc.value.code == "NOT_GIG_OWNER"
    assert exc.value.status_code == 403


def test_rejecting_accepted_application_reopens_gig(db_session, make_hired_gig):
    hired = make_hired_gig()
    applications_service.reject_application(db_session, hired.application.id, employer_id=hired.employer.id)

    assert hired.application.status == ApplicationStatus.REJECTED
    assert hired.gig.status == GigStatus.OPEN
    assert hired.gig.assigned_worker_id is None


def test_only_pending_applications_can_be_withdrawn(db_session, make_hired_gig):
    hired = make_hired_gig()
    with pytest.raises(InvalidState) as exc:
        applications_service.withdraw_application(db_session, hired.application.id, applicant_id=hired.worker.id)
    assert exc.value.code == "APPLICATION_NOT_PENDING"


def test_rate_negotiation_counter_then_confirm(db_session, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)
    application = _apply(db_session, gig, worker, rate="500")

    applications_service.update_application_rate(
        db_session, application.id, amount=Decimal("450"), by=RateParty.EMPLOYER, actor_id=employer.id, note=" tight budget "
    )
    assert application.rate_status == RateStatus.COUNTERED
    assert application.last_rate_update_by == RateParty.EMPLOYER
    assert application.last_rate_update_amount == Decimal("450.00")
    assert application.last_rate_update_note == "tight budget"

    with pytest.raises(InvalidState) as exc:
        applications_service.confirm_application_rate(
            db_session, application.id, by=RateParty.EMPLOYER, actor_id=employer.id
        )
    assert exc.value.message == "You cannot confirm your own rate proposal"

    applications_service.confirm_application_rate(db_session, application.id, by=RateParty.WORKER, actor_id=worker.id)
    assert application.rate_status == RateStatus.AGREED
    assert application.agreed_rate == Decimal("450.00")
    assert application.payable_rate == Decimal("450.00")

    with pytest.raises(InvalidState) as exc:
        applications_service.update_application_rate(
            db_session, application.id, amount=Decimal("470"), by=RateParty.WORKER, actor_id=worker.id
        )
    assert exc.value.message == "Rate is already agreed"


def test_worker_cannot_confirm_own_initial_proposal(db_session, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)
    application = _apply(db_session, gig, worker)

    with pytest.raises(InvalidState) as exc:
        applications_service.confirm_application_rate(
            db_session, application.id, by=RateParty.WORKER, actor_id=worker.id
        )
    assert exc.value.code == "OWN_RATE_PROPOSAL"

    applications_service.confirm_application_rate(
        db_session, application.id, by=RateParty.EMPLOYER, actor_id=employer.id
    )
    assert application.agreed_rate == Decimal("500.00")


def test_rate_update_requires_matching_party(db_session, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)
    application = _apply(db_session, gig, worker)

    with pytest.raises(Unauthorized) as exc:
        applications_service.update_application_rate(
            db_session, application.id, amount=Decimal("400"), by=RateParty.WORKER, actor_id=employer.id
        )
    assert exc.value.message == "Unauthorized: Only the applicant can update rate as worker"


def test_accept_with_rate_agrees_on_worker_counter(db_session, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)
    application = _apply(db_session, gig, worker, rate="500")
    applications_service.update_application_rate(
        db_session, application.id, amount=Decimal("480"), by=RateParty.WORKER, actor_id=worker.id
    )

    applications_service.accept_application_with_rate(db_session, application.id, employer_id=employer.id)

    assert application.status == ApplicationStatus.ACCEPTED
    assert application.rate_status == RateStatus.AGREED
    assert application.agreed_rate == Decimal("480.00")
    assert gig.status == GigStatus.IN_PROGRESS


def test_cancel_gig_rejects_open_applications(db_session, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)
    application = _apply(db_session, gig, worker)

    gigs_service.cancel_gig(db_session, gig.id, employer_id=employer.id)

    assert gig.status == GigStatus.CANCELLED
    assert application.status == ApplicationStatus.REJECTED


def test_gig_budget_outside_bounds_is_refused(db_session, make_user, make_gig):
    employer = make_user("employer")
    with pytest.raises(OutOfBounds) as exc:
        make_gig(employer, budget="50.00")
    assert exc.value.code == "GIG_AMOUNT_OUT_OF_BOUNDS"


@pytest.mark.anyio
async def test_application_api_flow(client, auth_headers, make_user, make_gig):
    employer, worker = make_user("employer"), make_user("worker")
    gig = make_gig(employer)

    applied = await client.post(
        f"/gigs/{gig.id}/applications",
        json={"applicant_id": worker.id, "proposed_rate": "520.00", "message": "Available this weekend"},
        headers=auth_headers,
    )
    assert applied.status_code == 201
    application_id = applied.json()["id"]

    countered = await client.post(
        f"/applications/{application_id}/rate",
        json={"amount": "490.00", "by": "employer", "actor_id": employer.id},
        headers=auth_headers,
    )
    assert countered.status_code == 200
    assert countered.json()["rate_status"] == "countered"

    confirmed = await client.post(
        f"/applications/{application_id}/rate/confirm",
        json={"by": "worker", "actor_id": worker.id},
        headers=auth_headers,
    )
    assert confirmed.status_code == 200
    assert Decimal(confirmed.json()["agreed_rate"]) == Decimal("490.00")

    accepted = await client.post(
        f"/applications/{application_id}/accept",
        json={"employer_id": employer.id},
        headers=auth_headers,
    )
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"

    gig_view = await client.get(f"/gigs/{gig.id}", headers=auth_headers)
    assert gig_view.json()["status"] == "in-progress"
    assert gig_view.json()["assigned_worker_id"] == worker.id

    listed = await client.get(f"/gigs/{gig.id}/applications", headers=auth_headers)
    assert [a["id"] for a in listed.json()] == [application_id]


@pytest.mark.anyio
async def test_own_gig_application_returns_conflict(client, auth_headers, make_user, make_gig):
    employer = make_user("employer")
    gig = make_gig(employer)
    response = await client.post(
        f"/gigs/{gig.id}/applications",
        json={"applicant_id": employer.id, "proposed_rate": "500.00"},
        headers=auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "OWN_GIG"


@pytest.mark.anyio
async def test_user_key_cannot_accept_for_another_employer(db_session, client, headers_for, make_user, make_gig):
    employer, worker, outsider = make_user("employer"), make_user("worker"), make_user("outsider")
    gig = make_gig(employer)
    application = _apply(db_session, gig, worker)

    hijack = await client.post(
        f"/applications/{application.id}/accept",
        json={"employer_id": employer.id},
        headers=headers_for(outsider),
    )
    assert hijack.status_code == 403
    assert hijack.json()["error"]["code"] == "ACTOR_MISMATCH"
    db_session.refresh(application)
    assert application.status == ApplicationStatus.PENDING

    accepted = await client.post(
        f"/applications/{application.id}/accept",
        json={"employer_id": employer.id},
        headers=headers_for(employer),
    )
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"
