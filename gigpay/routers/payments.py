"""Payment endpoints: intents, gateway confirmation, release and disputes."""
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from gigpay.db import get_db
from gigpay.dependencies import get_fee_cache, get_paystack_client, get_tradesafe_client
from gigpay.models.api_key import ApiKey, ApiScope
from gigpay.models.payment import PaymentProvider
from gigpay.schemas.payment import (
    DisputeCreate,
    DisputeRead,
    DisputeResolve,
    EscrowRead,
    PaymentIntentCreate,
    PaymentIntentRead,
    PaymentRead,
    ProcessPayment,
    ReleaseRequest,
)
from gigpay.security import ensure_actor, require_scope
from gigpay.services import escrow as escrow_service
from gigpay.services import payments as payments_service
from gigpay.services.fee_config import FeeConfigCache
from gigpay.services.idempotency import normalize_key
from gigpay.services.paystack import PaystackClient
from gigpay.services.tradesafe import TradeSafeClient
from gigpay.utils.audit import actor_from_api_key
from gigpay.utils.errors import error_response

router = APIRouter(prefix="/payments", tags=["payments"])

ANY_SCOPE = {ApiScope.user, ApiScope.support, ApiScope.admin}


@router.post("/intents", response_model=PaymentIntentRead, status_code=status.HTTP_201_CREATED)
def create_intent(
    payload: PaymentIntentCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
    paystack: PaystackClient | None = Depends(get_paystack_client),
    tradesafe: TradeSafeClient | None = Depends(get_tradesafe_client),
    fee_cache: FeeConfigCache = Depends(get_fee_cache),
):
    intent = payments_service.create_payment_intent(
        db,
        gig_id=payload.gig_id,
        employer_id=ensure_actor(api_key, payload.employer_id),
        provider=payload.provider,
    )
    if intent.checkout_url:
        return intent
    if payload.provider == PaymentProvider.PAYSTACK and paystack is not None:
        return payments_service.start_paystack_checkout(db, intent, paystack)
    if payload.provider == PaymentProvider.TRADESAFE and tradesafe is not None:
        if not (payload.buyer_token and payload.seller_token):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=error_response("TRADESAFE_TOKENS_REQUIRED", "buyer_token and seller_token are required."),
            )
        return payments_service.start_tradesafe_checkout(
            db,
            intent,
            tradesafe,
            buyer_token=payload.buyer_token,
            seller_token=payload.seller_token,
            fee_cache=fee_cache,
        )
    return intent


@router.get("/intents/{reference}", response_model=PaymentIntentRead)
def get_intent(
    reference: str,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return payments_service.get_intent_by_reference(db, reference)


@router.post("/process", response_model=PaymentRead)
def process_payment(
    payload: ProcessPayment,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin})),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """Manually confirm a gateway payment. The gateway transaction id is the idempotency key."""

    provider_txn_id = normalize_key(idempotency_key) or payload.provider_txn_id
    return payments_service.process_payment(
        db,
        reference=payload.reference,
        provider_txn_id=provider_txn_id,
        gross_amount=payload.gross_amount,
        fees=payload.fees,
        verified_via="manual",
    )


@router.post("/verify/{reference}", response_model=PaymentRead)
def verify_payment(
    reference: str,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
    paystack: PaystackClient | None = Depends(get_paystack_client),
):
    if paystack is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("PAYSTACK_NOT_CONFIGURED", "Paystack is not configured."),
        )
    return payments_service.verify_paystack_payment(db, reference, paystack)


@router.get("/{payment_id}", response_model=PaymentRead)
def get_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return payments_service.get_payment_or_404(db, payment_id)


@router.post("/{payment_id}/release", response_model=EscrowRead)
def release_payment(
    payment_id: int,
    payload: ReleaseRequest,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin, ApiScope.support})),
):
    payments_service.get_payment_or_404(db, payment_id)
    return escrow_service.release_escrow(
        db,
        payment_id=payment_id,
        amount=payload.amount,
        actor=actor_from_api_key(api_key, fallback="apikey:unknown"),
        trigger="manual",
    )


@router.post("/{payment_id}/disputes", response_model=DisputeRead, status_code=status.HTTP_201_CREATED)
def raise_dispute(
    payment_id: int,
    payload: DisputeCreate,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope(ANY_SCOPE)),
):
    return escrow_service.raise_dispute(
        db,
        payment_id=payment_id,
        raised_by=ensure_actor(api_key, payload.raised_by),
        reason=payload.reason,
        description=payload.description,
    )


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeRead)
def resolve_dispute(
    dispute_id: int,
    payload: DisputeResolve,
    db: Session = Depends(get_db),
    api_key: ApiKey = Depends(require_scope({ApiScope.admin, ApiScope.support})),
):
    return escrow_service.resolve_dispute(
        db,
        dispute_id,
        resolution=payload.resolution,
        actor=actor_from_api_key(api_key, fallback="apikey:unknown"),
    )
