"""Paystack client for card/EFT checkout and webhook verification."""
from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any

import httpx

from gigpay.config import Settings, get_settings
from gigpay.utils.errors import GatewayError
from gigpay.utils.money import from_cents, to_cents

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


class PaystackClient:
    """Thin wrapper around the Paystack REST API."""

    def __init__(self, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings
        self._secret_key = settings.PAYSTACK_SECRET_KEY
        if not self._secret_key:
            raise RuntimeError("Paystack secret key is missing; configure PAYSTACK_SECRET_KEY.")
        self._client = httpx.Client(
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            headers={"Authorization": f"Bearer {self._secret_key}"},
            transport=transport,
        )

    @classmethod
    def from_env(cls) -> "PaystackClient":
        return cls(get_settings())

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Paystack request failed", extra={"path": path, "error": str(exc)})
            raise GatewayError("Paystack is unreachable.", code="PAYSTACK_UNAVAILABLE") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_error or not body.get("status"):
            logger.warning(
                "Paystack returned an error",
                extra={"path": path, "status_code": response.status_code, "message": body.get("message")},
            )
            raise GatewayError(
                body.get("message") or "Paystack request was rejected.",
                code="PAYSTACK_ERROR",
                details={"status_code": response.status_code},
            )
        return body.get("data") or {}

    def initialize_transaction(
        self,
        *,
        email: str,
        amount: Decimal,
        reference: str,
        metadata: dict[str, Any] | None = None,
        currency: str | None = None,
    ) -> dict[str, Any]:
        """Start a checkout; returns ``authorization_url``, ``access_code`` and ``reference``."""

        payload: dict[str, Any] = {
            "email": email,
            "amount": to_cents(amount),
            "reference": reference,
            "metadata": metadata or {},
            "currency": currency or self.settings.CURRENCY,
        }
        if self.settings.PAYSTACK_CALLBACK_URL:
            payload["callback_url"] = self.settings.PAYSTACK_CALLBACK_URL
        data = self._request("POST", "/transaction/initialize", json=payload)
        logger.info("Paystack transaction initialised", extra={"reference": reference})
        return data

    def verify_transaction(self, reference: str) -> dict[str, Any]:
        """Fetch the transaction; ``amount`` and ``fees`` are converted back from cents."""

        data = self._request("GET", f"/transaction/verify/{reference}")
        if "amount" in data:
            data["amount_decimal"] = from_cents(data["amount"])
        data["fees_decimal"] = from_cents(data.get("fees") or 0)
        return data


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: str | None, *, secret: str | None) -> bool:
    """HMAC-SHA512 of the raw body keyed with the secret key."""

    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, raw_body), signature)


__all__ = ["PaystackClient", "SIGNATURE_HEADER", "compute_signature", "verify_webhook_signature"]
