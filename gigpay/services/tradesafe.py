"""TradeSafe escrow gateway client (OAuth client credentials + GraphQL)."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from typing import Any, Callable

import httpx

from gigpay.config import Settings, get_settings
from gigpay.utils.errors import GatewayError
from gigpay.utils.money import to_decimal

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-tradesafe-signature"
# refresh the bearer this many seconds before it expires
TOKEN_REFRESH_MARGIN_SECONDS = 300
DEFAULT_DAYS_TO_DELIVER = 7
DEFAULT_DAYS_TO_INSPECT = 7

TRANSACTION_FIELDS = """
    id
    title
    state
    createdAt
    allocations { id title value state }
    parties { id name role }
"""

TOKEN_CREATE = """
mutation tokenCreate($input: TokenInput!) {
  tokenCreate(input: $input) { id name }
}
"""

TRANSACTION_CREATE = (
    "mutation transactionCreate($input: CreateTransactionInput!) {\n"
    "  transactionCreate(input: $input) {" + TRANSACTION_FIELDS + "}\n}"
)

TRANSACTION_QUERY = "query transaction($id: ID!) {\n  transaction(id: $id) {" + TRANSACTION_FIELDS + "}\n}"

CHECKOUT_LINK = """
mutation checkoutLink($transactionId: ID!, $embed: Boolean) {
  checkoutLink(transactionId: $transactionId, embed: $embed)
}
"""

ALLOCATION_MUTATION = """
mutation {name}($id: ID!) {{
  {name}(id: $id) {{ id state }}
}}
"""

TRANSACTION_CANCEL = """
mutation transactionCancel($id: ID!, $comment: String!) {
  transactionCancel(id: $id, comment: $comment) { id state }
}
"""


class TradeSafeClient:
    """Minimal TradeSafe API wrapper used to hold gig payments in third-party escrow."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not settings.TRADESAFE_CLIENT_ID or not settings.TRADESAFE_CLIENT_SECRET:
            raise RuntimeError(
                "TradeSafe credentials are missing; configure TRADESAFE_CLIENT_ID and TRADESAFE_CLIENT_SECRET."
            )
        self.settings = settings
        self._clock = clock
        self._client = httpx.Client(timeout=settings.GATEWAY_TIMEOUT_SECONDS, transport=transport)
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_env(cls) -> "TradeSafeClient":
        return cls(get_settings())

    def close(self) -> None:
        self._client.close()

    def _authenticate(self) -> str:
        if self._access_token and self._clock() < self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token

        try:
            response = self._client.post(
                self.settings.TRADESAFE_AUTH_URL,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.settings.TRADESAFE_CLIENT_ID,
                    "client_secret": self.settings.TRADESAFE_CLIENT_SECRET,
                },
            )
        except httpx.HTTPError as exc:
            logger.error("TradeSafe authentication request failed", extra={"error": str(exc)})
            raise GatewayError("TradeSafe is unreachable.", code="TRADESAFE_UNAVAILABLE") from exc
        if response.is_error:
            logger.error("TradeSafe authentication failed", extra={"status_code": response.status_code})
            raise GatewayError("TradeSafe authentication failed.", code="TRADESAFE_AUTH_FAILED")

        data = response.json()
        self._access_token = data["access_token"]
        self._token_expires_at = self._clock() + float(data.get("expires_in", 3600))
        logger.info("TradeSafe authenticated")
        return self._access_token

    def _graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        token = self._authenticate()
        try:
            response = self._client.post(
                self.settings.TRADESAFE_API_URL,
                json={"query": query, "variables": variables or {}},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.error("TradeSafe request failed", extra={"error": str(exc)})
            raise GatewayError("TradeSafe is unreachable.", code="TRADESAFE_UNAVAILABLE") from exc
        if response.is_error:
            logger.error("TradeSafe API error", extra={"status_code": response.status_code})
            raise GatewayError(
                "TradeSafe API error.", code="TRADESAFE_ERROR", details={"status_code": response.status_code}
            )

        result = response.json()
        errors = result.get("errors")
        if errors:
            messages = [e.get("message") for e in errors]
            logger.error("TradeSafe GraphQL errors", extra={"errors": messages})
            raise GatewayError(
                f"TradeSafe GraphQL error: {messages[0] or 'Unknown error'}",
                code="TRADESAFE_GRAPHQL_ERROR",
            )
        return result.get("data") or {}

    def create_token(
        self,
        *,
        given_name: str,
        family_name: str,
        email: str,
        mobile: str | None = None,
        bank_account: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Register a party (buyer or seller) and return its token."""

        user = {"givenName": given_name, "familyName": family_name, "email": email}
        if mobile:
            user["mobile"] = mobile
        payload: dict[str, Any] = {"user": user}
        if bank_account:
            payload["bankAccount"] = bank_account
        data = self._graphql(TOKEN_CREATE, {"input": payload})
        return data["tokenCreate"]

    def create_transaction(
        self,
        *,
        title: str,
        description: str,
        value: Decimal,
        reference: str,
        buyer_token: str,
        seller_token: str,
        agent_fee_percent: Decimal | None = None,
        days_to_deliver: int = DEFAULT_DAYS_TO_DELIVER,
        days_to_inspect: int = DEFAULT_DAYS_TO_INSPECT,
    ) -> dict[str, Any]:
        """Create a single-allocation transaction. The platform joins as agent when a fee is given."""

        parties: list[dict[str, Any]] = [
            {"token": buyer_token, "role": "BUYER"},
            {"token": seller_token, "role": "SELLER"},
        ]
        agent_token = self.settings.TRADESAFE_AGENT_TOKEN
        if agent_token and agent_fee_percent:
            parties.append(
                {
                    "token": agent_token,
                    "role": "AGENT",
                    "fee": float(agent_fee_percent),
                    "feeType": "PERCENT",
                    "feeAllocation": "SELLER",
                }
            )
        variables = {
            "input": {
                "title": title,
                "description": description,
                "industry": "GENERAL_GOODS_SERVICES",
                "currency": self.settings.CURRENCY,
                "feeAllocation": "AGENT" if agent_token else "SELLER",
                "reference": reference,
                "allocations": {
                    "create": [
                        {
                            "title": title,
                            "description": description,
                            "value": float(to_decimal(value)),
                            "daysToDeliver": days_to_deliver,
                            "daysToInspect": days_to_inspect,
                        }
                    ]
                },
                "parties": {"create": parties},
            }
        }
        data = self._graphql(TRANSACTION_CREATE, variables)
        transaction = data["transactionCreate"]
        logger.info(
            "TradeSafe transaction created",
            extra={"transaction_id": transaction.get("id"), "reference": reference, "state": transaction.get("state")},
        )
        return transaction

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        data = self._graphql(TRANSACTION_QUERY, {"id": transaction_id})
        return data.get("transaction")

    def get_checkout_link(self, transaction_id: str, *, embed: bool = False) -> str:
        data = self._graphql(CHECKOUT_LINK, {"transactionId": transaction_id, "embed": embed})
        return data["checkoutLink"]

    def _allocation(self, name: str, allocation_id: str) -> dict[str, Any]:
        data = self._graphql(ALLOCATION_MUTATION.format(name=name), {"id": allocation_id})
        allocation = data[name]
        logger.info("TradeSafe allocation updated", extra={"mutation": name, "state": allocation.get("state")})
        return allocation

    def start_delivery(self, allocation_id: str) -> dict[str, Any]:
        return self._allocation("allocationStartDelivery", allocation_id)

    def complete_delivery(self, allocation_id: str) -> dict[str, Any]:
        return self._allocation("allocationCompleteDelivery", allocation_id)

    def accept_delivery(self, allocation_id: str) -> dict[str, Any]:
        """Buyer accepts the work; TradeSafe pays the seller out."""

        return self._allocation("allocationAcceptDelivery", allocation_id)

    def cancel_transaction(self, transaction_id: str, reason: str) -> dict[str, Any]:
        data = self._graphql(TRANSACTION_CANCEL, {"id": transaction_id, "comment": reason})
        return data["transactionCancel"]


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: str | None, *, secret: str | None) -> bool:
    """HMAC-SHA256 of the raw body keyed with the client secret."""

    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, raw_body), signature)


def parse_webhook(raw_body: bytes) -> dict[str, Any]:
    """Flatten the webhook payload to ``event``, ``transaction_id``, ``allocation_id``, ``state``, ``reference``."""

    data = json.loads(raw_body)
    transaction = data.get("transaction") or {}
    allocation = data.get("allocation") or {}
    return {
        "event": data.get("event") or data.get("type"),
        "transaction_id": transaction.get("id") or data.get("transactionId"),
        "allocation_id": allocation.get("id") or data.get("allocationId"),
        "state": transaction.get("state") or data.get("state"),
        "reference": transaction.get("reference") or data.get("reference"),
        "value": transaction.get("value") or data.get("value"),
    }


__all__ = [
    "SIGNATURE_HEADER",
    "TradeSafeClient",
    "compute_signature",
    "parse_webhook",
    "verify_webhook_signature",
]
