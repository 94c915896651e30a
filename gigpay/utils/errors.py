"""Standardized error payloads and domain exceptions."""
from typing import Any

from fastapi import HTTPException, status


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class DomainError(HTTPException):
    """Base class for business errors surfaced through the API.

    Subclasses pin the HTTP status and a default error code; the payload
    always follows :func:`error_response`.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    code = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or type(self).code
        super().__init__(
            status_code=type(self).status_code,
            detail=error_response(self.code, message, details),
        )

    def __str__(self) -> str:
        return self.message


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Unauthorized(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "UNAUTHORIZED"


class InvalidState(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATE"


class InsufficientBalance(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "INSUFFICIENT_BALANCE"


class RateLimited(DomainError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMITED"


class OutOfBounds(DomainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "OUT_OF_BOUNDS"


class SignatureInvalid(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "SIGNATURE_INVALID"


class GatewayError(DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "GATEWAY_ERROR"


class ConsistencyError(DomainError):
    """Raised when a compensating action failed and state needs manual repair."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "CONSISTENCY_ERROR"


__all__ = [
    "error_response",
    "DomainError",
    "NotFound",
    "Unauthorized",
    "InvalidState",
    "InsufficientBalance",
    "RateLimited",
    "OutOfBounds",
    "SignatureInvalid",
    "GatewayError",
    "ConsistencyError",
]
