"""ORM models package."""
from .api_key import ApiKey, ApiScope
from .audit import AuditLog
from .base import Base
from .escrow import EscrowAccount, EscrowStatus
from .fee_config import FeeConfig
from .gig import (
    ApplicationPaymentStatus,
    ApplicationStatus,
    Gig,
    GigApplication,
    GigStatus,
    RateParty,
    RateStatus,
)
from .history import HistoryStatus, HistoryType, PaymentHistoryEntry
from .payment import (
    DisputeStatus,
    Payment,
    PaymentDispute,
    PaymentEscrowStatus,
    PaymentIntent,
    PaymentIntentStatus,
    PaymentProvider,
    PaymentStatus,
)
from .payment_method import PaymentMethod, PaymentMethodType
from .psp_webhook import PSPWebhookEvent
from .user import User
from .wallet import Wallet
from .withdrawal import WithdrawalRequest, WithdrawalStatus

__all__ = [
    "ApiKey",
    "ApiScope",
    "ApplicationPaymentStatus",
    "ApplicationStatus",
    "AuditLog",
    "Base",
    "DisputeStatus",
    "EscrowAccount",
    "EscrowStatus",
    "FeeConfig",
    "Gig",
    "GigApplication",
    "GigStatus",
    "HistoryStatus",
    "HistoryType",
    "Payment",
    "PaymentDispute",
    "PaymentEscrowStatus",
    "PaymentHistoryEntry",
    "PaymentIntent",
    "PaymentIntentStatus",
    "PaymentMethod",
    "PaymentMethodType",
    "PaymentProvider",
    "PaymentStatus",
    "PSPWebhookEvent",
    "RateParty",
    "RateStatus",
    "User",
    "Wallet",
    "WithdrawalRequest",
    "WithdrawalStatus",
]
