"""
Centralized constants for the subscription core.
Removes magic strings and gives strong typing to common values.
"""

from datetime import datetime, timezone
from enum import Enum, unique


@unique
class ClientStatus(str, Enum):
    """Lifecycle states of a client subscription."""

    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DISCONNECTED = "disconnected"
    REJECTED = "rejected"


@unique
class SubscriptionType(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"


@unique
class PaymentGateway(str, Enum):
    """Money-movement channels that report payments."""

    MOBILE_MONEY_PUSH = "mobile-money-push"
    MOBILE_MONEY_BILL = "mobile-money-bill"
    BANK_PUSH = "bank-push"
    BANK_BILL = "bank-bill"
    MANUAL = "manual"

    @property
    def is_push(self) -> bool:
        return self in (PaymentGateway.MOBILE_MONEY_PUSH, PaymentGateway.BANK_PUSH)


@unique
class PaymentStatus(str, Enum):
    RECEIVED = "received"
    MATCHED = "matched"
    APPLIED = "applied"
    FAILED = "failed"
    UNMATCHED = "unmatched"


@unique
class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


@unique
class NetworkActionType(str, Enum):
    DISCONNECT = "disconnect"
    RECONNECT = "reconnect"
    UPDATE_BANDWIDTH = "update_bandwidth"


@unique
class TriggerSource(str, Enum):
    """Who caused a network action."""

    WEBHOOK = "webhook"
    SCHEDULER = "scheduler"
    MANUAL = "manual"


@unique
class SuspensionMethod(str, Enum):
    """How connectivity is revoked on the NAS."""

    ADDRESS_LIST = "address_list"
    QUEUE_LIMIT = "queue_limit"
    PPPOE_SECRET_DISABLE = "pppoe_secret_disable"
    RADIUS = "radius"


@unique
class NotificationKind(str, Enum):
    PAYMENT_SUCCESS = "payment_success"
    RENEWAL_SUCCESS = "renewal_success"
    WALLET_REMINDER = "wallet_reminder"
    SERVICE_SUSPENDED = "service_suspended"
    SERVICE_RESTORED = "service_restored"


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
