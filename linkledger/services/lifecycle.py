# linkledger/services/lifecycle.py
"""
Subscription transitions as pure functions.

Each planner looks at a client snapshot (plus "now" and the settings) and
returns a TransitionPlan: the field changes, an optional ledger debit and
the side effects to run once the change is committed. Nothing here touches
the database, the network or the clock.

    pending -> approved -> active <-> suspended -> disconnected
    pending -> rejected
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from ..core.config import Settings
from ..core.constants import ClientStatus, NetworkActionType, NotificationKind
from ..models import Client
from ..utils.speed import BandwidthLimits, normalize_speed

RENEWABLE_STATUSES = (ClientStatus.ACTIVE.value, ClientStatus.SUSPENDED.value)


class InvalidTransitionError(Exception):
    """The client's current state does not allow the requested transition."""


@dataclass(frozen=True)
class NetworkEffect:
    action: str
    limits: Optional[BandwidthLimits] = None


@dataclass(frozen=True)
class NotifyEffect:
    kind: str
    data: Dict[str, Any] = field(default_factory=dict, hash=False)


Effect = Union[NetworkEffect, NotifyEffect]


@dataclass(frozen=True)
class LedgerDebit:
    amount: Decimal
    reference: str
    description: str


@dataclass
class TransitionPlan:
    name: str
    changes: Dict[str, Any] = field(default_factory=dict)
    debit: Optional[LedgerDebit] = None
    effects: List[Effect] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.changes and self.debit is None and not self.effects

    @property
    def network_effects(self) -> List[NetworkEffect]:
        return [e for e in self.effects if isinstance(e, NetworkEffect)]

    @property
    def notifications(self) -> List[NotifyEffect]:
        return [e for e in self.effects if isinstance(e, NotifyEffect)]


def _require(client: Client, allowed, transition: str):
    if client.status not in allowed:
        raise InvalidTransitionError(
            f"Cannot {transition} client {client.id} in status '{client.status}'."
        )


def renewal_reference(client: Client) -> str:
    """
    Idempotency key of the debit that buys the next period. Two workers
    renewing from the same snapshot produce the same key, and the unique
    ledger constraint lets only one of them through.
    """
    if client.subscription_end_date is not None:
        return f"renewal:{client.id}:{client.subscription_end_date.isoformat()}"
    return f"renewal:{client.id}:v{client.version}"


def is_expired(client: Client, now: datetime) -> bool:
    end = client.subscription_end_date
    return end is not None and now >= end


def can_cover_period(client: Client) -> bool:
    return Decimal(client.wallet_balance or 0) >= Decimal(client.monthly_rate)


# --- Onboarding ---

def plan_approve(client: Client, actor: str, now: datetime) -> TransitionPlan:
    _require(client, (ClientStatus.PENDING.value,), "approve")
    return TransitionPlan(
        "approve",
        changes={"status": ClientStatus.APPROVED.value, "approved_by": actor, "approved_at": now},
    )


def plan_activate(client: Client, now: datetime, settings: Settings) -> TransitionPlan:
    _require(client, (ClientStatus.APPROVED.value,), "activate")
    end = now + timedelta(days=settings.period_days(client.subscription_type))
    return TransitionPlan(
        "activate",
        changes={"status": ClientStatus.ACTIVE.value, "subscription_end_date": end},
        effects=[
            NetworkEffect(NetworkActionType.RECONNECT.value),
            NotifyEffect(NotificationKind.SERVICE_RESTORED.value, {"end_date": end}),
        ],
    )


def plan_reject(client: Client, reason: str) -> TransitionPlan:
    if not reason or not reason.strip():
        raise InvalidTransitionError("A rejection reason is required.")
    _require(client, (ClientStatus.PENDING.value,), "reject")
    return TransitionPlan(
        "reject",
        changes={"status": ClientStatus.REJECTED.value, "rejection_reason": reason.strip()},
    )


# --- Wallet driven ---

def plan_on_credit(client: Client, now: datetime, settings: Settings) -> TransitionPlan:
    """
    Renew one period when the wallet covers it and the subscription is
    inside the renewal window (or already over). A suspended client comes
    back online. Anything else leaves the credit sitting in the wallet.
    """
    if client.status not in RENEWABLE_STATUSES or not can_cover_period(client):
        return TransitionPlan("on_credit")

    end = client.subscription_end_date
    window = timedelta(hours=settings.renewal_window_hours)
    if end is not None and end > now + window:
        return TransitionPlan("on_credit")

    start = max(end, now) if end is not None else now
    new_end = start + timedelta(days=settings.period_days(client.subscription_type))
    rate = Decimal(client.monthly_rate)

    plan = TransitionPlan(
        "renew",
        changes={"subscription_end_date": new_end},
        debit=LedgerDebit(
            amount=rate,
            reference=renewal_reference(client),
            description=f"Subscription renewal until {new_end:%Y-%m-%d}",
        ),
    )
    if client.status == ClientStatus.SUSPENDED.value:
        plan.changes["status"] = ClientStatus.ACTIVE.value
        plan.effects.append(NetworkEffect(NetworkActionType.RECONNECT.value))
    plan.effects.append(
        NotifyEffect(NotificationKind.RENEWAL_SUCCESS.value, {"end_date": new_end, "amount": rate})
    )
    return plan


def plan_evaluate_expiry(client: Client, now: datetime, settings: Settings) -> TransitionPlan:
    """
    Expired clients renew when the wallet covers a period (renewal wins a
    same-instant tie with suspension), otherwise an active client is
    suspended. A client that is already suspended is left alone.
    """
    if client.status not in RENEWABLE_STATUSES or not is_expired(client, now):
        return TransitionPlan("evaluate_expiry")

    if can_cover_period(client):
        return plan_on_credit(client, now, settings)

    if client.status == ClientStatus.SUSPENDED.value:
        return TransitionPlan("evaluate_expiry")

    return TransitionPlan(
        "suspend_expired",
        changes={"status": ClientStatus.SUSPENDED.value},
        effects=[
            NetworkEffect(NetworkActionType.DISCONNECT.value),
            NotifyEffect(NotificationKind.SERVICE_SUSPENDED.value),
        ],
    )


# --- Administrative overrides ---

def plan_suspend(client: Client) -> TransitionPlan:
    if client.status == ClientStatus.SUSPENDED.value:
        return TransitionPlan("suspend")
    _require(client, (ClientStatus.ACTIVE.value,), "suspend")
    return TransitionPlan(
        "suspend",
        changes={"status": ClientStatus.SUSPENDED.value},
        effects=[
            NetworkEffect(NetworkActionType.DISCONNECT.value),
            NotifyEffect(NotificationKind.SERVICE_SUSPENDED.value),
        ],
    )


def plan_restore(client: Client) -> TransitionPlan:
    """Back to active without charging the wallet."""
    if client.status == ClientStatus.ACTIVE.value:
        return TransitionPlan("restore")
    _require(client, (ClientStatus.SUSPENDED.value,), "restore")
    return TransitionPlan(
        "restore",
        changes={"status": ClientStatus.ACTIVE.value},
        effects=[
            NetworkEffect(NetworkActionType.RECONNECT.value),
            NotifyEffect(NotificationKind.SERVICE_RESTORED.value),
        ],
    )


def plan_disconnect(client: Client) -> TransitionPlan:
    _require(client, RENEWABLE_STATUSES, "disconnect")
    return TransitionPlan(
        "disconnect",
        changes={"status": ClientStatus.DISCONNECTED.value},
        effects=[NetworkEffect(NetworkActionType.DISCONNECT.value)],
    )


def plan_update_bandwidth(client: Client, speed: str, settings: Settings) -> TransitionPlan:
    if client.status in (ClientStatus.REJECTED.value, ClientStatus.DISCONNECTED.value):
        raise InvalidTransitionError(
            f"Cannot change bandwidth of client {client.id} in status '{client.status}'."
        )
    limits = normalize_speed(speed, settings.default_speed)
    plan = TransitionPlan("update_bandwidth", changes={"speed": speed})
    # A suspended queue_limit client must stay throttled until restored
    if client.status == ClientStatus.ACTIVE.value:
        plan.effects.append(NetworkEffect(NetworkActionType.UPDATE_BANDWIDTH.value, limits))
    return plan


def plan_network_retry(client: Client) -> TransitionPlan:
    """Re-issue the command that matches the committed status."""
    if client.status == ClientStatus.ACTIVE.value:
        action = NetworkActionType.RECONNECT.value
    elif client.status in (ClientStatus.SUSPENDED.value, ClientStatus.DISCONNECTED.value):
        action = NetworkActionType.DISCONNECT.value
    else:
        raise InvalidTransitionError(f"Client {client.id} in status '{client.status}' has no network state.")
    return TransitionPlan("network_retry", effects=[NetworkEffect(action)])
