# linkledger/services/subscription_service.py
"""
Subscription State Machine.

The only place that changes a client's status. Every change goes through
`_transition`, which
1. plans the change from a fresh snapshot (pure functions in lifecycle.py),
2. applies it with a compare-and-swap on `clients.version`, together with
   the renewal debit when there is one, in a single DB transaction,
3. retries from a new snapshot when another process won the race,
4. hands network commands and notifications off only after the commit.

Network failures never roll the committed state back.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.audit import log_action
from ..core.config import CENTS, Settings, get_settings
from ..core.constants import ClientStatus, TransactionType, TriggerSource, utcnow
from ..models import Client
from . import lifecycle
from .ledger_service import BalanceChangedError, LedgerService
from .lifecycle import InvalidTransitionError, TransitionPlan
from .network_dispatcher import NetworkActionDispatcher, NetworkCommand
from .notification_service import NotificationDispatcher, Recipient

logger = logging.getLogger(__name__)

__all__ = [
    "ClientNotFoundError",
    "ConcurrentModificationError",
    "InvalidTransitionError",
    "SubscriptionService",
    "TransitionResult",
]


class ClientNotFoundError(Exception):
    pass


class ConcurrentModificationError(Exception):
    """The compare-and-swap kept losing after the configured retries."""


@dataclass
class TransitionResult:
    client: Client
    plan: TransitionPlan
    applied: bool


class SubscriptionService:
    def __init__(
        self,
        session: Session,
        network: Optional[NetworkActionDispatcher] = None,
        notifier: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.network = network
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.clock = clock
        self.ledger = LedgerService(session)

    # --- Queries ---

    def get_client(self, client_id: uuid.UUID) -> Client:
        client = self.session.get(Client, client_id, populate_existing=True)
        if client is None:
            raise ClientNotFoundError(f"Client {client_id} not found.")
        return client

    def register_client(self, **fields) -> Client:
        """New subscribers always start as pending."""
        fields["status"] = ClientStatus.PENDING.value
        fields["wallet_balance"] = Decimal("0.00")
        client = Client(**fields)
        if client.monthly_rate is None or Decimal(client.monthly_rate) <= 0:
            raise ValueError("monthly_rate must be greater than zero.")
        client.monthly_rate = Decimal(client.monthly_rate).quantize(CENTS)
        self.session.add(client)
        self.session.commit()
        self.session.refresh(client)
        logger.info(f"Registered client {client.id} ({client.name}) as pending")
        return client

    # --- Onboarding ---

    def approve(self, client_id: uuid.UUID, actor: str) -> TransitionResult:
        result = self._transition(
            client_id, lambda c, now: lifecycle.plan_approve(c, actor, now), TriggerSource.MANUAL.value
        )
        log_action("APPROVE", "client", client_id, actor=actor)
        return result

    def activate(self, client_id: uuid.UUID, actor: str = "system") -> TransitionResult:
        result = self._transition(
            client_id,
            lambda c, now: lifecycle.plan_activate(c, now, self.settings),
            TriggerSource.MANUAL.value,
        )
        log_action(
            "ACTIVATE",
            "client",
            client_id,
            actor=actor,
            details={"subscription_end_date": result.client.subscription_end_date},
        )
        return result

    def reject(self, client_id: uuid.UUID, reason: str, actor: str) -> TransitionResult:
        result = self._transition(
            client_id, lambda c, now: lifecycle.plan_reject(c, reason), TriggerSource.MANUAL.value
        )
        log_action("REJECT", "client", client_id, actor=actor, details={"reason": reason})
        return result

    # --- Wallet / schedule driven ---

    def on_credit(
        self, client_id: uuid.UUID, triggered_by: str = TriggerSource.WEBHOOK.value
    ) -> TransitionResult:
        return self._transition(
            client_id, lambda c, now: lifecycle.plan_on_credit(c, now, self.settings), triggered_by
        )

    def evaluate_expiry(
        self,
        client_id: uuid.UUID,
        now: Optional[datetime] = None,
        triggered_by: str = TriggerSource.SCHEDULER.value,
    ) -> TransitionResult:
        return self._transition(
            client_id,
            lambda c, current: lifecycle.plan_evaluate_expiry(c, now or current, self.settings),
            triggered_by,
        )

    # --- Administrative overrides ---

    def suspend(self, client_id: uuid.UUID, actor: str) -> TransitionResult:
        return self._admin("SUSPEND", client_id, actor, lambda c, now: lifecycle.plan_suspend(c))

    def restore(self, client_id: uuid.UUID, actor: str) -> TransitionResult:
        return self._admin("RESTORE", client_id, actor, lambda c, now: lifecycle.plan_restore(c))

    def disconnect(self, client_id: uuid.UUID, actor: str) -> TransitionResult:
        return self._admin("DISCONNECT", client_id, actor, lambda c, now: lifecycle.plan_disconnect(c))

    def update_bandwidth(self, client_id: uuid.UUID, speed: str, actor: str) -> TransitionResult:
        return self._admin(
            "UPDATE_BANDWIDTH",
            client_id,
            actor,
            lambda c, now: lifecycle.plan_update_bandwidth(c, speed, self.settings),
            details={"speed": speed},
        )

    def retry_network(self, client_id: uuid.UUID, actor: str) -> TransitionResult:
        return self._admin(
            "NETWORK_RETRY", client_id, actor, lambda c, now: lifecycle.plan_network_retry(c)
        )

    def _admin(self, action, client_id, actor, planner, details=None) -> TransitionResult:
        try:
            result = self._transition(client_id, planner, TriggerSource.MANUAL.value)
        except (InvalidTransitionError, ConcurrentModificationError) as e:
            log_action(action, "client", client_id, actor=actor, status="failure", details={"error": str(e)})
            raise
        log_action(
            action,
            "client",
            client_id,
            actor=actor,
            details={**(details or {}), "status": result.client.status, "applied": result.applied},
        )
        return result

    # --- Engine ---

    def _transition(
        self,
        client_id: uuid.UUID,
        planner: Callable[[Client, datetime], TransitionPlan],
        triggered_by: str,
    ) -> TransitionResult:
        attempts = max(1, self.settings.transition_max_retries)

        for attempt in range(1, attempts + 1):
            client = self.get_client(client_id)
            now = self.clock()
            plan = planner(client, now)

            if plan.is_noop:
                return TransitionResult(client, plan, applied=False)

            if not plan.changes and plan.debit is None:
                # Effects only (network retry): nothing to commit
                self._dispatch(client, plan, triggered_by)
                return TransitionResult(client, plan, applied=True)

            if self._apply(client, plan, now):
                client = self.get_client(client_id)
                logger.info(
                    f"Client {client_id}: {plan.name} applied "
                    f"(status={client.status}, end={client.subscription_end_date}, "
                    f"balance={client.wallet_balance})"
                )
                self._dispatch(client, plan, triggered_by)
                return TransitionResult(client, plan, applied=True)

            logger.warning(
                f"Client {client_id} changed under {plan.name} (attempt {attempt}/{attempts}), re-planning"
            )

        raise ConcurrentModificationError(
            f"Could not apply transition to client {client_id} after {attempts} attempts."
        )

    def _apply(self, client: Client, plan: TransitionPlan, now: datetime) -> bool:
        """One CAS attempt. Returns False when the snapshot went stale."""
        expected_version = client.version
        try:
            result = self.session.execute(
                update(Client)
                .where(Client.id == client.id, Client.version == expected_version)
                .values(**plan.changes, version=expected_version + 1, updated_at=now)
            )
            if result.rowcount != 1:
                self.session.rollback()
                return False

            if plan.debit is not None:
                self.ledger.post_transaction(
                    client.id,
                    TransactionType.DEBIT.value,
                    plan.debit.amount,
                    plan.debit.reference,
                    description=plan.debit.description,
                )
            self.session.commit()
            return True
        except (IntegrityError, BalanceChangedError):
            # Same renewal reference already posted, or the wallet moved under us
            self.session.rollback()
            return False
        except Exception:
            self.session.rollback()
            raise

    def _dispatch(self, client: Client, plan: TransitionPlan, triggered_by: str):
        for effect in plan.network_effects:
            if self.network is None:
                logger.debug(f"No network dispatcher configured, skipping {effect.action} for {client.id}")
                continue
            self.network.submit(NetworkCommand(client.id, effect.action, triggered_by, effect.limits))

        if self.notifier is None:
            return
        recipient = Recipient.from_client(client)
        for notification in plan.notifications:
            data = {
                "balance": client.wallet_balance,
                "end_date": client.subscription_end_date,
                **notification.data,
            }
            self.notifier.submit(recipient, notification.kind, data)
