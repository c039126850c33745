# linkledger/services/renewal_job.py
"""
Renewal Scheduler: one sweep over every client with a paid window.

For each active/suspended client, with days = ceil((end - now) / 1 day):
- days in REMINDER_DAYS -> wallet reminder, once per client per day
- days <= 0             -> evaluate_expiry (renew if the wallet covers it,
                           otherwise suspend; already suspended stays put)

One client failing never stops the sweep; it is reported and the next
sweep tries again.
"""

import logging
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlmodel import Session, select

from ..core.config import Settings, get_settings
from ..core.constants import ClientStatus, NotificationKind, TriggerSource, utcnow
from ..db.engine_sync import new_session
from ..models import Client
from .lifecycle import RENEWABLE_STATUSES
from .network_gateway import find_standing_discrepancies
from .notification_service import NotificationDispatcher, Recipient, claim_notification_slot
from .subscription_service import SubscriptionService

logger = logging.getLogger("RenewalJob")

ONE_DAY = timedelta(days=1)


def days_until_expiry(end: datetime, now: datetime) -> int:
    return math.ceil((end - now) / ONE_DAY)


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    evaluated: int = 0
    renewed: List[str] = field(default_factory=list)
    suspended: List[str] = field(default_factory=list)
    reminded: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    # Clients whose latest network command failed
    discrepancies: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)

    def summary(self) -> str:
        return (
            f"evaluated={self.evaluated} renewed={len(self.renewed)} suspended={len(self.suspended)} "
            f"reminded={len(self.reminded)} failed={len(self.failures)} "
            f"discrepancies={len(self.discrepancies)}"
        )


class RenewalScheduler:
    def __init__(
        self,
        session: Session,
        subscriptions: SubscriptionService,
        notifier: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.subscriptions = subscriptions
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.clock = clock

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.clock()
        report = SweepReport(started_at=now)

        client_ids = self.session.exec(
            select(Client.id).where(
                Client.subscription_end_date != None,  # noqa: E711
                Client.status.in_(RENEWABLE_STATUSES),
            )
        ).all()

        for client_id in client_ids:
            report.evaluated += 1
            try:
                self._process(client_id, now, report)
            except Exception as e:
                self.session.rollback()
                report.failures[str(client_id)] = str(e)
                logger.error(f"❌ Sweep failed for client {client_id}: {e}", exc_info=True)

        report.discrepancies = [
            str(action.client_id) for action in find_standing_discrepancies(self.session)
        ]
        for client_id in report.discrepancies:
            logger.warning(f"⚠️ Standing discrepancy for client {client_id}: last network action failed")

        report.finished_at = self.clock()
        logger.info(f"Sweep finished: {report.summary()}")
        return report

    def _process(self, client_id: uuid.UUID, now: datetime, report: SweepReport):
        client = self.subscriptions.get_client(client_id)
        days = days_until_expiry(client.subscription_end_date, now)

        if days <= 0:
            result = self.subscriptions.evaluate_expiry(
                client_id, now=now, triggered_by=TriggerSource.SCHEDULER.value
            )
            if result.applied and result.plan.name == "renew":
                report.renewed.append(str(client_id))
            elif result.applied and result.client.status == ClientStatus.SUSPENDED.value:
                report.suspended.append(str(client_id))
            return

        if days in self.settings.reminder_day_set:
            if self._send_reminder(client, days, now):
                report.reminded.append(str(client_id))

    def _send_reminder(self, client: Client, days: int, now: datetime) -> bool:
        if self.notifier is None:
            return False
        kind = NotificationKind.WALLET_REMINDER.value
        if not claim_notification_slot(self.session, client.id, kind, now.date()):
            return False

        balance = Decimal(client.wallet_balance or 0)
        self.notifier.submit(
            Recipient.from_client(client),
            kind,
            {
                "days": days,
                "balance": balance,
                "required": max(Decimal(client.monthly_rate) - balance, Decimal("0")),
                "account": client.billing_reference or client.phone_number,
            },
        )
        return True


def run_renewal_sweep(session_factory: Callable[[], Session] = new_session) -> Optional[SweepReport]:
    """
    Runs ONE renewal sweep. Called on an interval by APScheduler and by
    POST /api/internal/sweep.
    """
    from .runtime import build_subscription_service, get_notifier

    logger.info("--- RUNNING RENEWAL SWEEP ---")
    try:
        with session_factory() as session:
            scheduler = RenewalScheduler(
                session,
                build_subscription_service(session),
                notifier=get_notifier(),
            )
            return scheduler.sweep()
    except Exception as e:
        logger.critical(f"Critical error in renewal sweep: {e}", exc_info=True)
        return None
