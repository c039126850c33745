# linkledger/services/notification_service.py
"""
Notification Dispatcher: client-facing SMS.

Fire-and-forget from the caller's point of view: a failed send is retried
a bounded number of times, then logged and dropped. It never raises into
the ledger or the state machine.
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import httpx
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.constants import NotificationKind
from ..models import Client, NotificationLog
from ..utils.phone import normalize_msisdn
from ..utils.retry import RetryExhaustedError, RetryPolicy, call_with_backoff

logger = logging.getLogger(__name__)

TEMPLATES = {
    NotificationKind.PAYMENT_SUCCESS.value: (
        "Dear {name}, your payment of KES {amount} has been received successfully. "
        "Receipt: {receipt}. New balance: KES {balance}."
    ),
    NotificationKind.RENEWAL_SUCCESS.value: (
        "Dear {name}, your internet service has been renewed and is active until {end_date}. "
        "Thank you for your payment!"
    ),
    NotificationKind.WALLET_REMINDER.value: (
        "Dear {name}, your service expires in {days} day(s). Current balance: KES {balance}. "
        "Top up KES {required} using account {account}."
    ),
    NotificationKind.SERVICE_SUSPENDED.value: (
        "Dear {name}, your internet service has been suspended due to non-payment. "
        "Please make payment to reactivate your service."
    ),
    NotificationKind.SERVICE_RESTORED.value: (
        "Dear {name}, your internet service has been restored."
    ),
}


@dataclass(frozen=True)
class Recipient:
    """Detached copy of the contact fields; safe to hand to another thread."""

    client_id: uuid.UUID
    name: str
    phone: Optional[str]

    @classmethod
    def from_client(cls, client: Client) -> "Recipient":
        return cls(client.id, client.name, client.phone_number or client.mpesa_number)


class _SafeDict(dict):
    def __missing__(self, key):
        return "-"


def _fmt(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:,.2f}"
    if hasattr(value, "strftime"):
        return value.strftime("%d/%m/%Y")
    return value


def render_message(kind: str, name: str, data: Optional[Dict[str, Any]] = None) -> str:
    template = TEMPLATES.get(kind)
    if template is None:
        raise ValueError(f"Unknown notification kind '{kind}'")
    values = _SafeDict({key: _fmt(value) for key, value in (data or {}).items()})
    values["name"] = name
    return template.format_map(values)


class NotificationDispatcher:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        synchronous: bool = False,
    ):
        self.settings = settings or get_settings()
        self.http_client = http_client
        self.sleep = sleep
        self._executor = None if synchronous else ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="notify"
        )
        self.policy = RetryPolicy(
            max_attempts=self.settings.sms_max_attempts,
            base_delay=self.settings.network_backoff_base_seconds,
            max_delay=self.settings.network_backoff_max_seconds,
        )

    def submit(self, recipient: Recipient, kind: str, data: Optional[Dict[str, Any]] = None):
        """Send in the background; the caller never waits for the provider."""
        if self._executor is None:
            self.notify(recipient, kind, data)
        else:
            self._executor.submit(self.notify, recipient, kind, data)

    def notify(self, recipient: Recipient, kind: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Render and send `kind` to the client. Returns False (never raises) on failure."""
        if not recipient.phone:
            logger.info(f"Client {recipient.client_id} has no phone number, skipping {kind} notification.")
            return False
        try:
            message = render_message(kind, recipient.name, data)
        except ValueError as e:
            logger.error(f"Cannot render notification for {recipient.client_id}: {e}")
            return False
        return self.send_sms(recipient.phone, message)

    def shutdown(self, wait: bool = True):
        if self._executor:
            self._executor.shutdown(wait=wait)

    def send_sms(self, phone: str, message: str) -> bool:
        s = self.settings
        if not (s.sms_api_url and s.sms_api_key):
            logger.warning(f"SMS provider not configured. Message not sent: {message}")
            return False

        payload = {
            "apikey": s.sms_api_key,
            "partnerID": s.sms_partner_id,
            "message": message,
            "shortcode": s.sms_shortcode,
            "mobile": normalize_msisdn(phone),
        }

        def post():
            client = self.http_client or httpx
            response = client.post(s.sms_api_url, json=payload, timeout=10)
            response.raise_for_status()
            return response

        try:
            call_with_backoff(
                post,
                self.policy,
                label=f"SMS to {payload['mobile']}",
                retry_on=(httpx.HTTPError,),
                sleep=self.sleep,
            )
        except RetryExhaustedError as e:
            logger.error(f"SMS to {payload['mobile']} dropped: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending SMS to {payload['mobile']}: {e}", exc_info=True)
            return False
        logger.info(f"SMS sent to {payload['mobile']}")
        return True


def claim_notification_slot(session: Session, client_id: uuid.UUID, kind: str, day_bucket: date) -> bool:
    """
    Reserve the (client, kind, day) slot. Returns False when something
    already claimed it, so a reminder goes out at most once per day even if
    two sweeps overlap.
    """
    try:
        session.add(NotificationLog(client_id=client_id, kind=kind, day_bucket=day_bucket))
        session.commit()
        return True
    except IntegrityError:
        session.rollback()
        return False
