"""
Shared fixtures for the linkledger test suite.

Every test runs against a throwaway SQLite file, a fake access adapter
and a recording notifier, so nothing talks to a router, RADIUS or an SMS
provider.
"""

import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal

# Must be set before linkledger builds its engine and audit logger
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="linkledger-logs-"))

import pytest
from sqlmodel import Session, SQLModel, create_engine

from linkledger import models  # noqa: F401
from linkledger.core.config import Settings
from linkledger.models import Client, Payment, Router
from linkledger.services.network_dispatcher import NetworkActionDispatcher
from linkledger.services.network_gateway import NetworkAccessGateway
from linkledger.services.reconciliation_service import ReconciliationService
from linkledger.services.subscription_service import SubscriptionService
from linkledger.utils.device_clients.adapters.base import BaseAccessAdapter

NOW = datetime(2026, 3, 10, 12, 0, 0)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeAccessAdapter(BaseAccessAdapter):
    """Keeps NAS state in memory. `fail_next` makes the next N calls raise."""

    def __init__(self):
        self.suspended = set()
        self.bandwidth = {}
        self.calls = []
        self.fail_next = 0
        self.error_factory = lambda: ConnectionError("connection refused")

    @property
    def vendor(self) -> str:
        return "fake"

    def _maybe_fail(self):
        if self.fail_next > 0:
            self.fail_next -= 1
            raise self.error_factory()

    def suspend(self, account):
        self._maybe_fail()
        changed = account.client_id not in self.suspended
        self.suspended.add(account.client_id)
        self.calls.append(("suspend", account.client_id, changed))
        return {"status": "success", "changed": changed}

    def restore(self, account):
        self._maybe_fail()
        changed = account.client_id in self.suspended
        self.suspended.discard(account.client_id)
        self.calls.append(("restore", account.client_id, changed))
        return {"status": "success", "changed": changed}

    def set_bandwidth(self, account, limits):
        self._maybe_fail()
        changed = self.bandwidth.get(account.client_id) != limits.to_max_limit()
        self.bandwidth[account.client_id] = limits.to_max_limit()
        self.calls.append(("set_bandwidth", account.client_id, changed))
        return {"status": "success", "changed": changed}


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def submit(self, recipient, kind, data=None):
        self.sent.append((recipient.client_id, kind, data or {}))

    def kinds_for(self, client_id):
        return [kind for cid, kind, _ in self.sent if cid == client_id]

    def shutdown(self, wait=True):
        pass


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'linkledger-test.sqlite'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return lambda: Session(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        network_max_attempts=3,
        network_backoff_base_seconds=0,
        network_backoff_max_seconds=0,
        network_timeout_seconds=0,
        sms_api_url=None,
        sms_api_key=None,
    )


@pytest.fixture
def clock():
    """Mutable clock: tests move `clock.now` forward."""

    class Clock:
        now = NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def adapter():
    return FakeAccessAdapter()


@pytest.fixture
def adapter_provider(adapter):
    @contextmanager
    def provide(account, router):
        yield adapter

    return provide


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def gateway(session_factory, adapter_provider, settings, sleeps):
    return NetworkAccessGateway(
        session_factory=session_factory,
        adapter_provider=adapter_provider,
        settings=settings,
        sleep=sleeps.append,
    )


@pytest.fixture
def dispatcher(gateway):
    return NetworkActionDispatcher(gateway, synchronous=True)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def subscriptions(session, dispatcher, notifier, settings, clock):
    return SubscriptionService(
        session, network=dispatcher, notifier=notifier, settings=settings, clock=clock
    )


@pytest.fixture
def reconciliation(session, subscriptions):
    return ReconciliationService(session, subscriptions)


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_client(session):
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        n = counter["n"]
        fields = dict(
            name=f"Client {n}",
            phone_number=f"07000000{n:02d}",
            billing_reference=f"ACC{n:03d}",
            status="active",
            wallet_balance=Decimal("0.00"),
            monthly_rate=Decimal("1000.00"),
            subscription_type="monthly",
            subscription_end_date=NOW + timedelta(days=10),
            speed="10Mbps",
            ip_address=f"10.0.0.{n}",
            suspension_method="address_list",
        )
        fields.update(overrides)
        client = Client(**fields)
        session.add(client)
        session.commit()
        session.refresh(client)
        return client

    return factory


@pytest.fixture
def make_router(session):
    def factory(**overrides):
        fields = dict(host="192.0.2.1", username="api", password="secret")
        fields.update(overrides)
        router = Router(**fields)
        session.add(router)
        session.commit()
        return router

    return factory


def stk_callback(checkout_id="ws_CO_1", receipt="QAB123", amount=1000, phone="254700000001", result_code=0):
    """M-Pesa STK push result, shaped like the Daraja payload."""
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20260310120000},
                {"Name": "PhoneNumber", "Value": int(phone)},
            ]
        }
    return {"Body": {"stkCallback": callback}}


def c2b_callback(trans_id="RKTQDM7W6S", amount="1000.00", msisdn="254700000001", bill_ref="ACC001"):
    return {
        "TransactionType": "Pay Bill",
        "TransID": trans_id,
        "TransTime": "20260310120000",
        "TransAmount": amount,
        "BusinessShortCode": "600638",
        "BillRefNumber": bill_ref,
        "MSISDN": msisdn,
        "FirstName": "John",
    }


def payments_for(session, client_id):
    from sqlmodel import select

    return session.exec(select(Payment).where(Payment.client_id == client_id)).all()
