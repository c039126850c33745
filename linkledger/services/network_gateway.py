# linkledger/services/network_gateway.py
"""
Network Access Gateway.

Turns "cut client X" / "restore client X" / "set client X to N kbit/s" into
commands against the NAS or the RADIUS API. Every call:
- is idempotent at the target (the adapters check before they change),
- is retried with exponential backoff and a per-attempt timeout,
- leaves exactly one NetworkAction row with the attempts it took.

A command that still fails after its retries is a *standing discrepancy*:
billing state is already committed, connectivity is stale until an
operator (or the next transition) retries it.
"""

import logging
import time
import uuid
from contextlib import AbstractContextManager
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from ..core.config import Settings, get_settings
from ..core.constants import NetworkActionType, TriggerSource
from ..db.engine_sync import new_session
from ..models import Client, NetworkAction, Router
from ..utils.device_clients.adapters.base import (
    AccessAccount,
    BaseAccessAdapter,
    NetworkCommandError,
)
from ..utils.retry import RetryExhaustedError, RetryPolicy, call_with_backoff
from ..utils.speed import BandwidthLimits, normalize_speed
from .router_service import RouterConnectionError, get_router_by_host, open_access_adapter

logger = logging.getLogger(__name__)

AdapterProvider = Callable[[AccessAccount, Optional[Router]], AbstractContextManager]


def build_access_account(client: Client, settings: Settings) -> AccessAccount:
    return AccessAccount(
        client_id=client.id,
        suspension_method=client.suspension_method or "address_list",
        router_host=client.router_host,
        ip_address=client.ip_address,
        pppoe_username=client.pppoe_username,
        router_secret_id=client.router_secret_id,
        limits=normalize_speed(client.speed, settings.default_speed),
    )


class NetworkAccessGateway:
    def __init__(
        self,
        session_factory: Callable[[], Session] = new_session,
        adapter_provider: AdapterProvider = open_access_adapter,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.adapter_provider = adapter_provider
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.policy = RetryPolicy(
            max_attempts=self.settings.network_max_attempts,
            base_delay=self.settings.network_backoff_base_seconds,
            max_delay=self.settings.network_backoff_max_seconds,
            timeout=self.settings.network_timeout_seconds,
        )

    def disconnect(self, client_id: uuid.UUID, triggered_by: str = TriggerSource.SCHEDULER.value) -> bool:
        return self._execute(
            client_id,
            NetworkActionType.DISCONNECT.value,
            triggered_by,
            lambda adapter, account: adapter.suspend(account),
        )

    def reconnect(self, client_id: uuid.UUID, triggered_by: str = TriggerSource.SCHEDULER.value) -> bool:
        return self._execute(
            client_id,
            NetworkActionType.RECONNECT.value,
            triggered_by,
            lambda adapter, account: adapter.restore(account),
        )

    def update_bandwidth(
        self,
        client_id: uuid.UUID,
        limits: Optional[BandwidthLimits] = None,
        triggered_by: str = TriggerSource.MANUAL.value,
    ) -> bool:
        """Apply `limits`, or the client's package speed when omitted."""
        return self._execute(
            client_id,
            NetworkActionType.UPDATE_BANDWIDTH.value,
            triggered_by,
            lambda adapter, account: adapter.set_bandwidth(account, limits or account.limits),
        )

    def _execute(
        self,
        client_id: uuid.UUID,
        action: str,
        triggered_by: str,
        command: Callable[[BaseAccessAdapter, AccessAccount], object],
    ) -> bool:
        with self.session_factory() as session:
            client = session.get(Client, client_id)
            if client is None:
                logger.error(f"Network {action} requested for unknown client {client_id}")
                return False

            account = build_access_account(client, self.settings)
            router = get_router_by_host(session, client.router_host)
            if router is not None:
                # Adapters read the credentials from a worker thread
                session.expunge(router)

            def attempt():
                with self.adapter_provider(account, router) as adapter:
                    return command(adapter, account)

            label = f"{action} for client {client_id}"
            success, attempts, error = False, 0, None
            try:
                _, attempts = call_with_backoff(
                    attempt,
                    self.policy,
                    label=label,
                    give_up_on=(NetworkCommandError, RouterConnectionError, ValueError),
                    sleep=self.sleep,
                )
                success = True
            except RetryExhaustedError as e:
                attempts = e.attempts
                error = str(e.last_error or e)

            session.add(
                NetworkAction(
                    client_id=client_id,
                    action=action,
                    success=success,
                    error_message=error,
                    triggered_by=triggered_by,
                    attempts=attempts,
                )
            )
            session.commit()

        if success:
            logger.info(f"✅ {label} succeeded after {attempts} attempt(s)")
        else:
            logger.error(f"❌ Standing discrepancy: {label} failed after {attempts} attempt(s): {error}")
        return success


def list_network_actions(
    session: Session,
    client_id: Optional[uuid.UUID] = None,
    failed_only: bool = False,
    limit: int = 100,
) -> List[NetworkAction]:
    statement = select(NetworkAction).order_by(NetworkAction.id.desc()).limit(limit)
    if client_id:
        statement = statement.where(NetworkAction.client_id == client_id)
    if failed_only:
        statement = statement.where(NetworkAction.success == False)  # noqa: E712
    return list(session.exec(statement).all())


def find_standing_discrepancies(session: Session) -> List[NetworkAction]:
    """Latest NetworkAction per client, where that latest one failed."""
    latest_ids = select(func.max(NetworkAction.id)).group_by(NetworkAction.client_id)
    statement = select(NetworkAction).where(
        NetworkAction.id.in_(latest_ids),
        NetworkAction.success == False,  # noqa: E712
    )
    return list(session.exec(statement).all())
