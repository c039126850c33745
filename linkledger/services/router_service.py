# linkledger/services/router_service.py
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from routeros_api.api import RouterOsApi
from sqlmodel import Session, select

from ..core.config import get_settings
from ..models.router import Router
from ..utils.device_clients.adapter_factory import get_access_adapter
from ..utils.device_clients.adapters.base import AccessAccount, BaseAccessAdapter
from ..utils.device_clients.adapters.mikrotik_router import MikrotikRouterAdapter
from ..utils.device_clients.mikrotik.connection import remove_pool
from ..utils.security import decrypt_data, encrypt_data
from ..utils.speed import BandwidthLimits

logger = logging.getLogger(__name__)


class RouterConnectionError(Exception):
    pass


class RouterService:
    """
    Service to talk to one specific NAS router.
    """

    def __init__(
        self,
        host: str,
        creds: Optional[Router],
        decrypted_password: Optional[str] = None,
        api: Optional[RouterOsApi] = None,
    ):
        self.host = host
        self.creds = creds
        self.adapter = None

        if not self.creds:
            raise RouterConnectionError(f"Router {host} not found.")
        if not self.creds.is_enabled:
            raise RouterConnectionError(f"Router {host} is disabled.")

        password = decrypted_password if decrypted_password else decrypt_data(self.creds.password)
        self.adapter = MikrotikRouterAdapter(
            host=self.host,
            username=self.creds.username,
            password=password,
            port=self.creds.api_ssl_port,
            api=api,
            address_list_name=self.creds.address_list_name,
            address_list_strategy=self.creds.address_list_strategy,
            suspended_queue_limit=get_settings().suspended_queue_limit,
        )

    def disconnect(self):
        if self.adapter:
            try:
                self.adapter.disconnect()
            except Exception as e:
                logger.debug(f"Ignoring adapter cleanup error for {self.host}: {e}")
            self.adapter = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def suspend(self, account: AccessAccount) -> Dict[str, Any]:
        return self.adapter.suspend(account)

    def restore(self, account: AccessAccount) -> Dict[str, Any]:
        return self.adapter.restore(account)

    def set_bandwidth(self, account: AccessAccount, limits: BandwidthLimits) -> Dict[str, Any]:
        return self.adapter.set_bandwidth(account, limits)


@contextmanager
def open_access_adapter(account: AccessAccount, router: Optional[Router]) -> Iterator[BaseAccessAdapter]:
    """
    Yields the adapter enforcing `account`'s suspension method, closing it
    afterwards. `router` is the NAS row for MikroTik methods.
    """
    if account.suspension_method == "radius":
        adapter = get_access_adapter("radius")
        try:
            yield adapter
        finally:
            adapter.disconnect()
        return

    with RouterService(account.router_host, router) as rs:
        yield rs.adapter


# --- CRUD Functions (Sync) ---

def get_router_by_host(session: Session, host: Optional[str]) -> Optional[Router]:
    if not host:
        return None
    return session.get(Router, host)


def get_all_routers(session: Session) -> List[Router]:
    return list(session.exec(select(Router).order_by(Router.host)).all())


def create_router(session: Session, router_data: dict) -> Router:
    if "password" in router_data:
        router_data["password"] = encrypt_data(router_data["password"])

    router = Router(**router_data)
    session.add(router)
    session.commit()
    session.refresh(router)
    return router


def update_router(session: Session, host: str, router_data: dict) -> Optional[Router]:
    router = session.get(Router, host)
    if not router:
        return None

    if router_data.get("password"):
        router_data["password"] = encrypt_data(router_data["password"])
    else:
        router_data.pop("password", None)

    for key, value in router_data.items():
        setattr(router, key, value)
    session.add(router)
    session.commit()
    session.refresh(router)

    # Cached connections still hold the old credentials
    remove_pool(host)
    return router
