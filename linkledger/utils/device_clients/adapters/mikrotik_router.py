# linkledger/utils/device_clients/adapters/mikrotik_router.py
import logging
from typing import Any, Callable, Dict, Optional

from routeros_api.api import RouterOsApi

from ...speed import BandwidthLimits
from ..mikrotik import connection as mikrotik_connection
from ..mikrotik import firewall, ppp, queues
from .base import AccessAccount, BaseAccessAdapter, NetworkCommandError

logger = logging.getLogger(__name__)

_RETRYABLE_MARKERS = ("connection", "closed", "file descriptor", "ssl", "broken pipe")


class MikrotikRouterAdapter(BaseAccessAdapter):
    """
    Enforces suspensions on a MikroTik NAS through the RouterOS API.

    Supported methods:
    - address_list: BL_<name> holds suspended clients (blacklist) or
      WL_<name> holds allowed ones (whitelist)
    - queue_limit: throttle the client's Simple Queue down to a trickle
    - pppoe_secret_disable: disable the PPP secret and kick the live session
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 8729,
        api: Optional[RouterOsApi] = None,
        address_list_name: Optional[str] = None,
        address_list_strategy: Optional[str] = None,
        suspended_queue_limit: str = "1k/1k",
    ):
        self.host = host
        self.username = username
        self.password = password
        self.port = port
        self.address_list_name = address_list_name or "morosos"
        self.address_list_strategy = address_list_strategy or "blacklist"
        self.suspended_queue_limit = suspended_queue_limit
        self._external_api = api
        self._pool_ref = None
        self._internal_api = None

    @property
    def vendor(self) -> str:
        return "mikrotik"

    def _get_api(self) -> RouterOsApi:
        if self._external_api:
            return self._external_api

        if self._internal_api:
            return self._internal_api

        self._pool_ref = mikrotik_connection.get_pool(self.host, self.username, self.password, self.port)
        self._internal_api = self._pool_ref.get_api()
        return self._internal_api

    def _exec_with_retry(self, callback: Callable[[RouterOsApi], Any]) -> Any:
        """
        Executes a callback that takes 'api' as argument.
        If a connection error occurs, drops the cached pool and retries once
        on a fresh connection.
        """
        try:
            return callback(self._get_api())
        except (ppp.SecretNotFoundError, queues.QueueNotFoundError) as e:
            # Missing NAS objects need an operator, not another attempt
            raise NetworkCommandError(str(e)) from e
        except Exception as e:
            if self._external_api or not any(m in str(e).lower() for m in _RETRYABLE_MARKERS):
                raise
            logger.warning(f"Connection error on {self.host} ({e}). Retrying with fresh connection...")
            self._internal_api = None
            mikrotik_connection.remove_pool(self.host, self.port, username=self.username)
            return callback(self._get_api())

    def disconnect(self):
        if self._external_api:
            self._external_api = None
            return
        # The pool is shared between workers; only drop our cached handle
        self._internal_api = None
        self._pool_ref = None

    # --- Address lists ---

    @property
    def full_list_name(self) -> str:
        prefix = "BL_" if self.address_list_strategy == "blacklist" else "WL_"
        return f"{prefix}{self.address_list_name}"

    def _address_list(self, ip: str, suspend: bool) -> Dict[str, Any]:
        list_name = self.full_list_name
        blacklist = self.address_list_strategy == "blacklist"

        def run(api):
            # Blacklist: listed means cut. Whitelist: listed means allowed.
            if suspend == blacklist:
                return firewall.ensure_address_list_entry(
                    api, list_name, ip, comment=f"linkledger - {ip}"
                )
            return firewall.remove_address_list_entry(api, list_name, ip)

        return self._exec_with_retry(run)

    # --- BaseAccessAdapter Implementation ---

    def suspend(self, account: AccessAccount) -> Dict[str, Any]:
        method = account.suspension_method
        if method == "address_list":
            result = self._address_list(self._require_ip(account), suspend=True)
        elif method == "queue_limit":
            ip = self._require_ip(account)
            result = self._exec_with_retry(
                lambda api: queues.set_simple_queue_limit(api, ip, self.suspended_queue_limit)
            )
        elif method == "pppoe_secret_disable":
            result = self._set_secret(account, disable=True)
        else:
            raise NetworkCommandError(f"Suspension method '{method}' is not supported on MikroTik.")

        if account.pppoe_username:
            self._exec_with_retry(
                lambda api: ppp.kill_active_pppoe_connection(api, account.pppoe_username)
            )
        logger.info(f"🔴 Suspended client {account.client_id} on {self.host} via {method}")
        return result

    def restore(self, account: AccessAccount) -> Dict[str, Any]:
        method = account.suspension_method
        if method == "address_list":
            result = self._address_list(self._require_ip(account), suspend=False)
        elif method == "queue_limit":
            if account.limits is None:
                raise NetworkCommandError(f"No package speed known for client {account.client_id}.")
            result = self.set_bandwidth(account, account.limits)
        elif method == "pppoe_secret_disable":
            result = self._set_secret(account, disable=False)
        else:
            raise NetworkCommandError(f"Suspension method '{method}' is not supported on MikroTik.")
        logger.info(f"🟢 Restored client {account.client_id} on {self.host} via {method}")
        return result

    def set_bandwidth(self, account: AccessAccount, limits: BandwidthLimits) -> Dict[str, Any]:
        ip = self._require_ip(account)
        max_limit = limits.to_max_limit()
        logger.info(f"📊 Updating queue limit for {ip} to {max_limit}")
        return self._exec_with_retry(lambda api: queues.set_simple_queue_limit(api, ip, max_limit))

    def _set_secret(self, account: AccessAccount, disable: bool) -> Dict[str, Any]:
        if not (account.router_secret_id or account.pppoe_username):
            raise NetworkCommandError(f"Client {account.client_id} has no PPPoE secret.")
        return self._exec_with_retry(
            lambda api: ppp.set_pppoe_secret_disabled(
                api,
                disable,
                username=account.pppoe_username,
                secret_id=account.router_secret_id,
            )
        )

    @staticmethod
    def _require_ip(account: AccessAccount) -> str:
        if not account.ip_address:
            raise NetworkCommandError(f"Client {account.client_id} has no IP address.")
        return account.ip_address
