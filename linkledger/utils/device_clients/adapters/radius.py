# linkledger/utils/device_clients/adapters/radius.py
"""
Adapter for a RADIUS management REST API (user status, CoA/disconnect,
per-user rate limits). The AAA protocol itself lives behind that API.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ...speed import BandwidthLimits
from .base import AccessAccount, BaseAccessAdapter, NetworkCommandError

logger = logging.getLogger(__name__)


class RadiusAdapter(BaseAccessAdapter):
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )
        self._owns_client = client is None

    @property
    def vendor(self) -> str:
        return "radius"

    def _request(
        self, method: str, path: str, payload: Dict[str, Any], allow_missing: bool = False
    ) -> Optional[Dict[str, Any]]:
        try:
            response = self._client.request(method, path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if allow_missing and e.response.status_code == 404:
                return None
            # 4xx will not get better on retry, surface it as a command error
            if e.response.status_code < 500:
                raise NetworkCommandError(
                    f"RADIUS API rejected {method} {path}: {e.response.status_code}"
                ) from e
            raise
        return response.json() if response.content else {}

    @staticmethod
    def _username(account: AccessAccount) -> str:
        if not account.pppoe_username:
            raise NetworkCommandError(f"Client {account.client_id} has no RADIUS username.")
        return account.pppoe_username

    def suspend(self, account: AccessAccount) -> Dict[str, Any]:
        username = self._username(account)
        self._request("PUT", f"/users/{username}/status", {"status": "disabled"})
        # Kick the live session; 404 means there is none to kick
        result = self._request(
            "POST",
            "/sessions/disconnect",
            {"username": username, "nas_ip_address": account.router_host},
            allow_missing=True,
        )
        if result is None:
            logger.debug(f"RADIUS user {username} had no live session")
        logger.info(f"RADIUS user {username} disabled and disconnected")
        return {"status": "success", "result": result}

    def restore(self, account: AccessAccount) -> Dict[str, Any]:
        username = self._username(account)
        self._request("PUT", f"/users/{username}/status", {"status": "enabled"})
        if account.limits is not None:
            self.set_bandwidth(account, account.limits)
        logger.info(f"RADIUS user {username} enabled")
        return {"status": "success"}

    def set_bandwidth(self, account: AccessAccount, limits: BandwidthLimits) -> Dict[str, Any]:
        username = self._username(account)
        result = self._request(
            "PUT",
            f"/users/{username}/bandwidth",
            {"upload_limit": limits.upload_bps, "download_limit": limits.download_bps},
        )
        return {"status": "success", "result": result}

    def disconnect(self):
        if self._owns_client:
            self._client.close()
