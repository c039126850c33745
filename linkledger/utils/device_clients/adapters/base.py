# linkledger/utils/device_clients/adapters/base.py
"""
Base adapter interface for every access-control backend.
Vendor adapters (MikroTik API, RADIUS management API) implement this so the
network gateway never has to know how a client is cut off or restored.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ...speed import BandwidthLimits


class NetworkCommandError(Exception):
    """The target rejected a command or the account cannot be addressed."""


@dataclass
class AccessAccount:
    """
    Where and how a client's connectivity is enforced.
    This is a vendor-agnostic representation built from the Client row.
    """
    client_id: uuid.UUID
    suspension_method: str
    router_host: Optional[str] = None
    ip_address: Optional[str] = None
    pppoe_username: Optional[str] = None
    router_secret_id: Optional[str] = None

    # Package speed, used to lift a queue_limit suspension
    limits: Optional[BandwidthLimits] = None


class BaseAccessAdapter(ABC):
    """
    Every operation must be idempotent at the target: suspending an
    already suspended account (or restoring an active one) succeeds
    without changing anything.
    """

    @property
    @abstractmethod
    def vendor(self) -> str:
        pass

    @abstractmethod
    def suspend(self, account: AccessAccount) -> Dict[str, Any]:
        """Revoke connectivity."""
        pass

    @abstractmethod
    def restore(self, account: AccessAccount) -> Dict[str, Any]:
        """Grant connectivity back."""
        pass

    @abstractmethod
    def set_bandwidth(self, account: AccessAccount, limits: BandwidthLimits) -> Dict[str, Any]:
        pass

    def disconnect(self):
        """
        Cleanup method to close any open connections.
        Override if the adapter maintains persistent connections.
        """
        pass
