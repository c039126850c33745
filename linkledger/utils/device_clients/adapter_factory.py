# linkledger/utils/device_clients/adapter_factory.py
"""
Adapter Factory.
Returns the access adapter that enforces a given suspension method.
"""

import logging
from typing import Optional

from ...core.config import Settings, get_settings
from .adapters.base import BaseAccessAdapter
from .adapters.mikrotik_router import MikrotikRouterAdapter
from .adapters.radius import RadiusAdapter

logger = logging.getLogger(__name__)

MIKROTIK_METHODS = ("address_list", "queue_limit", "pppoe_secret_disable")


def get_access_adapter(
    suspension_method: str,
    host: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    port: int = 8729,
    settings: Optional[Settings] = None,
    **kwargs,
) -> BaseAccessAdapter:
    """
    Args:
        suspension_method: address_list, queue_limit, pppoe_secret_disable or radius
        host/username/password/port: NAS API credentials (MikroTik methods only)
        **kwargs: passed to the MikroTik adapter (address list config, api)

    Raises:
        ValueError: unknown method or RADIUS API not configured
    """
    settings = settings or get_settings()

    if suspension_method == "radius":
        if not settings.radius_api_url:
            raise ValueError("RADIUS_API_URL is not configured.")
        return RadiusAdapter(
            settings.radius_api_url,
            token=settings.radius_api_token,
            timeout=settings.network_timeout_seconds,
        )

    if suspension_method in MIKROTIK_METHODS:
        return MikrotikRouterAdapter(
            host=host,
            username=username,
            password=password,
            port=port,
            suspended_queue_limit=settings.suspended_queue_limit,
            **kwargs,
        )

    raise ValueError(f"Unsupported suspension method: {suspension_method}")
