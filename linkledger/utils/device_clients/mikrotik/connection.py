# linkledger/utils/device_clients/mikrotik/connection.py
"""
Centralized MikroTik connection manager.

Keeps one RouterOsApiPool per (host, port, username) so the sweep and the
dispatcher workers do not open a new SSL session for every command.
"""

import logging
import ssl
import threading
from typing import Dict, Optional

from routeros_api import RouterOsApiPool

logger = logging.getLogger(__name__)

_pool_cache: Dict[tuple, RouterOsApiPool] = {}
_pool_lock = threading.Lock()


def get_pool(host: str, username: str, password: str, port: int = 8729) -> RouterOsApiPool:
    """
    Get or create a cached connection pool for a MikroTik device.

    Args:
        host: IP address or hostname of the router.
        username: API username.
        password: API password (already decrypted).
        port: API SSL port (default: 8729).
    """
    cache_key = (host, port, username)

    with _pool_lock:
        if cache_key not in _pool_cache:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

            _pool_cache[cache_key] = RouterOsApiPool(
                host,
                username=username,
                password=password,
                port=port,
                use_ssl=True,
                ssl_context=ssl_context,
                plaintext_login=True,
            )
            logger.debug(f"[MikroTik] Created new pool for {host}:{port}")

        return _pool_cache[cache_key]


def remove_pool(host: str, port: Optional[int] = None, username: Optional[str] = None):
    """Remove cached pools for a host (e.g. after credentials change or a broken socket)."""
    with _pool_lock:
        keys_to_remove = [
            key
            for key in _pool_cache
            if key[0] == host
            and (port is None or key[1] == port)
            and (username is None or key[2] == username)
        ]
        for key in keys_to_remove:
            _disconnect_quietly(_pool_cache.pop(key))
            logger.debug(f"[MikroTik] Disconnected pool for {key[0]}:{key[1]}")


def clear_all_pools():
    with _pool_lock:
        for pool in _pool_cache.values():
            _disconnect_quietly(pool)
        _pool_cache.clear()


def _disconnect_quietly(pool: RouterOsApiPool):
    try:
        pool.disconnect()
    except Exception as e:
        logger.debug(f"[MikroTik] Ignoring error while closing pool: {e}")
