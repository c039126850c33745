# linkledger/services/runtime.py
"""
Process-wide collaborators shared by the API handlers and the scheduler
jobs: one network dispatcher (its queue is what keeps per-client commands
ordered) and one notification dispatcher.
"""

from functools import lru_cache

from sqlmodel import Session

from ..core.config import get_settings
from ..utils.device_clients.mikrotik.connection import clear_all_pools
from .network_dispatcher import NetworkActionDispatcher
from .network_gateway import NetworkAccessGateway
from .notification_service import NotificationDispatcher
from .subscription_service import SubscriptionService


@lru_cache
def get_network_dispatcher() -> NetworkActionDispatcher:
    settings = get_settings()
    return NetworkActionDispatcher(
        NetworkAccessGateway(settings=settings), max_workers=settings.network_workers
    )


@lru_cache
def get_notifier() -> NotificationDispatcher:
    return NotificationDispatcher(settings=get_settings())


def build_subscription_service(session: Session) -> SubscriptionService:
    return SubscriptionService(
        session,
        network=get_network_dispatcher(),
        notifier=get_notifier(),
        settings=get_settings(),
    )


def shutdown_runtime(wait: bool = True):
    if get_network_dispatcher.cache_info().currsize:
        get_network_dispatcher().shutdown(wait=wait)
    if get_notifier.cache_info().currsize:
        get_notifier().shutdown(wait=wait)
    clear_all_pools()
