from .base import AccessAccount, BaseAccessAdapter, NetworkCommandError
from .mikrotik_router import MikrotikRouterAdapter
from .radius import RadiusAdapter
