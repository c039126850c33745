# linkledger/services/network_dispatcher.py
"""
Runs network commands off the request path.

Commands for the same client run one after another in submission order, so
a reconnect queued behind a disconnect can never overtake it. A command
identical to the one already queued (or running) last for that client is
dropped.
"""

import logging
import threading
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from ..core.constants import NetworkActionType
from ..utils.speed import BandwidthLimits
from .network_gateway import NetworkAccessGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkCommand:
    client_id: uuid.UUID
    action: str
    triggered_by: str
    limits: Optional[BandwidthLimits] = None


class NetworkActionDispatcher:
    def __init__(self, gateway: NetworkAccessGateway, max_workers: int = 4, synchronous: bool = False):
        self.gateway = gateway
        self.synchronous = synchronous
        self._executor = None if synchronous else ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="network"
        )
        self._lock = threading.Lock()
        self._pending: Dict[uuid.UUID, Deque[NetworkCommand]] = {}
        self._current: Dict[uuid.UUID, NetworkCommand] = {}

    def submit(self, command: NetworkCommand) -> bool:
        """Queue a command. Returns False when it was collapsed into an identical one."""
        with self._lock:
            queue = self._pending.get(command.client_id)
            running = queue is not None
            if queue is None:
                queue = self._pending[command.client_id] = deque()

            last = queue[-1] if queue else self._current.get(command.client_id)
            if last == command:
                logger.debug(f"Skipping duplicate {command.action} for client {command.client_id}")
                return False
            queue.append(command)

        if not running:
            if self.synchronous:
                self._drain(command.client_id)
            else:
                self._executor.submit(self._drain, command.client_id)
        return True

    def _drain(self, client_id: uuid.UUID):
        while True:
            with self._lock:
                queue = self._pending.get(client_id)
                if not queue:
                    self._pending.pop(client_id, None)
                    self._current.pop(client_id, None)
                    return
                command = queue.popleft()
                self._current[client_id] = command
            try:
                self._run(command)
            except Exception as e:
                logger.error(f"Network command {command.action} for {client_id} crashed: {e}", exc_info=True)

    def _run(self, command: NetworkCommand) -> bool:
        if command.action == NetworkActionType.DISCONNECT.value:
            return self.gateway.disconnect(command.client_id, command.triggered_by)
        if command.action == NetworkActionType.RECONNECT.value:
            return self.gateway.reconnect(command.client_id, command.triggered_by)
        if command.action == NetworkActionType.UPDATE_BANDWIDTH.value:
            return self.gateway.update_bandwidth(command.client_id, command.limits, command.triggered_by)
        raise ValueError(f"Unknown network action '{command.action}'")

    def shutdown(self, wait: bool = True):
        if self._executor:
            self._executor.shutdown(wait=wait)
