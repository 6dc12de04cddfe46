"""Connectivity tracking."""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class NetworkMonitor:
    """Tracks whether the remote store is reachable.

    Listeners receive ``{"online": bool}`` on every transition. The state
    can be pushed in by the platform (``set_online``) or probed
    periodically against the server's health endpoint.
    """

    def __init__(self, online: bool = True):
        """Initialize with the assumed starting state."""
        self._online = online
        self.listeners: List[Listener] = []
        self._probe_task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, callback: Listener) -> None:
        self.listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        self.listeners = [l for l in self.listeners if l != callback]

    def set_online(self, online: bool) -> None:
        """Record the current connectivity, notifying listeners if it changed."""
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        logger.info("Network is %s", "online" if online else "offline")
        for callback in list(self.listeners):
            try:
                callback({"online": online})
            except Exception as e:
                logger.error("Network listener failed: %s", str(e))

    async def probe(self, api: Any) -> bool:
        """Check the server once and update the state."""
        online = await api.check_health()
        self.set_online(online)
        return online

    async def _run_probe(self, api: Any, interval: float) -> None:
        while True:
            try:
                await self.probe(api)
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error probing network: %s", str(e))
                self.set_online(False)
                await asyncio.sleep(interval)

    def start_probing(self, api: Any, interval: float) -> None:
        """Start probing the server every ``interval`` seconds."""
        self.stop_probing()
        self._probe_task = asyncio.create_task(self._run_probe(api, interval))

    def stop_probing(self) -> None:
        if self._probe_task is not None:
            self._probe_task.cancel()
            self._probe_task = None
