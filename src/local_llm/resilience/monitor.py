"""Periodic health polling of the inference server."""

import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from local_llm.llm.base_client import BaseLLMClient


logger = structlog.get_logger(__name__)

ConnectionListener = Callable[[bool], Union[None, Awaitable[None]]]


class ConnectionMonitor:
    """
    Polls `client.check_health()` every `interval` seconds.

    Listeners (sync or async) are called with the new connectivity only
    when it changes. A failing listener is logged and does not prevent the
    others from running.
    """

    def __init__(self, client: BaseLLMClient, interval: float = 30.0):
        self.client = client
        self.interval = interval
        self.is_connected = False
        self.last_check: Optional[datetime] = None
        self._listeners: List[ConnectionListener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: ConnectionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConnectionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start(self) -> None:
        """Run one check immediately, then keep polling in the background."""
        if self.is_running:
            return
        await self.check_now()
        self._task = asyncio.create_task(self._poll(), name="connection-monitor")
        logger.info("Connection monitor started", interval_s=self.interval)

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.check_now()

    async def check_now(self) -> bool:
        try:
            healthy = await self.client.check_health()
        except Exception as e:
            logger.warning("Health check raised", error=str(e), error_type=type(e).__name__)
            healthy = False
        self.last_check = datetime.now(timezone.utc)
        await self._set_connected(healthy)
        return healthy

    async def mark_disconnected(self) -> None:
        """Record a connection loss observed outside the poller."""
        await self._set_connected(False)

    async def _set_connected(self, connected: bool) -> None:
        if connected == self.is_connected:
            return
        self.is_connected = connected
        logger.info("Connection state changed", connected=connected)

        for listener in list(self._listeners):
            try:
                result = listener(connected)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Connection listener failed", listener=repr(listener))

    def get_state(self) -> Dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "interval": self.interval,
            "running": self.is_running,
        }

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Connection monitor stopped")

    async def dispose(self) -> None:
        await self.stop()
        self._listeners.clear()
