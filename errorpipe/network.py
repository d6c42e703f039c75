"""Connectivity state with online/offline/change events and an optional TCP probe."""

import asyncio
import logging
from collections.abc import Callable

from errorpipe.models import now_ms

logger = logging.getLogger(__name__)

EVENTS = ("online", "offline", "change")


class NetworkMonitor:
    """Tracks whether deliveries can currently succeed.

    State is changed with set_online(), or by a background probe that
    periodically opens a TCP connection to `probe_host:probe_port`. Only
    transitions are logged and emitted.
    """

    def __init__(
        self,
        online: bool = True,
        probe_host: str | None = None,
        probe_port: int = 443,
        interval: float = 30.0,
        probe_timeout: float = 2.0,
    ):
        self._online = online
        self._last_changed = now_ms()
        self._probe_host = probe_host
        self._probe_port = probe_port
        self._interval = interval
        self._probe_timeout = probe_timeout
        self._listeners: dict[str, list[Callable]] = {event: [] for event in EVENTS}
        self._task: asyncio.Task | None = None

    def is_online(self) -> bool:
        return self._online

    def get_state(self) -> dict:
        return {"is_online": self._online, "last_changed": self._last_changed}

    def on(self, event: str, listener: Callable) -> Callable[[], None]:
        """Subscribe to "online"/"offline" (no arguments) or "change" (is_online)."""
        if event not in self._listeners:
            raise ValueError(f"Unknown network event: {event}")
        self._listeners[event].append(listener)

        def unsubscribe():
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    def set_online(self, online: bool):
        if online == self._online:
            return
        self._online = online
        self._last_changed = now_ms()
        if online:
            logger.info("Network is now online")
            self._emit("online")
        else:
            logger.warning("Network is now offline")
            self._emit("offline")
        self._emit("change", online)

    async def wait_for_online(self, timeout: float | None = None) -> bool:
        """Wait until online or timeout expires.

        Returns True if online, False if timed out.
        """
        if self._online:
            return True

        became_online = asyncio.Event()
        unsubscribe = self.on("online", became_online.set)
        try:
            await asyncio.wait_for(became_online.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            unsubscribe()

    @property
    def probing(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start the background probe loop when a probe host is configured."""
        if self._probe_host is None or self.probing:
            return
        self._task = asyncio.get_running_loop().create_task(self._monitor_loop())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _monitor_loop(self):
        while True:
            self.set_online(await self._probe())
            await asyncio.sleep(self._interval)

    async def _probe(self) -> bool:
        """Attempt a TCP connect to check connectivity."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self._probe_host, self._probe_port),
                self._probe_timeout,
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    def _emit(self, event: str, *args):
        for listener in list(self._listeners[event]):
            try:
                listener(*args)
            except Exception:
                logger.exception("Network %s listener %r failed", event, listener)
