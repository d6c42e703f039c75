"""Ambient user/device/tag context attached to every captured error."""

import copy
import logging
import os
import platform
import socket
import sys
from collections.abc import Callable

import psutil

logger = logging.getLogger(__name__)

_SECTIONS = ("user", "device", "custom", "tags", "extra")


class ContextManager:
    """Holds the process-wide context maps and notifies subscribers on change."""

    def __init__(self):
        self._state: dict[str, dict | None] = {
            "user": None,
            "device": {},
            "custom": {},
            "tags": {},
            "extra": {},
        }
        self._listeners: list[Callable[[dict], None]] = []

    def set_context(self, **sections):
        """Merge each given section into its stored map.

        Sections are user, device, custom, tags and extra; other keyword
        names raise TypeError. A section passed as None is left unchanged.
        """
        unknown = set(sections) - set(_SECTIONS)
        if unknown:
            raise TypeError(f"Unknown context section(s): {', '.join(sorted(unknown))}")

        for name, values in sections.items():
            if values is None:
                continue
            current = self._state[name] or {}
            self._state[name] = {**current, **values}

        self._notify()

    def set_user(self, user: dict | None):
        """Replace the user; None clears it."""
        self._state["user"] = dict(user) if user is not None else None
        self._notify()

    def set_tag(self, key: str, value):
        self._state["tags"][key] = value
        self._notify()

    def set_extra(self, key: str, value):
        self._state["extra"][key] = value
        self._notify()

    @property
    def user(self) -> dict | None:
        return copy.deepcopy(self._state["user"])

    @property
    def tags(self) -> dict:
        return dict(self._state["tags"])

    def snapshot(self) -> dict:
        """Deep copy of every section."""
        return copy.deepcopy(self._state)

    def clear(self):
        self._state = {"user": None, "device": {}, "custom": {}, "tags": {}, "extra": {}}
        self._notify()

    def subscribe(self, listener: Callable[[dict], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Context listener %r failed", listener)


def collect_device_context() -> dict:
    """Describe the host: platform, OS, architecture, CPU and memory."""
    device = {
        "platform": platform.system().lower() or "unknown",
        "os_version": platform.release(),
        "architecture": platform.machine(),
        "hostname": socket.gethostname(),
        "python_version": platform.python_version(),
        "cpu_count": psutil.cpu_count(logical=True),
    }
    try:
        memory = psutil.virtual_memory()
        device["memory_total"] = memory.total
        device["memory_available"] = memory.available
    except (OSError, RuntimeError) as e:
        logger.debug("Memory stats unavailable: %s", e)
    return device


def collect_app_context(environment: str | None = None, release: str | None = None) -> dict:
    app = {
        "environment": environment or os.environ.get("ERRORPIPE_ENVIRONMENT", "production"),
        "pid": os.getpid(),
        "executable": sys.executable,
    }
    if release:
        app["version"] = release
    return app


def collect_network_context(is_online: bool) -> dict:
    return {"is_online": is_online}
