"""Bounded breadcrumb log with change subscribers."""

import logging
from collections.abc import Callable

from errorpipe.models import Breadcrumb, ErrorLevel, now_ms

logger = logging.getLogger(__name__)


class BreadcrumbManager:
    """Keeps the most recent `max_breadcrumbs` breadcrumbs, oldest first."""

    def __init__(self, max_breadcrumbs: int = 100):
        if max_breadcrumbs < 0:
            raise ValueError("max_breadcrumbs must be >= 0")
        self._max = max_breadcrumbs
        self._breadcrumbs: list[Breadcrumb] = []
        self._listeners: list[Callable[[list[Breadcrumb]], None]] = []

    @property
    def max_breadcrumbs(self) -> int:
        return self._max

    def add(self, breadcrumb: Breadcrumb | str, **kwargs) -> Breadcrumb:
        """Append a breadcrumb and evict the oldest beyond the bound.

        Accepts a Breadcrumb, or a message plus category/level/data keywords.
        """
        if isinstance(breadcrumb, str):
            level = kwargs.get("level")
            breadcrumb = Breadcrumb(
                message=breadcrumb,
                category=kwargs.get("category"),
                level=ErrorLevel.parse(level) if level is not None else None,
                data=kwargs.get("data"),
            )
        else:
            breadcrumb = breadcrumb.copy()

        if breadcrumb.timestamp is None:
            breadcrumb.timestamp = now_ms()

        self._breadcrumbs.append(breadcrumb)
        if len(self._breadcrumbs) > self._max:
            self._breadcrumbs = self._breadcrumbs[len(self._breadcrumbs) - self._max:]

        self._notify()
        return breadcrumb

    def get_all(self) -> list[Breadcrumb]:
        return [b.copy() for b in self._breadcrumbs]

    def get_recent(self, count: int) -> list[Breadcrumb]:
        if count <= 0:
            return []
        return [b.copy() for b in self._breadcrumbs[-count:]]

    def clear(self):
        self._breadcrumbs = []
        self._notify()

    @property
    def count(self) -> int:
        return len(self._breadcrumbs)

    def subscribe(self, listener: Callable[[list[Breadcrumb]], None]) -> Callable[[], None]:
        """Register a listener called with a copy of the log after each change."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        snapshot = self.get_all()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Breadcrumb listener %r failed", listener)
