"""Named adapter factories."""

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Maps adapter names to zero-argument factories.

    Each get() builds a fresh, uninitialized adapter instance.
    """

    def __init__(self):
        self._factories: dict[str, Callable] = {}

    def register(self, name: str, factory: Callable):
        if name in self._factories:
            logger.warning("Adapter %s is already registered. Overwriting...", name)
        self._factories[name] = factory

    def get(self, name: str):
        factory = self._factories.get(name)
        if factory is None:
            return None
        return factory()

    def has(self, name: str) -> bool:
        return name in self._factories

    def unregister(self, name: str) -> bool:
        return self._factories.pop(name, None) is not None

    def names(self) -> list[str]:
        return list(self._factories)

    def clear(self):
        self._factories.clear()

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return len(self._factories)
