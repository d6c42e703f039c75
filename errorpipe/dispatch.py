"""Routes policy-approved errors to the single active adapter."""

import logging

from errorpipe.errors import NoActiveAdapterError
from errorpipe.filters import FilterPolicy, apply_policy
from errorpipe.models import NormalizedError

logger = logging.getLogger(__name__)


class DeliveryMetrics:
    """Counters for capture outcomes."""

    def __init__(self):
        self.reset()

    def record_captured(self):
        self._captured += 1

    def record_delivered(self):
        self._delivered += 1

    def record_failed(self):
        self._failed += 1

    def record_filtered(self):
        self._filtered += 1

    def record_queued(self):
        self._queued += 1

    def snapshot(self) -> dict:
        return {
            "captured": self._captured,
            "delivered": self._delivered,
            "failed": self._failed,
            "filtered": self._filtered,
            "queued": self._queued,
        }

    def reset(self):
        self._captured = 0
        self._delivered = 0
        self._failed = 0
        self._filtered = 0
        self._queued = 0


class Dispatcher:
    """Owns the active adapter and the delivery metrics."""

    def __init__(self, policy: FilterPolicy | None = None, metrics: DeliveryMetrics | None = None):
        self.policy = policy
        self.metrics = metrics or DeliveryMetrics()
        self._adapter = None
        self._adapter_name: str | None = None

    @property
    def active_adapter(self):
        return self._adapter

    @property
    def active_name(self) -> str | None:
        return self._adapter_name

    def set_adapter(self, name: str | None, adapter):
        """Make `adapter` the delivery target; returns the one it replaces."""
        previous = self._adapter
        self._adapter = adapter
        self._adapter_name = name if adapter is not None else None
        return previous

    def prepare(self, error: NormalizedError) -> NormalizedError | None:
        """Run the filter pipeline; None means the error was rejected."""
        prepared = apply_policy(error, self.policy)
        if prepared is None:
            self.metrics.record_filtered()
        return prepared

    async def deliver(self, error: NormalizedError):
        """Hand an already-filtered error to the active adapter.

        Adapter exceptions are counted and re-raised.
        """
        if self._adapter is None:
            raise NoActiveAdapterError()
        try:
            await self._adapter.log_error(error)
        except Exception:
            self.metrics.record_failed()
            raise
        self.metrics.record_delivered()

    async def log_error(self, error: NormalizedError) -> bool:
        """Filter then deliver; False when the policy rejected the error."""
        prepared = self.prepare(error)
        if prepared is None:
            return False
        await self.deliver(prepared)
        return True
