"""Adapter that forwards errors to a user-supplied function or coroutine."""

import inspect
from collections.abc import Callable

from errorpipe.adapters.base import AdapterCapabilities, AdapterFeature, BaseAdapter
from errorpipe.config import AdapterConfig
from errorpipe.models import NormalizedError


class CallbackAdapter(BaseAdapter):
    """Calls `callback(error)`; awaits the result when it is awaitable.

    The callback may also be supplied later via `options.callback`.
    """

    name = "callback"

    def __init__(self, callback: Callable | None = None, flush_callback: Callable | None = None):
        super().__init__()
        self._callback = callback
        self._flush_callback = flush_callback

    async def _initialize_adapter(self, config: AdapterConfig):
        self._callback = config.options.get("callback", self._callback)
        if self._callback is None:
            raise ValueError("CallbackAdapter requires a callback")

    def get_capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(
            features=frozenset(AdapterFeature),
            max_breadcrumbs=100,
        )

    async def _send_error(self, error: NormalizedError):
        result = self._callback(error)
        if inspect.isawaitable(result):
            await result

    async def flush(self, timeout: float | None = None) -> bool:
        if self._flush_callback is None:
            return True
        result = self._flush_callback(timeout)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)
