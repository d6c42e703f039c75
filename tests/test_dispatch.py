"""Tests for the dispatcher and delivery metrics."""

import pytest

from errorpipe.adapters.callback import CallbackAdapter
from errorpipe.dispatch import DeliveryMetrics, Dispatcher
from errorpipe.config import AdapterConfig
from errorpipe.errors import AdapterDisabledError, NoActiveAdapterError
from errorpipe.filters import FilterPolicy
from errorpipe.models import ErrorLevel, NormalizedError


def _error(message="boom", level=ErrorLevel.ERROR):
    return NormalizedError(message=message, name="Error", level=level)


async def _callback_adapter(received, fail=False):
    def deliver(error):
        if fail:
            raise ConnectionError("backend down")
        received.append(error)

    adapter = CallbackAdapter(deliver)
    await adapter.initialize()
    return adapter


class TestDeliveryMetrics:
    def test_counters_and_reset(self):
        metrics = DeliveryMetrics()
        metrics.record_captured()
        metrics.record_captured()
        metrics.record_delivered()
        metrics.record_filtered()
        assert metrics.snapshot() == {"captured": 2, "delivered": 1, "failed": 0, "filtered": 1, "queued": 0}
        metrics.reset()
        assert set(metrics.snapshot().values()) == {0}


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_no_active_adapter(self):
        with pytest.raises(NoActiveAdapterError, match="use_adapter"):
            await Dispatcher().deliver(_error())

    @pytest.mark.asyncio
    async def test_set_adapter_returns_previous(self):
        dispatcher = Dispatcher()
        first = await _callback_adapter([])
        second = await _callback_adapter([])
        assert dispatcher.set_adapter("first", first) is None
        assert dispatcher.set_adapter("second", second) is first
        assert dispatcher.active_name == "second"
        dispatcher.set_adapter("ignored", None)
        assert dispatcher.active_name is None

    @pytest.mark.asyncio
    async def test_delivers_and_counts(self):
        received = []
        dispatcher = Dispatcher()
        dispatcher.set_adapter("callback", await _callback_adapter(received))
        assert await dispatcher.log_error(_error()) is True
        assert len(received) == 1
        assert dispatcher.metrics.snapshot()["delivered"] == 1

    @pytest.mark.asyncio
    async def test_filtered_never_reaches_adapter(self):
        received = []
        dispatcher = Dispatcher(FilterPolicy(min_level=ErrorLevel.ERROR))
        dispatcher.set_adapter("callback", await _callback_adapter(received))
        assert await dispatcher.log_error(_error(level=ErrorLevel.INFO)) is False
        assert received == []
        assert dispatcher.metrics.snapshot()["filtered"] == 1

    @pytest.mark.asyncio
    async def test_zero_sample_rate_never_reaches_adapter(self):
        received = []
        dispatcher = Dispatcher(FilterPolicy(sample_rate=0.0))
        dispatcher.set_adapter("callback", await _callback_adapter(received))
        for _ in range(200):
            await dispatcher.log_error(_error())
        assert received == []

    @pytest.mark.asyncio
    async def test_before_send_result_is_delivered(self):
        received = []

        def rewrite(error):
            error.tags = {"rewritten": "yes"}
            return error

        dispatcher = Dispatcher(FilterPolicy(before_send=rewrite))
        dispatcher.set_adapter("callback", await _callback_adapter(received))
        await dispatcher.log_error(_error())
        assert received[0].tags == {"rewritten": "yes"}

    @pytest.mark.asyncio
    async def test_adapter_failure_counted_and_raised(self):
        dispatcher = Dispatcher()
        dispatcher.set_adapter("callback", await _callback_adapter([], fail=True))
        with pytest.raises(ConnectionError):
            await dispatcher.deliver(_error())
        assert dispatcher.metrics.snapshot()["failed"] == 1
        assert dispatcher.metrics.snapshot()["delivered"] == 0

    @pytest.mark.asyncio
    async def test_disabled_adapter_not_counted_as_delivered(self):
        received = []
        adapter = CallbackAdapter(received.append)
        await adapter.initialize(AdapterConfig(enabled=False))
        dispatcher = Dispatcher()
        dispatcher.set_adapter("callback", adapter)
        with pytest.raises(AdapterDisabledError):
            await dispatcher.deliver(_error())
        assert received == []
        assert dispatcher.metrics.snapshot()["delivered"] == 0
        assert dispatcher.metrics.snapshot()["failed"] == 1
