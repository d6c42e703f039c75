"""ErrorPipeline: normalize, enrich, filter and deliver errors, queueing when delivery fails."""

import asyncio
import logging
from collections.abc import Callable

from errorpipe.adapters.callback import CallbackAdapter
from errorpipe.adapters.console import LoggingAdapter
from errorpipe.adapters.jsonl import JsonlFileAdapter
from errorpipe.breadcrumbs import BreadcrumbManager
from errorpipe.config import AdapterConfig, PipelineConfig
from errorpipe.context import (
    ContextManager,
    collect_app_context,
    collect_device_context,
    collect_network_context,
)
from errorpipe.dispatch import Dispatcher
from errorpipe.errors import (
    AdapterDisabledError,
    AdapterNotFoundError,
    LifecycleError,
    NoActiveAdapterError,
    NotInitializedError,
)
from errorpipe.filters import FilterPolicy
from errorpipe.handlers import GlobalHandlers
from errorpipe.interceptors import ConsoleInterceptor, LoggingInterceptor, NetworkInterceptor
from errorpipe.models import Breadcrumb, ErrorLevel, NormalizedError
from errorpipe.network import NetworkMonitor
from errorpipe.normalizer import normalize, normalize_message, sanitize
from errorpipe.offline_queue import OfflineQueue
from errorpipe.registry import AdapterRegistry
from errorpipe.storage import JsonFileBackend, MemoryBackend, StorageManager

logger = logging.getLogger(__name__)


def create_default_registry() -> AdapterRegistry:
    """Registry pre-populated with the built-in adapters."""
    registry = AdapterRegistry()
    registry.register(LoggingAdapter.name, LoggingAdapter)
    registry.register(JsonlFileAdapter.name, JsonlFileAdapter)
    registry.register(CallbackAdapter.name, CallbackAdapter)
    return registry


def policy_from_config(config: PipelineConfig) -> FilterPolicy:
    return FilterPolicy(
        min_level=config.min_level,
        ignore_errors=list(config.ignore_errors),
        sample_rate=config.sample_rate,
    )


class ErrorPipeline:
    """Public entry point.

    Every operation other than initialize() and subscribe() raises
    NotInitializedError before initialize() or after destroy().
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        registry: AdapterRegistry | None = None,
        storage: StorageManager | None = None,
        network: NetworkMonitor | None = None,
        policy: FilterPolicy | None = None,
    ):
        self.config = config or PipelineConfig()
        offline = self.config.offline

        self.registry = registry if registry is not None else create_default_registry()
        if storage is None:
            backend = JsonFileBackend(offline.storage_path) if offline.storage_path else MemoryBackend()
            storage = StorageManager(backend, max_queue_size=offline.max_size)
        self.storage = storage
        self.network = network if network is not None else NetworkMonitor(
            probe_host=offline.probe_host,
            probe_port=offline.probe_port,
            interval=offline.probe_interval,
        )

        self.queue: OfflineQueue | None = None
        if offline.enabled:
            self.queue = OfflineQueue(
                self.storage,
                self.network,
                max_size=offline.max_size,
                retry_delay=offline.retry_delay,
                max_retries=offline.max_retries,
                backoff_multiplier=offline.backoff_multiplier,
                max_retry_delay=offline.max_retry_delay,
                online_retry_delay=offline.online_retry_delay,
            )

        self.breadcrumbs = BreadcrumbManager(self.config.max_breadcrumbs)
        self.context = ContextManager()
        self.dispatcher = Dispatcher(policy if policy is not None else policy_from_config(self.config))
        self.handlers = GlobalHandlers(self.capture_error)

        self._interceptors = []
        if self.config.console_tracking:
            self._interceptors.append(ConsoleInterceptor(self.breadcrumbs))
        if self.config.logging_tracking:
            self._interceptors.append(LoggingInterceptor(self.breadcrumbs))
        if self.config.network_tracking:
            self._interceptors.append(NetworkInterceptor(self.breadcrumbs, self.config.ignore_urls))

        self._initialized = False
        self._destroyed = False
        self._enabled = True
        self._device: dict = {}
        self._app: dict = {}
        self._listeners: list[Callable[[NormalizedError], None]] = []
        self._network_unsubscribers: list[Callable[[], None]] = []

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def metrics(self):
        return self.dispatcher.metrics

    async def initialize(self):
        if self._destroyed:
            raise LifecycleError("ErrorPipeline has been destroyed")
        if self._initialized:
            logger.warning("ErrorPipeline is already initialized")
            return

        self._device = collect_device_context()
        self._app = collect_app_context(self.config.environment, self.config.release)
        self.context.set_context(tags=self.config.tags, custom=self.config.context)

        user = await self.storage.get_user_context()
        if user:
            self.context.set_user(user)
            logger.debug("Restored persisted user context")

        self._network_unsubscribers = [
            self.network.on("offline", self._on_offline),
            self.network.on("online", self._on_online),
        ]
        self.network.start()

        for interceptor in self._interceptors:
            interceptor.enable()
        if self.config.enable_global_handlers:
            self.handlers.install()

        self._initialized = True
        logger.info("ErrorPipeline initialized (environment=%s)", self.config.environment)

    async def capture_error(self, error, context=None) -> NormalizedError | None:
        """Normalize, enrich and deliver `error`.

        Returns the delivered or queued record, or None when nothing was
        delivered or queued.
        """
        self._ensure_initialized()
        if not self._enabled:
            return None
        normalized = normalize(error, context, environment=self.config.environment)
        return await self._process(normalized)

    async def capture_message(self, message: str, level=ErrorLevel.INFO) -> NormalizedError | None:
        self._ensure_initialized()
        if not self._enabled:
            return None
        normalized = normalize_message(message, level, environment=self.config.environment)
        return await self._process(normalized)

    async def set_user(self, user: dict | None):
        self._ensure_initialized()
        self.context.set_user(user)
        if user is None:
            await self.storage.clear_user_context()
        else:
            await self.storage.save_user_context(user)

        adapter = self.dispatcher.active_adapter
        if adapter is not None:
            await adapter.set_user(user)

    async def set_context(self, **sections):
        """Merge user/device/custom/tags/extra sections into the ambient context."""
        self._ensure_initialized()
        self.context.set_context(**sections)

        adapter = self.dispatcher.active_adapter
        if adapter is None:
            return
        if sections.get("user") is not None:
            await adapter.set_user(self.context.user)
        for key, value in (sections.get("custom") or {}).items():
            await adapter.set_context(key, value)
        if sections.get("tags"):
            await adapter.set_tags(sections["tags"])
        for key, value in (sections.get("extra") or {}).items():
            await adapter.set_extra(key, value)

    async def add_breadcrumb(self, breadcrumb: Breadcrumb | str, **kwargs) -> Breadcrumb:
        self._ensure_initialized()
        added = self.breadcrumbs.add(breadcrumb, **kwargs)
        adapter = self.dispatcher.active_adapter
        if adapter is not None:
            await adapter.add_breadcrumb(added)
        return added

    async def clear_breadcrumbs(self):
        self._ensure_initialized()
        self.breadcrumbs.clear()
        adapter = self.dispatcher.active_adapter
        if adapter is not None:
            await adapter.clear_breadcrumbs()

    def register_adapter(self, name: str, factory: Callable):
        self.registry.register(name, factory)

    async def use_adapter(self, name: str, config: AdapterConfig | dict | None = None):
        """Build, initialize and activate the adapter registered under `name`.

        The ambient context and breadcrumbs are replayed into it, the
        previously active adapter is destroyed, and queued errors for
        `name` are retried.
        """
        self._ensure_initialized()
        adapter = self.registry.get(name)
        if adapter is None:
            raise AdapterNotFoundError(name)

        if config is None:
            adapter_config = self.config.adapter_config(name)
        elif isinstance(config, dict):
            adapter_config = AdapterConfig.from_dict(config)
        else:
            adapter_config = config
        await adapter.initialize(adapter_config)

        await self._replay_context(adapter)

        if self.queue is not None:
            self.queue.stop()
        previous = self.dispatcher.set_adapter(name, adapter)
        if previous is not None and previous is not adapter:
            await previous.destroy()
        logger.info("Using adapter %s", name)

        if self.queue is not None:
            self.queue.start(adapter, name)
            if self.network.is_online():
                await self.queue.process_queue()

    async def remove_adapter(self, name: str) -> bool:
        """Unregister `name`, destroying it first when it is the active adapter."""
        self._ensure_initialized()
        if self.dispatcher.active_name == name:
            if self.queue is not None:
                self.queue.stop()
            adapter = self.dispatcher.set_adapter(None, None)
            await adapter.destroy()
        return self.registry.unregister(name)

    async def flush(self, timeout: float | None = None) -> bool:
        """Drain the offline queue and flush the adapter; False on timeout or leftovers."""
        self._ensure_initialized()
        try:
            return await asyncio.wait_for(self._flush(timeout), timeout)
        except asyncio.TimeoutError:
            logger.warning("Flush timed out after %ss", timeout)
            return False

    async def reset(self):
        """Tear everything down, forget the persisted user and return to the uninitialized state."""
        await self._teardown()
        await self.storage.clear_user_context()
        self.context.clear()
        self.breadcrumbs.clear()
        self.metrics.reset()
        self._enabled = True
        self._initialized = False

    async def destroy(self):
        if self._destroyed:
            return
        await self._teardown()
        self._listeners.clear()
        self._initialized = False
        self._destroyed = True
        logger.info("ErrorPipeline destroyed")

    def subscribe(self, listener: Callable[[NormalizedError], None]) -> Callable[[], None]:
        """Call `listener(error)` for every error delivered or queued."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_enabled(self, enabled: bool):
        self._enabled = enabled

    async def get_metrics(self) -> dict:
        self._ensure_initialized()
        return {**self.metrics.snapshot(), "queue": await self.storage.get_metrics()}

    async def get_statistics(self) -> dict:
        self._ensure_initialized()
        if self.queue is None:
            return {"queue_size": 0, "oldest_item": None, "retry_distribution": {}}
        return await self.queue.get_statistics()

    async def _process(self, normalized: NormalizedError) -> NormalizedError | None:
        self.metrics.record_captured()
        enriched = self._enrich(normalized)
        adapter = self.dispatcher.active_adapter
        if adapter is not None:
            # scrub whatever the adapter would layer in at send time as well
            enriched = adapter.enrich_error(enriched)
        privacy = self.config.privacy
        enriched = sanitize(
            enriched,
            privacy.scrub_pii,
            pii_patterns=privacy.pii_patterns,
            redacted_fields=privacy.redacted_fields,
        )

        prepared = self.dispatcher.prepare(enriched)
        if prepared is None:
            return None

        name = self.dispatcher.active_name
        if name is None:
            raise NoActiveAdapterError()

        if self.queue is not None and not self.network.is_online():
            await self._enqueue(prepared, name)
        else:
            try:
                await self.dispatcher.deliver(prepared)
            except AdapterDisabledError:
                logger.debug("Adapter %s is disabled, discarding error", name)
                return None
            except Exception as e:
                if self.queue is None:
                    raise
                logger.warning("Delivery to %s failed, queueing for retry: %s", name, e)
                await self._enqueue(prepared, name)

        self._notify(prepared)
        return prepared

    def _enrich(self, error: NormalizedError) -> NormalizedError:
        """Layer ambient context underneath the values the error already carries."""
        state = self.context.snapshot()
        error.user = error.user if error.user is not None else state["user"]
        error.tags = {**state["tags"], **(error.tags or {})}
        error.context = {**state["custom"], **(error.context or {})}
        error.metadata = {**state["extra"], **(error.metadata or {})}
        error.device = {**self._device, **state["device"], **(error.device or {})}
        error.app = {**self._app, **(error.app or {})}
        error.network = {**collect_network_context(self.network.is_online()), **(error.network or {})}
        if not error.breadcrumbs:
            error.breadcrumbs = self.breadcrumbs.get_all()
        return error

    async def _enqueue(self, error: NormalizedError, provider: str):
        await self.queue.enqueue(error, provider)
        self.metrics.record_queued()

    async def _flush(self, timeout: float | None) -> bool:
        drained = True
        if self.queue is not None:
            drained = await self.queue.flush()
        adapter = self.dispatcher.active_adapter
        if adapter is None:
            return drained
        return await adapter.flush(timeout) and drained

    async def _replay_context(self, adapter):
        state = self.context.snapshot()
        if state["user"] is not None:
            await adapter.set_user(state["user"])
        for key, value in state["custom"].items():
            await adapter.set_context(key, value)
        if state["tags"]:
            await adapter.set_tags(state["tags"])
        for key, value in state["extra"].items():
            await adapter.set_extra(key, value)
        for breadcrumb in self.breadcrumbs.get_all():
            await adapter.add_breadcrumb(breadcrumb)

    async def _teardown(self):
        if self.queue is not None:
            self.queue.stop()
        for unsubscribe in self._network_unsubscribers:
            unsubscribe()
        self._network_unsubscribers = []
        await self.network.stop()
        for interceptor in self._interceptors:
            interceptor.disable()
        self.handlers.uninstall()
        adapter = self.dispatcher.set_adapter(None, None)
        if adapter is not None:
            await adapter.destroy()

    def _notify(self, error: NormalizedError):
        for listener in list(self._listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Error listener %r failed", listener)

    def _on_offline(self):
        self.breadcrumbs.add("Device went offline", category="network", level=ErrorLevel.WARNING)

    def _on_online(self):
        self.breadcrumbs.add("Device came online", category="network", level=ErrorLevel.INFO)

    def _ensure_initialized(self):
        if not self._initialized:
            raise NotInitializedError("ErrorPipeline")
