"""Abstract adapter: lifecycle state machine, stored context, enrichment."""

import abc
import logging
from dataclasses import dataclass, field, replace
from enum import Enum

from errorpipe.config import AdapterConfig
from errorpipe.errors import (
    AdapterDisabledError,
    AlreadyInitializedError,
    LifecycleError,
    NotInitializedError,
)
from errorpipe.models import (
    AdapterLifecycle,
    Breadcrumb,
    ErrorContext,
    ErrorLevel,
    NormalizedError,
    ProviderState,
    now_ms,
)

logger = logging.getLogger(__name__)


class AdapterFeature(Enum):
    BREADCRUMBS = "breadcrumbs"
    USER_CONTEXT = "userContext"
    CUSTOM_CONTEXT = "customContext"
    TAGS = "tags"
    EXTRA_DATA = "extraData"
    OFFLINE_SUPPORT = "offlineSupport"
    CONSOLE_TRACKING = "consoleTracking"
    NETWORK_TRACKING = "networkTracking"
    ERROR_FILTERING = "errorFiltering"
    ERROR_GROUPING = "errorGrouping"
    RELEASE_TRACKING = "releaseTracking"
    CUSTOM_ENDPOINTS = "customEndpoints"


@dataclass(frozen=True)
class AdapterCapabilities:
    features: frozenset = field(default_factory=frozenset)
    max_breadcrumbs: int = 100
    max_context_size: int = 256 * 1024
    max_tags: int = 64
    supports_offline: bool = True
    supports_batching: bool = False
    platforms: tuple = ("linux", "darwin", "windows")


class BaseAdapter(abc.ABC):
    """Delivery backend for normalized errors.

    Subclasses implement _send_error() and get_capabilities(); the _on_*
    hooks let them mirror context changes into the backend.
    """

    name = "base"
    version = "1.0.0"

    def __init__(self):
        self._state = ProviderState()
        self._config = AdapterConfig()
        self._breadcrumbs: list[Breadcrumb] = []
        self._user: dict | None = None
        self._context: dict = {}
        self._tags: dict = {}
        self._extra: dict = {}

    @property
    def is_initialized(self) -> bool:
        return self._state.initialized

    @property
    def config(self) -> AdapterConfig:
        return self._config

    def get_state(self) -> ProviderState:
        return replace(self._state)

    async def initialize(self, config: AdapterConfig | None = None):
        lifecycle = self._state.lifecycle
        if lifecycle in (AdapterLifecycle.INITIALIZING, AdapterLifecycle.INITIALIZED):
            raise AlreadyInitializedError(f"{self.name} adapter")
        if lifecycle == AdapterLifecycle.DESTROYED:
            raise LifecycleError(f"{self.name} adapter has been destroyed")

        config = config or AdapterConfig()
        self._state.lifecycle = AdapterLifecycle.INITIALIZING
        self._config = config
        self._tags.update(config.tags)
        self._context.update(config.context)

        try:
            await self._initialize_adapter(config)
        except Exception:
            self._state.lifecycle = AdapterLifecycle.UNINITIALIZED
            raise

        self._state.enabled = config.enabled
        self._state.lifecycle = AdapterLifecycle.INITIALIZED
        logger.debug("Adapter %s initialized", self.name)

    async def log_error(self, error: NormalizedError):
        """Enrich and send `error`; raises AdapterDisabledError when disabled."""
        self._ensure_initialized()
        if not self._state.enabled:
            raise AdapterDisabledError(self.name)

        enriched = self.enrich_error(error)
        try:
            await self._send_error(enriched)
        except Exception as e:
            logger.warning("Failed to send error to %s: %s", self.name, e)
            raise

        self._state.error_count += 1
        self._state.last_error_timestamp = now_ms()

    async def log_message(self, message: str, level=ErrorLevel.INFO, context=None):
        self._ensure_initialized()
        ctx = ErrorContext.coerce(context) or ErrorContext()
        error = NormalizedError(
            message=message,
            name="LogMessage",
            level=ErrorLevel.parse(level),
            context=ctx.context,
            tags=ctx.tags,
            user=ctx.user,
            metadata=ctx.metadata,
        )
        await self.log_error(error)

    async def set_user(self, user: dict | None):
        self._ensure_initialized()
        self._user = dict(user) if user is not None else None
        await self._on_user(self._user)

    async def set_context(self, key: str, value):
        self._ensure_initialized()
        self._context[key] = value
        await self._on_context(key, value)

    async def add_breadcrumb(self, breadcrumb: Breadcrumb):
        self._ensure_initialized()
        if not self.supports_feature(AdapterFeature.BREADCRUMBS):
            return

        breadcrumb = breadcrumb.copy()
        if breadcrumb.timestamp is None:
            breadcrumb.timestamp = now_ms()
        self._breadcrumbs.append(breadcrumb)

        limit = self.breadcrumb_limit()
        if len(self._breadcrumbs) > limit:
            self._breadcrumbs = self._breadcrumbs[len(self._breadcrumbs) - limit:]

        await self._on_breadcrumb(breadcrumb)

    async def set_tags(self, tags: dict):
        self._ensure_initialized()
        self._tags.update(tags)
        await self._on_tags(dict(tags))

    async def set_extra(self, key: str, value):
        self._ensure_initialized()
        self._extra[key] = value
        await self._on_extra(key, value)

    async def clear_breadcrumbs(self):
        self._ensure_initialized()
        self._breadcrumbs = []
        await self._on_clear_breadcrumbs()

    async def flush(self, timeout: float | None = None) -> bool:
        """Wait for buffered deliveries; True when nothing is left pending."""
        return True

    async def destroy(self):
        if self._state.lifecycle == AdapterLifecycle.DESTROYED:
            return
        if self._state.lifecycle == AdapterLifecycle.INITIALIZED:
            await self._destroy_adapter()

        self._state.lifecycle = AdapterLifecycle.DESTROYED
        self._state.enabled = False
        self._breadcrumbs = []
        self._user = None
        self._context.clear()
        self._tags.clear()
        self._extra.clear()
        logger.debug("Adapter %s destroyed", self.name)

    def supports_feature(self, feature: AdapterFeature) -> bool:
        return feature in self.get_capabilities().features

    @abc.abstractmethod
    def get_capabilities(self) -> AdapterCapabilities:
        ...

    def breadcrumb_limit(self) -> int:
        capability_limit = self.get_capabilities().max_breadcrumbs
        if self._config.max_breadcrumbs is None:
            return capability_limit
        return min(self._config.max_breadcrumbs, capability_limit)

    def enrich_error(self, error: NormalizedError) -> NormalizedError:
        """Layer stored user/tags/context/extra underneath the error's own values."""
        app = {"environment": self._config.environment} if self._config.environment else {}
        if self._config.release:
            app["version"] = self._config.release

        breadcrumbs = error.breadcrumbs or self._breadcrumbs
        limit = self.breadcrumb_limit()
        breadcrumbs = [b.copy() for b in breadcrumbs[-limit:]] if limit > 0 else []

        return replace(
            error,
            user=error.user if error.user is not None else self._user,
            tags={**self._tags, **(error.tags or {})},
            context={**self._context, **(error.context or {})},
            metadata={**self._extra, **(error.metadata or {})},
            app={**app, **(error.app or {})},
            breadcrumbs=breadcrumbs,
        )

    def _ensure_initialized(self):
        if not self._state.initialized:
            raise NotInitializedError(f"{self.name} adapter")

    async def _initialize_adapter(self, config: AdapterConfig):
        pass

    @abc.abstractmethod
    async def _send_error(self, error: NormalizedError):
        ...

    async def _on_user(self, user: dict | None):
        pass

    async def _on_context(self, key: str, value):
        pass

    async def _on_breadcrumb(self, breadcrumb: Breadcrumb):
        pass

    async def _on_tags(self, tags: dict):
        pass

    async def _on_extra(self, key: str, value):
        pass

    async def _on_clear_breadcrumbs(self):
        pass

    async def _destroy_adapter(self):
        pass
