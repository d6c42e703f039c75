"""Adapter that reports errors through the logging module."""

import json
import logging

from errorpipe.adapters.base import AdapterCapabilities, AdapterFeature, BaseAdapter
from errorpipe.config import AdapterConfig
from errorpipe.models import ErrorLevel, NormalizedError

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    ErrorLevel.DEBUG: logging.DEBUG,
    ErrorLevel.INFO: logging.INFO,
    ErrorLevel.WARNING: logging.WARNING,
    ErrorLevel.ERROR: logging.ERROR,
    ErrorLevel.FATAL: logging.CRITICAL,
}


class LoggingAdapter(BaseAdapter):
    """Writes one log record per error; `options.verbose` adds the full record as JSON."""

    name = "console"

    def __init__(self):
        super().__init__()
        self._logger = logger
        self._verbose = False

    async def _initialize_adapter(self, config: AdapterConfig):
        if config.options.get("logger"):
            self._logger = logging.getLogger(config.options["logger"])
        self._verbose = bool(config.options.get("verbose", False))

    def get_capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(
            features=frozenset({
                AdapterFeature.BREADCRUMBS,
                AdapterFeature.USER_CONTEXT,
                AdapterFeature.CUSTOM_CONTEXT,
                AdapterFeature.TAGS,
                AdapterFeature.EXTRA_DATA,
                AdapterFeature.OFFLINE_SUPPORT,
            }),
            max_breadcrumbs=100,
        )

    async def _send_error(self, error: NormalizedError):
        level = _LOG_LEVELS[error.level]
        self._logger.log(
            level,
            "[%s] %s: %s (fingerprint=%s)",
            error.source.value,
            error.name,
            error.message,
            "|".join(error.fingerprint),
        )
        if self._verbose:
            self._logger.log(level, "%s", json.dumps(error.to_dict(), default=str, sort_keys=True))

    async def _on_user(self, user: dict | None):
        self._logger.debug("User set: %s", user.get("id") if user else None)
