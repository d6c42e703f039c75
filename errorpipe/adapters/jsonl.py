"""Adapter that appends each error as one JSON line to a file."""

import json
import logging
import os

import aiofiles

from errorpipe.adapters.base import AdapterCapabilities, AdapterFeature, BaseAdapter
from errorpipe.config import AdapterConfig
from errorpipe.models import NormalizedError

logger = logging.getLogger(__name__)

DEFAULT_PATH = "errors.jsonl"


class JsonlFileAdapter(BaseAdapter):
    """NDJSON sink; `options.path` picks the file (default errors.jsonl)."""

    name = "jsonl"

    def __init__(self, path: str | None = None):
        super().__init__()
        self.path = path

    async def _initialize_adapter(self, config: AdapterConfig):
        self.path = config.options.get("path") or self.path or DEFAULT_PATH
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

    def get_capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(
            features=frozenset({
                AdapterFeature.BREADCRUMBS,
                AdapterFeature.USER_CONTEXT,
                AdapterFeature.CUSTOM_CONTEXT,
                AdapterFeature.TAGS,
                AdapterFeature.EXTRA_DATA,
                AdapterFeature.OFFLINE_SUPPORT,
                AdapterFeature.ERROR_GROUPING,
            }),
            max_breadcrumbs=100,
            supports_batching=True,
        )

    async def _send_error(self, error: NormalizedError):
        line = json.dumps(error.to_dict(), default=str) + "\n"
        async with aiofiles.open(self.path, mode="a") as f:
            await f.write(line)

    async def read_all(self) -> list[NormalizedError]:
        """Load every error written so far."""
        if not self.path or not os.path.exists(self.path):
            return []
        errors = []
        async with aiofiles.open(self.path, mode="r") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    errors.append(NormalizedError.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.warning("Skipping malformed line in %s: %s", self.path, e)
        return errors
