"""Key-value persistence for the offline queue, user context, settings and metrics.

State is persisted as a JSON file with atomic writes (tmp + os.replace).
"""

import asyncio
import json
import logging
import os

import aiofiles

from errorpipe.models import NormalizedError, QueueItem, now_ms

logger = logging.getLogger(__name__)

DEFAULT_METRICS = {
    "total_errors": 0,
    "successful_errors": 0,
    "failed_errors": 0,
    "dropped_errors": 0,
}


class MemoryBackend:
    """In-process key-value store."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str):
        self._data[key] = value

    async def remove(self, key: str):
        self._data.pop(key, None)


class JsonFileBackend:
    """All keys in one JSON object on disk, rewritten atomically on each change."""

    def __init__(self, path: str):
        self._path = path
        self._data: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._path

    async def get(self, key: str) -> str | None:
        data = await self._load()
        return data.get(key)

    async def set(self, key: str, value: str):
        async with self._lock:
            data = await self._load()
            data[key] = value
            await self._save(data)

    async def remove(self, key: str):
        async with self._lock:
            data = await self._load()
            if data.pop(key, None) is not None:
                await self._save(data)

    async def _load(self) -> dict:
        if self._data is not None:
            return self._data
        try:
            async with aiofiles.open(self._path, mode="r") as f:
                raw = await f.read()
            loaded = json.loads(raw) if raw.strip() else {}
            if not isinstance(loaded, dict):
                raise ValueError("top-level value is not an object")
            self._data = loaded
        except FileNotFoundError:
            self._data = {}
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Corrupt storage file %s, starting empty: %s", self._path, e)
            self._data = {}
        return self._data

    async def _save(self, data: dict):
        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        tmp = self._path + ".tmp"
        async with aiofiles.open(tmp, mode="w") as f:
            await f.write(json.dumps(data))
        os.replace(tmp, self._path)


class StorageManager:
    """Async facade over a key-value backend.

    Every read-modify-write of a stored key runs under one lock.
    """

    def __init__(self, backend=None, max_queue_size: int = 100, namespace: str = "errorpipe"):
        self._backend = backend if backend is not None else MemoryBackend()
        self._max_queue_size = max_queue_size
        self._queue_key = f"{namespace}_queue"
        self._user_key = f"{namespace}_user"
        self._settings_key = f"{namespace}_settings"
        self._metrics_key = f"{namespace}_metrics"
        self._lock = asyncio.Lock()

    @property
    def max_queue_size(self) -> int:
        return self._max_queue_size

    def set_max_queue_size(self, size: int):
        if size < 0:
            raise ValueError("max queue size must be >= 0")
        self._max_queue_size = size

    async def queue_error(self, error: NormalizedError, provider: str) -> QueueItem:
        """Append an error; the oldest items are evicted past max_queue_size."""
        async with self._lock:
            queue = await self.get_error_queue()
            item = QueueItem(error=error, provider=provider)
            queue.append(item)

            if len(queue) > self._max_queue_size:
                evicted = len(queue) - self._max_queue_size
                queue = queue[evicted:]
                logger.debug("Offline queue full, evicted %d oldest item(s)", evicted)

            await self._save_queue(queue)
        return item

    async def get_error_queue(self) -> list[QueueItem]:
        raw = await self._get_json(self._queue_key, [])
        items = []
        for entry in raw:
            try:
                items.append(QueueItem.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable queue item: %s", e)
        return items

    async def get_provider_queue(self, provider: str) -> list[QueueItem]:
        return [item for item in await self.get_error_queue() if item.provider == provider]

    async def remove_from_queue(self, item_id: str):
        async with self._lock:
            queue = await self.get_error_queue()
            await self._save_queue([item for item in queue if item.id != item_id])

    async def update_retry_count(self, item_id: str, retry_count: int):
        async with self._lock:
            queue = await self.get_error_queue()
            for item in queue:
                if item.id == item_id:
                    item.retry_count = retry_count
                    await self._save_queue(queue)
                    return

    async def clear_queue(self, provider: str | None = None):
        async with self._lock:
            if provider is None:
                await self._backend.remove(self._queue_key)
                return
            queue = await self.get_error_queue()
            await self._save_queue([item for item in queue if item.provider != provider])

    async def prune_old_items(self, max_age: float) -> int:
        """Drop items older than `max_age` seconds; returns how many were removed."""
        async with self._lock:
            queue = await self.get_error_queue()
            cutoff = now_ms() - int(max_age * 1000)
            kept = [item for item in queue if item.timestamp > cutoff]
            pruned = len(queue) - len(kept)
            if pruned > 0:
                await self._save_queue(kept)
        return pruned

    async def get_storage_size(self) -> dict:
        queue = await self.get_error_queue()
        return {
            "queue_bytes": len(json.dumps([item.to_dict() for item in queue], default=str).encode("utf-8")),
            "total_items": len(queue),
            "oldest_item": min((item.timestamp for item in queue), default=None),
        }

    async def save_user_context(self, user: dict | None):
        await self._set_json(self._user_key, user)

    async def get_user_context(self) -> dict | None:
        return await self._get_json(self._user_key, None)

    async def clear_user_context(self):
        await self._backend.remove(self._user_key)

    async def save_settings(self, settings: dict):
        await self._set_json(self._settings_key, settings)

    async def get_settings(self) -> dict:
        return await self._get_json(self._settings_key, {})

    async def update_metrics(self, update) -> dict:
        """Apply `update(metrics) -> metrics` and persist the result."""
        async with self._lock:
            metrics = await self.get_metrics()
            updated = update(metrics)
            await self._set_json(self._metrics_key, updated)
        return updated

    async def get_metrics(self) -> dict:
        stored = await self._get_json(self._metrics_key, None)
        return {**DEFAULT_METRICS, **(stored or {})}

    async def clear_all(self):
        async with self._lock:
            for key in (self._queue_key, self._user_key, self._settings_key, self._metrics_key):
                await self._backend.remove(key)

    async def export_data(self) -> dict:
        return {
            "queue": [item.to_dict() for item in await self.get_error_queue()],
            "user_context": await self.get_user_context(),
            "settings": await self.get_settings(),
            "metrics": await self.get_metrics(),
        }

    async def import_data(self, data: dict):
        async with self._lock:
            if data.get("queue") is not None:
                await self._set_json(self._queue_key, list(data["queue"]))
            if data.get("user_context"):
                await self.save_user_context(data["user_context"])
            if data.get("settings"):
                await self.save_settings(data["settings"])
            if data.get("metrics"):
                await self._set_json(self._metrics_key, data["metrics"])

    async def _save_queue(self, queue: list[QueueItem]):
        await self._set_json(self._queue_key, [item.to_dict() for item in queue])

    async def _get_json(self, key: str, default):
        value = await self._backend.get(key)
        if value is None:
            return default
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.warning("Failed to decode stored %s: %s", key, e)
            return default

    async def _set_json(self, key: str, value):
        await self._backend.set(key, json.dumps(value, default=str))
