"""Data model shared by every pipeline stage."""

import time
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class ErrorLevel(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def ordinal(self) -> int:
        return _LEVEL_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, ErrorLevel):
            return NotImplemented
        return self.ordinal < other.ordinal

    def __le__(self, other):
        if not isinstance(other, ErrorLevel):
            return NotImplemented
        return self.ordinal <= other.ordinal

    def __gt__(self, other):
        if not isinstance(other, ErrorLevel):
            return NotImplemented
        return self.ordinal > other.ordinal

    def __ge__(self, other):
        if not isinstance(other, ErrorLevel):
            return NotImplemented
        return self.ordinal >= other.ordinal

    @classmethod
    def parse(cls, value) -> "ErrorLevel":
        """Accept a member, a value ("warning") or a name ("WARNING")."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid error level: {value!r}")
        key = value.strip().lower()
        key = _LEVEL_ALIASES.get(key, key)
        for level in cls:
            if level.value == key:
                return level
        raise ValueError(f"Invalid error level: {value!r}")


_LEVEL_ORDER = [
    ErrorLevel.DEBUG,
    ErrorLevel.INFO,
    ErrorLevel.WARNING,
    ErrorLevel.ERROR,
    ErrorLevel.FATAL,
]

_LEVEL_ALIASES = {"warn": "warning", "critical": "fatal", "err": "error"}


class ErrorSource(Enum):
    MANUAL = "manual"
    GLOBAL = "global"
    UNHANDLED_REJECTION = "unhandledRejection"
    REACT = "react"


class AdapterLifecycle(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    DESTROYED = "destroyed"


@dataclass
class Breadcrumb:
    message: str
    category: str | None = None
    level: ErrorLevel | None = None
    timestamp: int | None = None
    data: dict | None = None

    def copy(self) -> "Breadcrumb":
        return replace(self, data=dict(self.data) if self.data is not None else None)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "category": self.category,
            "level": self.level.value if self.level is not None else None,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Breadcrumb":
        level = data.get("level")
        return cls(
            message=data.get("message", ""),
            category=data.get("category"),
            level=ErrorLevel.parse(level) if level else None,
            timestamp=data.get("timestamp"),
            data=data.get("data"),
        )


@dataclass
class ErrorContext:
    """Per-capture overrides passed alongside the raw error."""

    level: ErrorLevel | None = None
    user: dict | None = None
    tags: dict | None = None
    context: dict | None = None
    metadata: dict | None = None
    extra: dict | None = None
    source: ErrorSource | None = None
    handled: bool | None = None

    @classmethod
    def coerce(cls, value) -> "ErrorContext | None":
        """Build an ErrorContext from None, an instance, or a plain dict."""
        if value is None or isinstance(value, cls):
            return value
        if not isinstance(value, dict):
            raise TypeError(f"context must be a dict or ErrorContext, got {type(value).__name__}")
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in value.items() if k in known}
        if kwargs.get("level") is not None:
            kwargs["level"] = ErrorLevel.parse(kwargs["level"])
        if kwargs.get("source") is not None and not isinstance(kwargs["source"], ErrorSource):
            kwargs["source"] = ErrorSource(kwargs["source"])
        return cls(**kwargs)


@dataclass
class NormalizedError:
    message: str
    name: str
    level: ErrorLevel = ErrorLevel.ERROR
    timestamp: int = field(default_factory=now_ms)
    stack: str | None = None
    context: dict | None = None
    tags: dict | None = None
    user: dict | None = None
    device: dict | None = None
    app: dict | None = None
    network: dict | None = None
    metadata: dict | None = None
    fingerprint: list[str] = field(default_factory=list)
    breadcrumbs: list[Breadcrumb] = field(default_factory=list)
    handled: bool = True
    source: ErrorSource = ErrorSource.MANUAL
    original_error: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        """JSON-safe representation; the original error is never included."""
        return {
            "message": self.message,
            "name": self.name,
            "level": self.level.value,
            "timestamp": self.timestamp,
            "stack": self.stack,
            "context": self.context,
            "tags": self.tags,
            "user": self.user,
            "device": self.device,
            "app": self.app,
            "network": self.network,
            "metadata": self.metadata,
            "fingerprint": list(self.fingerprint),
            "breadcrumbs": [b.to_dict() for b in self.breadcrumbs],
            "handled": self.handled,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NormalizedError":
        return cls(
            message=data["message"],
            name=data["name"],
            level=ErrorLevel.parse(data.get("level", "error")),
            timestamp=data.get("timestamp") or now_ms(),
            stack=data.get("stack"),
            context=data.get("context"),
            tags=data.get("tags"),
            user=data.get("user"),
            device=data.get("device"),
            app=data.get("app"),
            network=data.get("network"),
            metadata=data.get("metadata"),
            fingerprint=list(data.get("fingerprint") or []),
            breadcrumbs=[Breadcrumb.from_dict(b) for b in data.get("breadcrumbs") or []],
            handled=data.get("handled", True),
            source=ErrorSource(data.get("source", "manual")),
        )


@dataclass
class QueueItem:
    error: NormalizedError
    provider: str
    retry_count: int = 0
    timestamp: int = field(default_factory=now_ms)
    id: str = field(default_factory=lambda: f"{now_ms()}-{uuid.uuid4().hex[:9]}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "error": self.error.to_dict(),
            "provider": self.provider,
            "retry_count": self.retry_count,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueueItem":
        return cls(
            id=data["id"],
            error=NormalizedError.from_dict(data["error"]),
            provider=data["provider"],
            retry_count=data.get("retry_count", 0),
            timestamp=data.get("timestamp") or now_ms(),
        )


@dataclass
class ProviderState:
    lifecycle: AdapterLifecycle = AdapterLifecycle.UNINITIALIZED
    enabled: bool = True
    error_count: int = 0
    last_error_timestamp: int | None = None
    queue_size: int = 0

    @property
    def initialized(self) -> bool:
        return self.lifecycle == AdapterLifecycle.INITIALIZED
