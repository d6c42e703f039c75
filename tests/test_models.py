"""Tests for the shared data model."""

import json

import pytest

from errorpipe.models import (
    AdapterLifecycle,
    Breadcrumb,
    ErrorContext,
    ErrorLevel,
    ErrorSource,
    NormalizedError,
    ProviderState,
    QueueItem,
)


class TestErrorLevel:
    def test_ordering(self):
        assert ErrorLevel.DEBUG < ErrorLevel.INFO < ErrorLevel.WARNING < ErrorLevel.ERROR < ErrorLevel.FATAL
        assert ErrorLevel.FATAL >= ErrorLevel.ERROR
        assert not ErrorLevel.INFO > ErrorLevel.WARNING

    def test_parse_values_and_names(self):
        assert ErrorLevel.parse("warning") is ErrorLevel.WARNING
        assert ErrorLevel.parse("ERROR") is ErrorLevel.ERROR
        assert ErrorLevel.parse(ErrorLevel.DEBUG) is ErrorLevel.DEBUG

    def test_parse_aliases(self):
        assert ErrorLevel.parse("warn") is ErrorLevel.WARNING
        assert ErrorLevel.parse("critical") is ErrorLevel.FATAL

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            ErrorLevel.parse("loud")
        with pytest.raises(ValueError):
            ErrorLevel.parse(3)


class TestNormalizedError:
    def test_defaults(self):
        err = NormalizedError(message="boom", name="StringError")
        assert err.level is ErrorLevel.ERROR
        assert err.handled is True
        assert err.source is ErrorSource.MANUAL
        assert err.timestamp > 0
        assert err.fingerprint == []

    def test_to_dict_excludes_original_error(self):
        err = NormalizedError(message="boom", name="ValueError", original_error=ValueError("boom"))
        data = err.to_dict()
        assert "original_error" not in data
        # Must be JSON-serializable as-is
        json.dumps(data)

    def test_from_dict_restores_nested_records(self):
        err = NormalizedError(
            message="boom",
            name="ValueError",
            level=ErrorLevel.WARNING,
            tags={"a": "1"},
            fingerprint=["ValueError", "boom"],
            breadcrumbs=[Breadcrumb(message="clicked", category="ui", level=ErrorLevel.INFO, timestamp=5)],
            source=ErrorSource.GLOBAL,
            handled=False,
        )
        restored = NormalizedError.from_dict(json.loads(json.dumps(err.to_dict())))
        assert restored == err
        assert restored.breadcrumbs[0].level is ErrorLevel.INFO


class TestErrorContext:
    def test_coerce_none_and_instance(self):
        ctx = ErrorContext(tags={"a": "1"})
        assert ErrorContext.coerce(None) is None
        assert ErrorContext.coerce(ctx) is ctx

    def test_coerce_dict_parses_enums(self):
        ctx = ErrorContext.coerce({"level": "warn", "source": "global", "tags": {"a": "1"}, "ignored": 1})
        assert ctx.level is ErrorLevel.WARNING
        assert ctx.source is ErrorSource.GLOBAL
        assert ctx.tags == {"a": "1"}

    def test_coerce_rejects_other_types(self):
        with pytest.raises(TypeError):
            ErrorContext.coerce(["level", "error"])


class TestQueueItem:
    def test_generated_id_and_defaults(self):
        item = QueueItem(error=NormalizedError(message="boom", name="StringError"), provider="console")
        prefix, suffix = item.id.split("-")
        assert prefix.isdigit()
        assert len(suffix) == 9
        assert item.retry_count == 0

    def test_ids_are_unique(self):
        err = NormalizedError(message="boom", name="StringError")
        ids = {QueueItem(error=err, provider="console").id for _ in range(50)}
        assert len(ids) == 50


class TestProviderState:
    def test_initialized_follows_lifecycle(self):
        state = ProviderState()
        assert state.initialized is False
        state.lifecycle = AdapterLifecycle.INITIALIZED
        assert state.initialized is True
        state.lifecycle = AdapterLifecycle.DESTROYED
        assert state.initialized is False
