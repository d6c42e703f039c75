"""Tests for the filter/transform policy."""

import re
from dataclasses import replace

import pytest

from errorpipe.filters import FilterPolicy, apply_policy, should_deliver, transform
from errorpipe.models import ErrorLevel, NormalizedError


def _error(message="boom", name="Error", level=ErrorLevel.ERROR):
    return NormalizedError(message=message, name=name, level=level)


class TestFilterPolicy:
    def test_sample_rate_out_of_range(self):
        with pytest.raises(ValueError):
            FilterPolicy(sample_rate=1.5)
        with pytest.raises(ValueError):
            FilterPolicy(sample_rate=-0.1)

    def test_min_level_parsed(self):
        assert FilterPolicy(min_level="warn").min_level is ErrorLevel.WARNING

    def test_no_policy_delivers(self):
        assert should_deliver(_error(), None) is True
        err = _error()
        assert apply_policy(err, None) is err


class TestShouldDeliver:
    def test_min_level(self):
        policy = FilterPolicy(min_level=ErrorLevel.WARNING)
        assert should_deliver(_error(level=ErrorLevel.INFO), policy) is False
        assert should_deliver(_error(level=ErrorLevel.WARNING), policy) is True
        assert should_deliver(_error(level=ErrorLevel.FATAL), policy) is True

    def test_ignore_substring_matches_message_or_name(self):
        policy = FilterPolicy(ignore_errors=["ResizeObserver", "ChunkLoadError"])
        assert should_deliver(_error(message="ResizeObserver loop limit exceeded"), policy) is False
        assert should_deliver(_error(name="ChunkLoadError"), policy) is False
        assert should_deliver(_error(message="real problem"), policy) is True

    def test_ignore_regex(self):
        policy = FilterPolicy(ignore_errors=[re.compile(r"^Network \w+ failed$")])
        assert should_deliver(_error(message="Network request failed"), policy) is False
        assert should_deliver(_error(message="Database request failed"), policy) is True

    def test_custom_filters(self):
        policy = FilterPolicy(error_filters=[lambda e: "health" not in e.message])
        assert should_deliver(_error(message="GET /health 500"), policy) is False
        assert should_deliver(_error(message="GET /orders 500"), policy) is True

    def test_level_rejection_skips_later_checks(self):
        calls = []
        draws = []

        def recording_filter(error):
            calls.append(error)
            return True

        def recording_random():
            draws.append(1)
            return 0.0

        policy = FilterPolicy(
            min_level=ErrorLevel.ERROR,
            error_filters=[recording_filter],
            sample_rate=0.5,
            random=recording_random,
        )
        assert should_deliver(_error(level=ErrorLevel.DEBUG), policy) is False
        assert calls == []
        assert draws == []

    def test_filter_rejection_skips_sampling(self):
        draws = []
        policy = FilterPolicy(
            error_filters=[lambda e: False],
            sample_rate=0.5,
            random=lambda: draws.append(1) or 0.0,
        )
        assert should_deliver(_error(), policy) is False
        assert draws == []

    def test_sampling_uses_single_draw(self):
        draws = []

        def draw():
            draws.append(1)
            return 0.3

        assert should_deliver(_error(), FilterPolicy(sample_rate=0.5, random=draw)) is True
        assert should_deliver(_error(), FilterPolicy(sample_rate=0.2, random=draw)) is False
        assert len(draws) == 2

    def test_full_rate_never_draws(self):
        def draw():
            raise AssertionError("random consulted")

        assert should_deliver(_error(), FilterPolicy(sample_rate=1.0, random=draw)) is True

    def test_zero_rate_never_delivers(self):
        policy = FilterPolicy(sample_rate=0.0)
        assert not any(should_deliver(_error(), policy) for _ in range(1000))


class TestTransform:
    def test_before_send_replaces(self):
        policy = FilterPolicy(before_send=lambda e: replace(e, message="rewritten"))
        assert transform(_error(), policy).message == "rewritten"

    def test_before_send_cancels(self):
        assert transform(_error(), FilterPolicy(before_send=lambda e: None)) is None
        assert transform(_error(), FilterPolicy(before_send=lambda e: False)) is None

    def test_apply_policy_filters_before_transform(self):
        seen = []
        policy = FilterPolicy(
            ignore_errors=["skip"],
            before_send=lambda e: seen.append(e) or e,
        )
        assert apply_policy(_error(message="skip me"), policy) is None
        assert seen == []
        assert apply_policy(_error(message="keep me"), policy).message == "keep me"
        assert len(seen) == 1
