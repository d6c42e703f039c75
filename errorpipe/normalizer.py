"""Normalizer: converts arbitrary raised values into NormalizedError records."""

import dataclasses
import json
import logging
import os
import platform
import re
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from errorpipe.models import (
    ErrorContext,
    ErrorLevel,
    NormalizedError,
)

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__)) + os.sep

REDACTED = "[REDACTED]"

DEFAULT_PII_PATTERNS = [
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # email
    re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b"),  # credit card
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN
    re.compile(
        r"(?<!\w)(?:\+\d{1,3}[\s.-]?)?(?:\(\d{1,4}\)[\s.-]?)?\d{3,4}[\s.-]\d{3,4}(?:[\s.-]\d{3,4})?(?!\w)"
    ),  # phone
]

_DIGITS = re.compile(r"\b\d+\b")
_HEX_ID = re.compile(r"\b[a-f0-9]{8,}\b", re.IGNORECASE)
_URL = re.compile(r"https?://\S+")

_V8_FRAME = re.compile(r"^\s*at\s+(.+?)\s+\((.+?):(\d+):(\d+)\)$")
_V8_ANON_FRAME = re.compile(r"^\s*at\s+(.+?):(\d+):(\d+)$")
_FIREFOX_FRAME = re.compile(r"^(.+?)@(.+?):(\d+):(\d+)$")
_SAFARI_FRAME = re.compile(r"^(.+?)@(.+?):(\d+)$")
_PYTHON_FRAME = re.compile(r'^\s*File "(.+?)", line (\d+)(?:, in (.+))?$')

_MESSAGE_KEYS = ("message", "error", "reason")
_NAME_KEYS = ("name", "type", "code")
_STACK_KEYS = ("stack", "stackTrace", "stacktrace")
_STATUS_KEYS = ("statusCode", "status_code", "status")


@dataclass(frozen=True)
class StackFrame:
    function: str | None = None
    file: str | None = None
    line: int | None = None
    column: int | None = None


def normalize(value: Any, context=None, environment: str | None = None) -> NormalizedError:
    """Convert a string, exception, mapping or any other value into a NormalizedError.

    `context` may be an ErrorContext or an equivalent dict. Its level wins,
    its tags/context/metadata are merged over the error's own, and its user
    replaces the error's user when present.
    """
    ctx = ErrorContext.coerce(context)
    level = ctx.level if ctx is not None and ctx.level is not None else ErrorLevel.ERROR

    if isinstance(value, str):
        error = _from_string(value, level)
    elif isinstance(value, BaseException):
        error = _from_exception(value, level)
    elif isinstance(value, Mapping) or (
        dataclasses.is_dataclass(value) and not isinstance(value, type)
    ):
        error = _from_object(value, level)
    else:
        error = _from_unknown(value, level)

    if ctx is not None:
        error = _apply_context(error, ctx)

    return _finish(error, environment)


def normalize_message(message: str, level=ErrorLevel.INFO, environment: str | None = None) -> NormalizedError:
    """Build the record used for captured log messages."""
    error = NormalizedError(
        message=message or "Unknown error",
        name="CapturedMessage",
        level=ErrorLevel.parse(level),
        stack=generate_stack_trace(),
    )
    return _finish(error, environment)


def _from_string(message: str, level: ErrorLevel) -> NormalizedError:
    return NormalizedError(
        message=message or "Unknown error",
        name="StringError",
        level=level,
        stack=generate_stack_trace(),
        original_error=message,
    )


def _from_exception(exc: BaseException, level: ErrorLevel) -> NormalizedError:
    name = type(exc).__name__ or "Error"
    message = str(exc) or "Unknown error"
    if exc.__traceback__ is not None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    else:
        stack = generate_stack_trace(f"{name}: {message}")
    return NormalizedError(
        message=message,
        name=name,
        level=level,
        stack=stack,
        original_error=exc,
    )


def _from_object(obj: Any, level: ErrorLevel) -> NormalizedError:
    data = dict(obj) if isinstance(obj, Mapping) else dataclasses.asdict(obj)

    message = _first_present(data, _MESSAGE_KEYS)
    if message is None:
        message = json.dumps(data, default=str)
    name = _first_present(data, _NAME_KEYS)
    stack = _first_present(data, _STACK_KEYS)

    if data.get("level"):
        try:
            level = ErrorLevel.parse(data["level"])
        except ValueError:
            logger.debug("Ignoring unknown level %r on error object", data["level"])

    context = {}
    if data.get("code") is not None:
        context["code"] = data["code"]
    status = _first_present(data, _STATUS_KEYS)
    if status is not None:
        context["statusCode"] = status

    return NormalizedError(
        message=str(message),
        name=str(name) if name is not None else "ObjectError",
        level=level,
        stack=str(stack) if stack is not None else generate_stack_trace(),
        context=context or None,
        original_error=obj,
    )


def _from_unknown(value: Any, level: ErrorLevel) -> NormalizedError:
    return NormalizedError(
        message=str(value),
        name="UnknownError",
        level=level,
        stack=generate_stack_trace(),
        original_error=value,
    )


def _first_present(data: dict, keys) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _apply_context(error: NormalizedError, ctx: ErrorContext) -> NormalizedError:
    metadata = {**(error.metadata or {}), **(ctx.metadata or {})}
    if ctx.extra:
        metadata.update(ctx.extra)
    return replace(
        error,
        level=ctx.level or error.level,
        context=_merged(error.context, ctx.context),
        tags=_merged(error.tags, ctx.tags),
        metadata=metadata or None,
        user=ctx.user if ctx.user is not None else error.user,
        source=ctx.source or error.source,
        handled=ctx.handled if ctx.handled is not None else error.handled,
    )


def _merged(base: dict | None, override: dict | None) -> dict | None:
    if base is None and override is None:
        return None
    return {**(base or {}), **(override or {})}


def _finish(error: NormalizedError, environment: str | None) -> NormalizedError:
    """Attach platform defaults underneath existing values, then fingerprint."""
    env = environment or os.environ.get("ERRORPIPE_ENVIRONMENT", "production")
    error.device = {"platform": platform.system().lower() or "unknown", **(error.device or {})}
    error.app = {"environment": env, **(error.app or {})}
    error.fingerprint = extract_fingerprint(error)
    return error


def generate_stack_trace(header: str | None = None) -> str:
    """Capture the current call stack without frames from this package."""
    frames = [
        frame for frame in traceback.extract_stack()
        if not os.path.abspath(frame.filename).startswith(_PACKAGE_DIR)
    ]
    lines = ["Traceback (most recent call last):\n"]
    lines.extend(traceback.format_list(frames))
    if header:
        lines.append(header + "\n")
    return "".join(lines)


def parse_stack_trace(stack: str | None) -> list[StackFrame]:
    """Parse V8, Firefox, Safari and CPython stack text, most recent frame first.

    Lines that match no known format are skipped.
    """
    if not stack:
        return []

    frames: list[StackFrame] = []
    python_frames: list[StackFrame] = []

    for line in stack.splitlines():
        if not line.strip():
            continue

        m = _PYTHON_FRAME.match(line)
        if m:
            python_frames.append(StackFrame(function=m.group(3), file=m.group(1), line=int(m.group(2))))
            continue

        m = _V8_FRAME.match(line)
        if m:
            frames.append(StackFrame(m.group(1), m.group(2), int(m.group(3)), int(m.group(4))))
            continue

        m = _V8_ANON_FRAME.match(line)
        if m:
            frames.append(StackFrame(file=m.group(1), line=int(m.group(2)), column=int(m.group(3))))
            continue

        m = _FIREFOX_FRAME.match(line)
        if m:
            frames.append(StackFrame(m.group(1), m.group(2), int(m.group(3)), int(m.group(4))))
            continue

        m = _SAFARI_FRAME.match(line)
        if m:
            frames.append(StackFrame(m.group(1), m.group(2), int(m.group(3))))
            continue

    # CPython prints the most recent call last
    python_frames.reverse()
    return python_frames + frames


def message_pattern(message: str) -> str:
    """Replace numbers, long hex ids and URLs with placeholders."""
    pattern = _DIGITS.sub("N", message)
    pattern = _HEX_ID.sub("ID", pattern)
    pattern = _URL.sub("URL", pattern)
    return pattern[:100]


def extract_fingerprint(error: NormalizedError) -> list[str]:
    """Grouping key: [name, message pattern, top frame "file:line"]."""
    fingerprint = [error.name, message_pattern(error.message)]

    frames = parse_stack_trace(error.stack)
    if frames and frames[0].file:
        file_name = frames[0].file.replace("\\", "/").rsplit("/", 1)[-1] or frames[0].file
        fingerprint.append(f"{file_name}:{frames[0].line or 0}")

    return fingerprint


def sanitize(
    error: NormalizedError,
    scrub_pii: bool = False,
    pii_patterns=None,
    redacted_fields=None,
) -> NormalizedError:
    """Return a scrubbed copy of `error`; the input is never modified.

    Pattern matches become "[REDACTED]" in every string the record carries:
    message, stack, fingerprint entries, every map section and each
    breadcrumb's message and data. `redacted_fields` entries are dot paths
    relative to a map section ("nested.api_key") or bare key names matched
    at any depth.
    """
    if not scrub_pii:
        return error

    if pii_patterns is None:
        patterns = DEFAULT_PII_PATTERNS
    else:
        patterns = [re.compile(p) if isinstance(p, str) else p for p in pii_patterns]
    fields = set(redacted_fields or [])

    def scrub(value):
        return _redact(value, "", patterns, fields)

    return replace(
        error,
        message=_redact_text(error.message, patterns),
        stack=_redact_text(error.stack, patterns) if error.stack is not None else None,
        context=scrub(error.context),
        metadata=scrub(error.metadata),
        tags=scrub(error.tags),
        user=scrub(error.user),
        device=scrub(error.device),
        app=scrub(error.app),
        network=scrub(error.network),
        fingerprint=[_redact_text(part, patterns) for part in error.fingerprint],
        breadcrumbs=[
            replace(b, message=_redact_text(b.message, patterns), data=scrub(b.data))
            for b in error.breadcrumbs
        ],
    )


def _redact_text(text: str, patterns) -> str:
    for pattern in patterns:
        text = pattern.sub(REDACTED, text)
    return text


def _redact(value: Any, path: str, patterns, fields: set) -> Any:
    if isinstance(value, str):
        return _redact_text(value, patterns)
    if isinstance(value, Mapping):
        result = {}
        for key, item in value.items():
            full_path = f"{path}.{key}" if path else str(key)
            if full_path in fields or key in fields:
                result[key] = REDACTED
            else:
                result[key] = _redact(item, full_path, patterns, fields)
        return result
    if isinstance(value, (list, tuple)):
        return [_redact(item, path, patterns, fields) for item in value]
    return value
