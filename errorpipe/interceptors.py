"""Reversible taps that turn print calls, log records and HTTP requests into breadcrumbs."""

import builtins
import http.client
import logging
import re
import sys
import time

from errorpipe.breadcrumbs import BreadcrumbManager
from errorpipe.models import ErrorLevel

logger = logging.getLogger(__name__)


def level_for_record(levelno: int) -> ErrorLevel:
    if levelno >= logging.CRITICAL:
        return ErrorLevel.FATAL
    if levelno >= logging.ERROR:
        return ErrorLevel.ERROR
    if levelno >= logging.WARNING:
        return ErrorLevel.WARNING
    if levelno >= logging.INFO:
        return ErrorLevel.INFO
    return ErrorLevel.DEBUG


class ConsoleInterceptor:
    """Wraps builtins.print; the original is always called first."""

    def __init__(self, breadcrumbs: BreadcrumbManager):
        self._breadcrumbs = breadcrumbs
        self._original = None

    @property
    def enabled(self) -> bool:
        return self._original is not None

    def enable(self):
        if self._original is not None:
            return
        original = builtins.print
        breadcrumbs = self._breadcrumbs

        def print_with_breadcrumb(*args, **kwargs):
            original(*args, **kwargs)
            stream = kwargs.get("file")
            is_stderr = stream is sys.stderr or stream is sys.__stderr__
            sep = kwargs.get("sep")
            breadcrumbs.add(
                (" " if sep is None else sep).join(str(a) for a in args),
                category="console",
                level=ErrorLevel.ERROR if is_stderr else ErrorLevel.INFO,
                data={"stream": "stderr" if is_stderr else "stdout"},
            )

        self._original = original
        builtins.print = print_with_breadcrumb

    def disable(self):
        if self._original is None:
            return
        builtins.print = self._original
        self._original = None


class _BreadcrumbHandler(logging.Handler):
    def __init__(self, breadcrumbs: BreadcrumbManager, level: int):
        super().__init__(level)
        self._breadcrumbs = breadcrumbs

    def emit(self, record: logging.LogRecord):
        # The pipeline's own logging must never feed back into it
        if record.name == "errorpipe" or record.name.startswith("errorpipe."):
            return
        try:
            self._breadcrumbs.add(
                record.getMessage(),
                category="log",
                level=level_for_record(record.levelno),
                data={"logger": record.name},
            )
        except Exception:
            self.handleError(record)


class LoggingInterceptor:
    """Attaches a breadcrumb handler to the root logger."""

    def __init__(self, breadcrumbs: BreadcrumbManager, level: int = logging.INFO):
        self._handler = _BreadcrumbHandler(breadcrumbs, level)
        self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self):
        if self._enabled:
            return
        logging.getLogger().addHandler(self._handler)
        self._enabled = True

    def disable(self):
        if not self._enabled:
            return
        logging.getLogger().removeHandler(self._handler)
        self._enabled = False


class NetworkInterceptor:
    """Wraps http.client so every request/response pair becomes a breadcrumb.

    `ignore_urls` entries are substrings or compiled regexes matched against
    the full request URL.
    """

    def __init__(self, breadcrumbs: BreadcrumbManager, ignore_urls=None):
        self._breadcrumbs = breadcrumbs
        self._ignore_urls = list(ignore_urls or [])
        self._originals = None

    @property
    def enabled(self) -> bool:
        return self._originals is not None

    def should_ignore(self, url: str) -> bool:
        for pattern in self._ignore_urls:
            if isinstance(pattern, re.Pattern):
                if pattern.search(url):
                    return True
            elif pattern in url:
                return True
        return False

    def enable(self):
        if self._originals is not None:
            return
        original_putrequest = http.client.HTTPConnection.putrequest
        original_getresponse = http.client.HTTPConnection.getresponse
        interceptor = self

        def putrequest(conn, method, url, *args, **kwargs):
            scheme = "https" if isinstance(conn, http.client.HTTPSConnection) else "http"
            full_url = url if "://" in url else f"{scheme}://{conn.host}:{conn.port}{url}"
            conn._errorpipe_request = (method, full_url, time.monotonic())
            return original_putrequest(conn, method, url, *args, **kwargs)

        def getresponse(conn, *args, **kwargs):
            request = getattr(conn, "_errorpipe_request", None)
            conn._errorpipe_request = None
            if request is None or interceptor.should_ignore(request[1]):
                return original_getresponse(conn, *args, **kwargs)

            method, url, started = request
            try:
                response = original_getresponse(conn, *args, **kwargs)
            except Exception as e:
                interceptor._breadcrumbs.add(
                    f"{method} {url} failed",
                    category="network",
                    level=ErrorLevel.ERROR,
                    data={
                        "method": method,
                        "url": url,
                        "error": str(e),
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    },
                )
                raise

            interceptor._breadcrumbs.add(
                f"{method} {url}",
                category="network",
                level=ErrorLevel.INFO if response.status < 400 else ErrorLevel.WARNING,
                data={
                    "method": method,
                    "url": url,
                    "status_code": response.status,
                    "reason": response.reason,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                },
            )
            return response

        self._originals = (original_putrequest, original_getresponse)
        http.client.HTTPConnection.putrequest = putrequest
        http.client.HTTPConnection.getresponse = getresponse

    def disable(self):
        if self._originals is None:
            return
        http.client.HTTPConnection.putrequest, http.client.HTTPConnection.getresponse = self._originals
        self._originals = None
