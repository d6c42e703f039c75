"""Tests for the print/logging/http.client breadcrumb taps."""

import builtins
import http.client
import http.server
import io
import logging
import re
import threading

import pytest

from errorpipe.breadcrumbs import BreadcrumbManager
from errorpipe.interceptors import (
    ConsoleInterceptor,
    LoggingInterceptor,
    NetworkInterceptor,
    level_for_record,
)
from errorpipe.models import ErrorLevel


class TestConsoleInterceptor:
    def test_print_becomes_breadcrumb(self):
        crumbs = BreadcrumbManager()
        interceptor = ConsoleInterceptor(crumbs)
        out = io.StringIO()
        interceptor.enable()
        try:
            print("hello", 42, file=out)
        finally:
            interceptor.disable()
        assert out.getvalue() == "hello 42\n"
        crumb = crumbs.get_all()[0]
        assert crumb.message == "hello 42"
        assert crumb.category == "console"
        assert crumb.level is ErrorLevel.INFO

    def test_custom_separator(self):
        crumbs = BreadcrumbManager()
        interceptor = ConsoleInterceptor(crumbs)
        interceptor.enable()
        try:
            print("a", "b", sep="-", file=io.StringIO())
        finally:
            interceptor.disable()
        assert crumbs.get_all()[0].message == "a-b"

    def test_enable_idempotent_and_disable_restores(self):
        original = builtins.print
        interceptor = ConsoleInterceptor(BreadcrumbManager())
        interceptor.enable()
        wrapped = builtins.print
        interceptor.enable()
        assert builtins.print is wrapped
        interceptor.disable()
        interceptor.disable()
        assert builtins.print is original

    def test_disable_without_enable(self):
        original = builtins.print
        ConsoleInterceptor(BreadcrumbManager()).disable()
        assert builtins.print is original


class TestLoggingInterceptor:
    def test_records_become_breadcrumbs(self):
        crumbs = BreadcrumbManager()
        interceptor = LoggingInterceptor(crumbs)
        interceptor.enable()
        try:
            logging.getLogger("myapp.payments").warning("card declined for %s", "order-1")
        finally:
            interceptor.disable()
        crumb = crumbs.get_all()[0]
        assert crumb.message == "card declined for order-1"
        assert crumb.level is ErrorLevel.WARNING
        assert crumb.data == {"logger": "myapp.payments"}

    def test_own_records_ignored(self):
        crumbs = BreadcrumbManager()
        interceptor = LoggingInterceptor(crumbs)
        interceptor.enable()
        try:
            logging.getLogger("errorpipe.pipeline").warning("internal")
        finally:
            interceptor.disable()
        assert crumbs.count == 0

    def test_disable_removes_handler(self):
        crumbs = BreadcrumbManager()
        interceptor = LoggingInterceptor(crumbs)
        before = list(logging.getLogger().handlers)
        interceptor.enable()
        interceptor.enable()
        interceptor.disable()
        assert logging.getLogger().handlers == before

    def test_level_mapping(self):
        assert level_for_record(logging.CRITICAL) is ErrorLevel.FATAL
        assert level_for_record(logging.ERROR) is ErrorLevel.ERROR
        assert level_for_record(logging.INFO) is ErrorLevel.INFO
        assert level_for_record(logging.DEBUG) is ErrorLevel.DEBUG


class _Handler(http.server.BaseHTTPRequestHandler):
    def do_GET(self):
        status = 404 if self.path.startswith("/missing") else 200
        body = b"ok"
        self.send_response(status)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def http_server():
    server = http.server.HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server.server_address
    finally:
        server.shutdown()
        server.server_close()


def _get(host, port, path):
    conn = http.client.HTTPConnection(host, port, timeout=5)
    try:
        conn.request("GET", path)
        response = conn.getresponse()
        response.read()
        return response.status
    finally:
        conn.close()


class TestNetworkInterceptor:
    def test_requests_become_breadcrumbs(self, http_server):
        host, port = http_server
        crumbs = BreadcrumbManager()
        interceptor = NetworkInterceptor(crumbs)
        interceptor.enable()
        try:
            assert _get(host, port, "/ok") == 200
            assert _get(host, port, "/missing") == 404
        finally:
            interceptor.disable()

        ok, missing = crumbs.get_all()
        assert ok.category == "network"
        assert ok.message == f"GET http://{host}:{port}/ok"
        assert ok.level is ErrorLevel.INFO
        assert ok.data["status_code"] == 200
        assert missing.level is ErrorLevel.WARNING
        assert missing.data["status_code"] == 404

    def test_ignore_urls(self, http_server):
        host, port = http_server
        crumbs = BreadcrumbManager()
        interceptor = NetworkInterceptor(crumbs, ignore_urls=["/ok", re.compile(r"/miss\w+")])
        interceptor.enable()
        try:
            _get(host, port, "/ok")
            _get(host, port, "/missing")
        finally:
            interceptor.disable()
        assert crumbs.count == 0

    def test_disable_restores_originals(self):
        putrequest = http.client.HTTPConnection.putrequest
        getresponse = http.client.HTTPConnection.getresponse
        interceptor = NetworkInterceptor(BreadcrumbManager())
        interceptor.enable()
        assert http.client.HTTPConnection.putrequest is not putrequest
        interceptor.disable()
        assert http.client.HTTPConnection.putrequest is putrequest
        assert http.client.HTTPConnection.getresponse is getresponse
