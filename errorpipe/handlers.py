"""Global hooks that report uncaught exceptions from sys, threading and asyncio."""

import asyncio
import inspect
import logging
import sys
import threading
from collections.abc import Callable

from errorpipe.models import ErrorContext, ErrorLevel, ErrorSource

logger = logging.getLogger(__name__)


class GlobalHandlers:
    """Installs sys.excepthook, threading.excepthook and an asyncio exception handler.

    `capture(exc, context)` may return an awaitable; it is run on the owning
    event loop. The previous hooks are always chained and restored exactly
    by uninstall().
    """

    def __init__(self, capture: Callable):
        self._capture = capture
        self._installed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._original_excepthook = None
        self._original_threading_hook = None
        self._original_loop_handler = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self, loop: asyncio.AbstractEventLoop | None = None):
        if self._installed:
            return
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        self._original_excepthook = sys.excepthook
        self._original_threading_hook = threading.excepthook
        sys.excepthook = self._excepthook
        threading.excepthook = self._threading_hook

        self._loop = loop
        if loop is not None:
            self._original_loop_handler = loop.get_exception_handler()
            loop.set_exception_handler(self._loop_handler)

        self._installed = True
        logger.debug("Global exception handlers installed")

    def uninstall(self):
        if not self._installed:
            return
        sys.excepthook = self._original_excepthook
        threading.excepthook = self._original_threading_hook
        if self._loop is not None and not self._loop.is_closed():
            self._loop.set_exception_handler(self._original_loop_handler)

        self._original_excepthook = None
        self._original_threading_hook = None
        self._original_loop_handler = None
        self._loop = None
        self._installed = False
        logger.debug("Global exception handlers removed")

    def _excepthook(self, exc_type, exc, tb):
        if not issubclass(exc_type, KeyboardInterrupt):
            self._report(exc, ErrorSource.GLOBAL, ErrorLevel.FATAL, {"hook": "sys.excepthook"})
        self._original_excepthook(exc_type, exc, tb)

    def _threading_hook(self, args):
        if args.exc_type is not SystemExit and args.exc_value is not None:
            thread_name = args.thread.name if args.thread is not None else None
            self._report(
                args.exc_value,
                ErrorSource.GLOBAL,
                ErrorLevel.FATAL,
                {"hook": "threading.excepthook", "thread": thread_name},
            )
        self._original_threading_hook(args)

    def _loop_handler(self, loop, context: dict):
        exc = context.get("exception")
        if exc is None:
            exc = RuntimeError(context.get("message", "Unhandled asyncio error"))
        self._report(
            exc,
            ErrorSource.UNHANDLED_REJECTION,
            ErrorLevel.ERROR,
            {"hook": "asyncio", "message": context.get("message")},
        )
        if self._original_loop_handler is not None:
            self._original_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)

    def _report(self, exc: BaseException, source: ErrorSource, level: ErrorLevel, details: dict):
        context = ErrorContext(
            level=level,
            source=source,
            handled=False,
            metadata={k: v for k, v in details.items() if v is not None},
        )
        try:
            result = self._capture(exc, context)
        except Exception:
            logger.exception("Failed to report uncaught exception")
            return
        if inspect.isawaitable(result):
            self._run(self._guarded(result))

    async def _guarded(self, awaitable):
        # Failures here must not re-enter the asyncio exception handler
        try:
            await awaitable
        except Exception:
            logger.exception("Failed to report uncaught exception")

    def _run(self, coro):
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            task = running.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif self._loop is not None and self._loop.is_running():
            asyncio.run_coroutine_threadsafe(coro, self._loop)
        else:
            asyncio.run(coro)
