"""Cleanup registry drained once on normal exit or on a termination signal."""

from __future__ import annotations

import atexit
import logging
import os
import signal
import sys
import threading
from typing import Callable

from .errors import Interrupted

logger = logging.getLogger(__name__)

HANDLED_SIGNALS: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)

CleanupFn = Callable[[], object]


def reset_child_signals() -> None:
    """Restore default dispositions in a worker process."""

    for signum in HANDLED_SIGNALS:
        signal.signal(signum, signal.SIG_DFL)


class SignalManager:
    """Ordered, append-only list of cleanup callbacks.

    ``install`` arms SIGINT/SIGTERM handlers. On receipt the registry drains
    in registration order and ``Interrupted`` is raised from the handler, so
    the main thread unwinds and the CLI exits with ``128 + signum``.

    Use it as a context manager: entering installs, leaving drains and
    restores the previous handlers.
    """

    def __init__(self) -> None:
        self._callbacks: list[tuple[str, CleanupFn]] = []
        self._drained = False
        self._draining = False
        self._lock = threading.RLock()
        self._previous: dict[int, object] = {}
        self._installed = False
        self.interrupted_by: int | None = None

    @property
    def drained(self) -> bool:
        return self._drained

    def register(self, callback: CleanupFn, name: str | None = None) -> None:
        label = name or getattr(callback, "__qualname__", None) or repr(callback)
        with self._lock:
            if self._drained:
                raise RuntimeError("Cleanup registry has already been drained")
            self._callbacks.append((label, callback))

    def install(self) -> None:
        if self._installed:
            return
        if threading.current_thread() is not threading.main_thread():
            raise RuntimeError("Signal handlers can only be installed from the main thread")
        for signum in HANDLED_SIGNALS:
            self._previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle)
        atexit.register(self._drain_at_exit)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        for signum, previous in self._previous.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()
        atexit.unregister(self._drain_at_exit)
        self._installed = False

    def drain(self) -> None:
        """Run every registered callback once, in order. Later calls are no-ops.

        A signal received while draining is deferred: the remaining callbacks
        still run, then ``Interrupted`` is raised.
        """

        with self._lock:
            if self._drained:
                return
            self._draining = True
            self._drained = True
            callbacks = list(self._callbacks)
        try:
            for label, callback in callbacks:
                logger.debug("Running cleanup: %s", label)
                try:
                    callback()
                except Exception:
                    logger.warning("Cleanup function %s failed", label, exc_info=True)
        finally:
            self._draining = False
        if self.interrupted_by is not None:
            raise Interrupted(self.interrupted_by)

    def _drain_at_exit(self) -> None:
        try:
            self.drain()
        except Interrupted as exc:
            sys.stdout.flush()
            sys.stderr.flush()
            os._exit(exc.exit_code)

    def _handle(self, signum: int, _frame) -> None:
        self.interrupted_by = signum
        if self._draining:
            logger.warning("Received signal %d during cleanup, finishing cleanup first", signum)
            return
        logger.warning("Received signal %d, cleaning up...", signum)
        # A second signal must not cut the drain short.
        for handled in HANDLED_SIGNALS:
            signal.signal(handled, signal.SIG_IGN)
        self.drain()
        raise Interrupted(signum)

    def __enter__(self) -> "SignalManager":
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            self.drain()
        finally:
            self.uninstall()
        return False
