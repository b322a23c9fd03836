"""Command queue: the single ordered execution stream of a session.

Every device operation from every vector and mapper of a session is
appended here and executed in submission order by one worker thread.
That total order is the only synchronization the engine relies on;
vectors carry no locks.

Operations submitted from inside a running operation execute inline so
that nested calls keep program order and the worker never waits on itself.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, ContextManager

from cudavec.exceptions import CudaVecError, DeviceError

log = logging.getLogger(__name__)


class CommandQueue:
    """Strictly ordered, unbounded operation queue backed by one worker.

    Args:
        context: Optional factory for a context manager entered around every
            operation on the worker (e.g. the session's device and stream).
        name: Thread name prefix of the worker.
    """

    def __init__(
        self,
        context: Callable[[], ContextManager[Any]] | None = None,
        name: str = "cudavec-stream",
    ):
        self._context = context or contextlib.nullcontext
        self._name = name
        self._local = threading.local()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._closed = False
        self._submitted = 0
        self._count_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def submitted(self) -> int:
        """Number of operations accepted so far (inline ones included)."""
        return self._submitted

    def on_worker(self) -> bool:
        """True when called from inside an executing operation."""
        return getattr(self._local, "active", False)

    def submit(self, operation: Callable[[], Any], name: str = "op") -> Future:
        """Enqueue ``operation`` and return its completion handle immediately."""
        if self._closed:
            raise DeviceError(f"queue {self._name} is shut down", operation=name)
        with self._count_lock:
            self._submitted += 1
        if self.on_worker():
            return self._run_inline(operation, name)
        try:
            return self._executor.submit(self._execute, operation, name)
        except RuntimeError as exc:
            raise DeviceError(f"queue {self._name} rejected {name}: {exc}", operation=name) from exc

    def submit_sync(self, operation: Callable[[], Any], name: str = "op") -> Any:
        """Enqueue ``operation`` and block until it completes; return its result."""
        return self.submit(operation, name).result()

    def drain(self) -> None:
        """Block until every operation submitted so far has completed."""
        if self._closed or self.on_worker():
            return
        self.submit(_noop, "drain").result()

    def shutdown(self) -> None:
        """Drain the queue and stop the worker. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        log.debug("queue %s shut down after %d operations", self._name, self._submitted)

    def _run_inline(self, operation: Callable[[], Any], name: str) -> Future:
        # Failures propagate to the enclosing operation.
        return completed_future(self._invoke(operation, name))

    def _execute(self, operation: Callable[[], Any], name: str) -> Any:
        self._local.active = True
        try:
            return self._invoke(operation, name, self._context)
        finally:
            self._local.active = False

    def _invoke(
        self,
        operation: Callable[[], Any],
        name: str,
        context: Callable[[], ContextManager[Any]] = contextlib.nullcontext,
    ) -> Any:
        try:
            with context():
                return operation()
        except CudaVecError:
            raise
        except Exception as exc:
            log.error("operation %s failed on %s: %s", name, self._name, exc)
            raise DeviceError(f"{name} failed: {exc}", operation=name) from exc


def _noop() -> None:
    return None


def completed_future(value: Any = None) -> Future:
    """A handle for work that needed no device operation."""
    future: Future = Future()
    future.set_result(value)
    return future
