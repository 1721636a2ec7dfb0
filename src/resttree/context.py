r"""Execution contexts used to run lifecycle hooks.

Two kinds of contexts exist:

- ``SerialContext``: the affinity context. One thread runs the submitted
  tasks one at a time, in submission order. Preflight, progress and
  completion hooks run here.
- ``WorkerPool``: the worker context. A pool of threads runs the
  submitted tasks concurrently, without ordering guarantees.
  Post-processing hooks run here.

Each task runs inside a copy of the ``contextvars`` context of the thread
that submitted it, so values such as the logging correlation id follow
the request onto the context threads.

Example:
    ```pycon
    >>> from resttree.context import SerialContext
    >>> results = []
    >>> context = SerialContext()
    >>> context.start()
    >>> for i in range(3):
    ...     context.submit(results.append, i)
    ...
    >>> context.drain()
    True
    >>> results
    [0, 1, 2]
    >>> context.stop()

    ```
"""

from __future__ import annotations

__all__ = ["ExecutionContext", "SerialContext", "WorkerPool"]

import contextvars
import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Protocol

from resttree.core.config import DEFAULT_MAX_WORKERS

if TYPE_CHECKING:
    from collections.abc import Callable

logger: logging.Logger = logging.getLogger(__name__)

_STOP = object()


class ExecutionContext(Protocol):
    """Anything that can run a callable on behalf of the dispatcher."""

    def submit(self, fn: Callable[..., Any], /, *args: Any) -> None: ...


def _run_task(context: contextvars.Context, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
    try:
        context.run(fn, *args)
    except Exception:
        logger.exception(f"Task {fn!r} raised an exception")


class SerialContext:
    r"""Strictly serialized execution context backed by one thread.

    The context has an explicit lifecycle: ``start`` spawns the thread,
    ``drain`` waits until every task submitted so far has run, ``stop``
    drains and then ends the thread. ``submit`` starts the context lazily.

    Args:
        name: The name of the thread, used in log records.
    """

    def __init__(self, name: str = "resttree-affinity") -> None:
        self._name = name
        self._queue: queue.SimpleQueue[Any] = queue.SimpleQueue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def is_current(self) -> bool:
        """Indicate whether the caller runs on this context's thread."""
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self) -> None:
        """Start the context thread. Starting twice is a no-op.

        Raises:
            RuntimeError: If the context was stopped.
        """
        with self._lock:
            if self._stopped:
                msg = f"{self._name} context is stopped"
                raise RuntimeError(msg)
            if self._thread is None:
                self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
                self._thread.start()
                logger.debug(f"Started {self._name} context")

    def submit(self, fn: Callable[..., Any], /, *args: Any) -> None:
        """Queue ``fn(*args)`` to run after every task already queued.

        Raises:
            RuntimeError: If the context was stopped.
        """
        self.start()
        self._queue.put((contextvars.copy_context(), fn, args))

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until every task submitted before this call has run.

        Args:
            timeout: Maximum seconds to wait, or ``None`` to wait forever.

        Returns:
            ``True`` if the queue was drained before the timeout.

        Raises:
            RuntimeError: If called from the context thread itself.
        """
        if self.is_current():
            msg = f"cannot drain the {self._name} context from its own thread"
            raise RuntimeError(msg)
        if not self.is_running:
            return True
        drained = threading.Event()
        self._queue.put((contextvars.copy_context(), drained.set, ()))
        return drained.wait(timeout)

    def stop(self, timeout: float | None = None) -> None:
        """Drain the queue and stop the context thread.

        Tasks submitted after ``stop`` raise ``RuntimeError``.
        """
        self.drain(timeout)
        with self._lock:
            self._stopped = True
            thread, self._thread = self._thread, None
        if thread is not None:
            self._queue.put(_STOP)
            thread.join(timeout)
            logger.debug(f"Stopped {self._name} context")

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            _run_task(*item)


class WorkerPool:
    r"""Concurrent execution context backed by a thread pool.

    Args:
        max_workers: The number of worker threads.
        executor: Optional executor to use instead of creating one. An
            executor given here is not shut down by ``shutdown``.
    """

    def __init__(
        self,
        max_workers: int = DEFAULT_MAX_WORKERS,
        *,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="resttree-worker"
        )

    def submit(self, fn: Callable[..., Any], /, *args: Any) -> None:
        """Run ``fn(*args)`` on one of the worker threads."""
        self._executor.submit(_run_task, contextvars.copy_context(), fn, args)

    def shutdown(self, wait: bool = True) -> None:
        """Release the worker threads if the pool created them."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
