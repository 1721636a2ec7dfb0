r"""Dispatch of requests on the affinity and worker contexts.

The ``Dispatcher`` is the only component that decides where hooks run.
It owns one serial affinity context, one worker pool and one transport,
and exposes two entry points:

- ``dispatch_async`` returns a ``PendingRequest`` immediately; the final
  envelope is delivered to the request completion hook.
- ``dispatch_sync`` runs the same pipeline and blocks the calling thread
  until the envelope is ready, then returns it.

Example:
    ```pycon
    >>> import httpx
    >>> from resttree import Dispatcher, Resource
    >>> from resttree.transport import HttpxTransport
    >>> mock = httpx.MockTransport(lambda request: httpx.Response(200, json={"id": 1}))
    >>> with Dispatcher(HttpxTransport(httpx.Client(transport=mock))) as dispatcher:
    ...     api = Resource.root("https://api.example.com", dispatcher=dispatcher)
    ...     envelope = api.child("users").child(1).get()
    ...
    >>> envelope.success, envelope.status_code
    (True, 200)

    ```
"""

from __future__ import annotations

__all__ = [
    "Dispatcher",
    "PendingRequest",
    "get_default_dispatcher",
    "set_default_dispatcher",
]

import asyncio
import atexit
import logging
import threading
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any

from resttree.context import SerialContext, WorkerPool
from resttree.pipeline import HookPipeline
from resttree.transport import HttpxTransport

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from types import TracebackType
    from typing import Self

    from resttree.envelope import ResponseEnvelope
    from resttree.pipeline import Stage
    from resttree.request import Request
    from resttree.transport import Transport

logger: logging.Logger = logging.getLogger(__name__)

_default_dispatcher: Dispatcher | None = None
_default_dispatcher_lock = threading.Lock()


class PendingRequest:
    r"""Handle of a request dispatched asynchronously.

    The handle can be cancelled, polled, waited on from a thread, or
    awaited from asyncio code.

    Args:
        pipeline: The pipeline running the request.
        future: The future resolved with the final envelope.
    """

    def __init__(self, pipeline: HookPipeline, future: Future[ResponseEnvelope]) -> None:
        self._pipeline = pipeline
        self._future = future

    def __repr__(self) -> str:
        return f"PendingRequest({self.request!r}, stage={self.stage.value})"

    def __await__(self) -> Generator[Any, None, ResponseEnvelope]:
        return asyncio.wrap_future(self._future).__await__()

    @property
    def request(self) -> Request:
        return self._pipeline.request

    @property
    def stage(self) -> Stage:
        return self._pipeline.stage

    def cancel(self) -> bool:
        """Cancel the request.

        The completion hook still fires, with a ``RequestCancelledError``.
        A running post-processing hook is allowed to return first.
        Cancelling twice, or once the outcome is decided, is a no-op.

        Returns:
            ``True`` if this call cancelled the request.
        """
        return self._pipeline.cancel()

    def done(self) -> bool:
        """Indicate whether the completion step has run."""
        return self._future.done()

    def result(self, timeout: float | None = None) -> ResponseEnvelope:
        """Wait for the final envelope.

        Args:
            timeout: Maximum seconds to wait, or ``None`` to wait forever.

        Raises:
            TimeoutError: If the envelope is not ready in time.
        """
        return self._future.result(timeout)

    def add_done_callback(self, fn: Callable[[ResponseEnvelope], None]) -> None:
        """Call ``fn`` with the envelope once the completion step ran.

        ``fn`` runs on the affinity thread, or immediately if the request
        is already done.
        """
        self._future.add_done_callback(lambda future: fn(future.result()))


class Dispatcher:
    r"""Execute requests through the hook pipeline.

    All the collaborators are injectable, which makes the dispatcher
    substitutable in tests. Collaborators created by the dispatcher are
    released by ``shutdown``; injected ones are only drained.

    Args:
        transport: The transport performing network calls. Defaults to a
            new ``HttpxTransport``.
        affinity: The serial context for preflight, progress and completion
            hooks. Defaults to a new ``SerialContext``.
        workers: The concurrent context for post-processing hooks. Defaults
            to a new ``WorkerPool``.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        *,
        affinity: SerialContext | None = None,
        workers: WorkerPool | None = None,
    ) -> None:
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport()
        self._owns_affinity = affinity is None
        self._affinity = affinity or SerialContext()
        self._owns_workers = workers is None
        self._workers = workers or WorkerPool()

        self._lock = threading.Lock()
        self._pending: set[PendingRequest] = set()
        self._closed = False

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    @property
    def affinity(self) -> SerialContext:
        return self._affinity

    @property
    def workers(self) -> WorkerPool:
        return self._workers

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def pending(self) -> int:
        """The number of requests whose completion step has not run."""
        with self._lock:
            return len(self._pending)

    def dispatch_async(self, request: Request) -> PendingRequest:
        """Dispatch a request without blocking the caller.

        Args:
            request: The request to run.

        Returns:
            The handle of the pending request.

        Raises:
            RuntimeError: If the dispatcher was shut down, or if its affinity
                context was stopped.
        """
        return self._dispatch(request, notify=True)

    def dispatch_sync(self, request: Request, timeout: float | None = None) -> ResponseEnvelope:
        """Dispatch a request and wait for its envelope.

        Preflight and progress hooks still run on the affinity context. The
        completion hook of the request is not invoked: the envelope is
        returned instead.

        Args:
            request: The request to run.
            timeout: Maximum seconds to wait, or ``None`` to wait forever.
                On timeout the request is cancelled.

        Returns:
            The final envelope.

        Raises:
            RuntimeError: If called from the affinity thread, which would
                deadlock, or if the dispatcher was shut down.
        """
        if self._affinity.is_current():
            msg = "dispatch_sync cannot be called from the affinity context"
            raise RuntimeError(msg)
        pending = self._dispatch(request, notify=False)
        try:
            return pending.result(timeout)
        except TimeoutError:
            pending.cancel()
            return pending.result()

    def shutdown(self, *, cancel_pending: bool = False, timeout: float | None = None) -> None:
        """Finish the pending requests and release the owned resources.

        The completion hooks of in-flight requests still fire before the
        affinity context stops.

        Args:
            cancel_pending: Whether in-flight requests are cancelled
                instead of awaited.
            timeout: Maximum seconds to wait for each pending request.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pending)
        logger.debug(f"Shutting down dispatcher with {len(pending)} pending request(s)")
        for item in pending:
            if cancel_pending:
                item.cancel()
            try:
                item.result(timeout)
            except TimeoutError:
                item.cancel()
        self._affinity.drain(timeout)
        if self._owns_affinity:
            self._affinity.stop(timeout)
        if self._owns_workers:
            self._workers.shutdown()
        if self._owns_transport:
            self._transport.close()

    def _dispatch(self, request: Request, *, notify: bool) -> PendingRequest:
        future: Future[ResponseEnvelope] = Future()
        pipeline = HookPipeline(
            request,
            transport=self._transport,
            affinity=self._affinity,
            workers=self._workers,
            future=future,
            notify=notify,
        )
        pending = PendingRequest(pipeline, future)
        with self._lock:
            if self._closed:
                msg = "cannot dispatch a request after shutdown"
                raise RuntimeError(msg)
            self._pending.add(pending)
        future.add_done_callback(lambda _: self._forget(pending))
        logger.debug(f"Dispatching {request!r}")
        try:
            pipeline.start()
        except RuntimeError:
            self._forget(pending)
            raise
        return pending

    def _forget(self, pending: PendingRequest) -> None:
        with self._lock:
            self._pending.discard(pending)


def get_default_dispatcher() -> Dispatcher:
    """Return the process-wide dispatcher, creating it on first use.

    The default dispatcher is shut down at interpreter exit, after its
    pending requests completed.
    """
    global _default_dispatcher
    with _default_dispatcher_lock:
        if _default_dispatcher is None:
            _default_dispatcher = Dispatcher()
            atexit.register(_default_dispatcher.shutdown)
        return _default_dispatcher


def set_default_dispatcher(dispatcher: Dispatcher | None) -> Dispatcher | None:
    """Replace the process-wide dispatcher.

    Args:
        dispatcher: The new default, or ``None`` to create a fresh one on
            next use.

    Returns:
        The previous default dispatcher, if any. It is not shut down.
    """
    global _default_dispatcher
    with _default_dispatcher_lock:
        previous, _default_dispatcher = _default_dispatcher, dispatcher
    return previous
