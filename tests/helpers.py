r"""Shared test helpers for the dispatcher and resource tests.

This module contains a scripted transport that replays progress events
and a completion without any network activity, and a recorder that
captures the order in which hooks run.
"""

from __future__ import annotations

__all__ = ["BASE_URL", "HookRecorder", "ScriptedTransport", "wait_for"]

import threading
import time
from typing import TYPE_CHECKING, Any

from resttree.transport import Transport, TransportCancelledError, TransportHandle

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from resttree.envelope import ResponseEnvelope
    from resttree.hooks import Progress
    from resttree.request import Request
    from resttree.transport import CompletionCallback, ProgressCallback

BASE_URL = "http://example.com"


class ScriptedTransport(Transport):
    """Transport that replays a fixed script on a background thread.

    Args:
        status_code: The status code reported on completion.
        result: The raw result reported on completion.
        error: Optional transport error reported on completion.
        progress: ``(completed, total, destination)`` events emitted
            before completion.
        blocking: Whether completion waits until ``release`` is called.
    """

    def __init__(
        self,
        status_code: int | None = 200,
        result: Any = b"",
        error: BaseException | None = None,
        progress: Sequence[tuple[int, int | None, Any]] = (),
        blocking: bool = False,
    ) -> None:
        self.status_code = status_code
        self.result = result
        self.error = error
        self.progress = list(progress)
        self.calls: list[Request] = []
        self.cancelled: list[TransportHandle] = []
        self.started = threading.Event()
        self._released = threading.Event()
        if not blocking:
            self._released.set()

    def release(self) -> None:
        self._released.set()

    def execute(
        self,
        request: Request,
        on_progress: ProgressCallback,
        on_complete: CompletionCallback,
    ) -> TransportHandle:
        self.calls.append(request)
        handle = TransportHandle(request)
        threading.Thread(
            target=self._run, args=(handle, on_progress, on_complete), daemon=True
        ).start()
        self.started.set()
        return handle

    def cancel(self, handle: TransportHandle) -> None:
        self.cancelled.append(handle)
        super().cancel(handle)

    def _run(
        self,
        handle: TransportHandle,
        on_progress: ProgressCallback,
        on_complete: CompletionCallback,
    ) -> None:
        for completed, total, destination in self.progress:
            on_progress(completed, total, destination)
        self._released.wait(5.0)
        if handle.cancelled:
            on_complete(None, None, TransportCancelledError("cancelled"))
            return
        on_complete(self.status_code, self.result, self.error)


class HookRecorder:
    """Record hook invocations, in order, with the thread they ran on."""

    def __init__(self, approve: bool = True) -> None:
        self.approve = approve
        self.events: list[tuple[str, Any]] = []
        self.threads: dict[str, set[str]] = {}
        self.completed = threading.Event()
        self._lock = threading.Lock()

    def _record(self, name: str, value: Any) -> None:
        with self._lock:
            self.events.append((name, value))
            self.threads.setdefault(name, set()).add(threading.current_thread().name)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def preflight(self, request: Request) -> bool:
        self._record("preflight", request)
        return self.approve

    def progress(self, progress: Progress) -> None:
        self._record("progress", progress)

    def post_process(self, envelope: ResponseEnvelope) -> Any:
        self._record("post_process", envelope)
        return {"parsed": envelope.result}

    def on_complete(self, envelope: ResponseEnvelope) -> None:
        self._record("complete", envelope)
        self.completed.set()


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()
