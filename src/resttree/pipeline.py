r"""Lifecycle of one dispatched request.

A ``HookPipeline`` drives a single request through its hooks, strictly
in this order:

1. preflight (0 or 1 call, affinity context)
2. network activity, with 0..N progress calls (affinity context) whose
   fraction never decreases
3. post-processing (0 or 1 call, worker context)
4. completion (exactly 1 call, affinity context)

The completion step always runs, whether the request succeeded, was
vetoed by its preflight hook, failed in the transport, failed in
post-processing, or was cancelled. The pipeline resolves its future right
after the completion step, which is what synchronous callers wait on. If
the affinity context was stopped before the completion step could be
queued, the future is resolved directly without invoking the hook.
"""

from __future__ import annotations

__all__ = ["HookPipeline", "Stage"]

import contextvars
import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING, Any

from resttree.envelope import ResponseEnvelope
from resttree.exceptions import (
    PostProcessingError,
    RejectedByPreflightError,
    RequestCancelledError,
    TransportError,
)
from resttree.hooks import Progress, invoke_on_complete, invoke_preflight, invoke_progress
from resttree.utils.structured_logging import log_structured

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Future

    from resttree.context import ExecutionContext
    from resttree.request import Request
    from resttree.transport import Transport, TransportHandle

logger: logging.Logger = logging.getLogger(__name__)


class Stage(Enum):
    """Stages of the request lifecycle."""

    PENDING = "pending"
    PREFLIGHT = "preflight"
    TRANSFER = "transfer"
    POST_PROCESSING = "post_processing"
    COMPLETING = "completing"
    DONE = "done"


class HookPipeline:
    r"""Run the hooks of one request on the right execution contexts.

    Args:
        request: The request to run.
        transport: The transport performing the network call.
        affinity: The serial context running preflight, progress and
            completion hooks.
        workers: The concurrent context running the post-processing hook.
        future: The one-shot future resolved with the final envelope.
        notify: Whether the completion hook of the request is invoked.
            Synchronous dispatch receives the envelope directly instead.
    """

    def __init__(
        self,
        request: Request,
        *,
        transport: Transport,
        affinity: ExecutionContext,
        workers: ExecutionContext,
        future: Future[ResponseEnvelope],
        notify: bool = True,
    ) -> None:
        self.request = request
        self._transport = transport
        self._affinity = affinity
        self._workers = workers
        self._future = future
        self._notify = notify

        self._lock = threading.Lock()
        self._stage = Stage.PENDING
        self._handle: TransportHandle | None = None
        self._cancelled = False
        self._finishing = False
        self._fraction = 0.0
        # transport callbacks arrive on threads that did not inherit the
        # caller's context variables
        self._context = contextvars.copy_context()

    @property
    def stage(self) -> Stage:
        return self._stage

    def start(self) -> None:
        """Queue the preflight step on the affinity context."""
        self._submit(self._affinity, self._run_preflight)

    def cancel(self) -> bool:
        """Cancel the request if its outcome is not decided yet.

        Cancelling after the transport started propagates to the
        transport. Cancelling while the post-processing hook runs lets the
        hook return first, then completes with the cancellation. Cancelling
        twice, or after the outcome is decided, is a no-op.

        Returns:
            ``True`` if this call cancelled the request.
        """
        with self._lock:
            if self._finishing or self._cancelled:
                return False
            self._cancelled = True
            handle = self._handle
            if self._stage is Stage.POST_PROCESSING:
                return True
        if handle is not None:
            self._transport.cancel(handle)
        return self._finish(self._cancelled_envelope())

    def _submit(self, context: ExecutionContext, fn: Callable[..., Any], *args: Any) -> None:
        context.submit(self._context.copy().run, fn, *args)

    def _cancelled_envelope(self) -> ResponseEnvelope:
        method = self.request.method.value
        return ResponseEnvelope.failure(
            self.request,
            RequestCancelledError(
                method=method,
                url=self.request.url,
                message=f"{method} request to {self.request.url} was cancelled",
            ),
        )

    def _run_preflight(self) -> None:
        with self._lock:
            if self._finishing:
                return
            self._stage = Stage.PREFLIGHT
        request = self.request
        method = request.method.value
        cause: Exception | None = None
        try:
            approved = invoke_preflight(request.preflight, request)
        except Exception as exc:
            logger.debug(f"Preflight hook of {request!r} raised {type(exc).__name__}: {exc}")
            approved, cause = False, exc
        if not approved:
            log_structured(
                logger,
                logging.DEBUG,
                f"{method} request to {request.url} rejected by preflight",
                request_id=request.request_id,
            )
            self._finish(
                ResponseEnvelope.failure(
                    request,
                    RejectedByPreflightError(
                        method=method,
                        url=request.url,
                        message=f"{method} request to {request.url} was rejected by preflight",
                        cause=cause,
                    ),
                )
            )
            return
        self._start_transfer()

    def _start_transfer(self) -> None:
        with self._lock:
            if self._finishing:
                return
            self._stage = Stage.TRANSFER
        try:
            handle = self._transport.execute(self.request, self._on_progress, self._on_complete)
        except Exception as exc:
            self._on_complete(None, None, exc)
            return
        with self._lock:
            self._handle = handle
            cancelled = self._cancelled
        if cancelled:
            self._transport.cancel(handle)

    def _on_progress(self, completed: int, total: int | None, destination: Any = None) -> None:
        if self.request.progress is None:
            return
        with self._lock:
            if self._finishing:
                return
            if destination is not None:
                fraction = 1.0
            elif total:
                fraction = min(1.0, completed / total)
            else:
                fraction = self._fraction
            self._fraction = max(self._fraction, fraction)
            progress = Progress(
                fraction=self._fraction,
                completed=completed,
                total=total,
                destination=destination,
            )
        try:
            self._submit(self._affinity, self._run_progress, progress)
        except RuntimeError as exc:
            logger.debug(f"Dropped progress of {self.request!r}: {exc}")

    def _run_progress(self, progress: Progress) -> None:
        with self._lock:
            if self._cancelled:
                return
        invoke_progress(self.request.progress, progress)

    def _on_complete(
        self, status_code: int | None, result: Any, error: BaseException | None
    ) -> None:
        with self._lock:
            if self._finishing:
                return
        envelope = ResponseEnvelope.from_transport(self.request, status_code, result, error)
        if self.request.post_process is None or isinstance(envelope.error, TransportError):
            self._finish(envelope)
            return
        # queued behind the pending progress steps so post-processing
        # never starts before the last progress hook ran
        try:
            self._submit(self._affinity, self._schedule_post_process, envelope)
        except RuntimeError as exc:
            logger.warning(
                f"Affinity context rejected the post-processing of {self.request!r}: {exc}"
            )
            self._finish(envelope.with_error(self._post_process_error(envelope, exc)))

    def _schedule_post_process(self, envelope: ResponseEnvelope) -> None:
        with self._lock:
            if self._finishing:
                return
            self._stage = Stage.POST_PROCESSING
        try:
            self._submit(self._workers, self._run_post_process, envelope)
        except RuntimeError as exc:
            logger.warning(
                f"Worker context rejected the post-processing of {self.request!r}: {exc}"
            )
            self._finish_post_process(envelope.with_error(self._post_process_error(envelope, exc)))

    def _run_post_process(self, envelope: ResponseEnvelope) -> None:
        with self._lock:
            if self._finishing:
                return
            cancelled = self._cancelled
        if not cancelled:
            request = self.request
            try:
                envelope = envelope.with_result(request.post_process(envelope))
            except Exception as exc:
                logger.debug(
                    f"Post-processing hook of {request!r} raised {type(exc).__name__}: {exc}"
                )
                envelope = envelope.with_error(self._post_process_error(envelope, exc))
        self._finish_post_process(envelope)

    def _post_process_error(
        self, envelope: ResponseEnvelope, exc: Exception
    ) -> PostProcessingError:
        method = self.request.method.value
        return PostProcessingError(
            method=method,
            url=self.request.url,
            message=f"post-processing of {method} request to {self.request.url} failed: {exc}",
            status_code=envelope.status_code,
            cause=exc,
        )

    def _finish_post_process(self, envelope: ResponseEnvelope) -> None:
        # a cancel received during post-processing wins over its output
        with self._lock:
            cancelled = self._cancelled
        self._finish(self._cancelled_envelope() if cancelled else envelope)

    def _finish(self, envelope: ResponseEnvelope) -> bool:
        with self._lock:
            if self._finishing:
                return False
            self._finishing = True
            self._stage = Stage.COMPLETING
        try:
            self._submit(self._affinity, self._run_completion, envelope)
        except RuntimeError as exc:
            logger.warning(f"Affinity context rejected the completion of {self.request!r}: {exc}")
            self._resolve(envelope)
        return True

    def _run_completion(self, envelope: ResponseEnvelope) -> None:
        request = self.request
        log_structured(
            logger,
            logging.DEBUG,
            f"{request.method.value} request to {request.url} finished "
            f"(status={envelope.status_code}, success={envelope.success})",
            request_id=request.request_id,
            error_kind=None if envelope.error_kind is None else envelope.error_kind.value,
        )
        try:
            if self._notify:
                invoke_on_complete(request.on_complete, envelope)
        finally:
            self._resolve(envelope)

    def _resolve(self, envelope: ResponseEnvelope) -> None:
        with self._lock:
            self._stage = Stage.DONE
        self._future.set_result(envelope)
