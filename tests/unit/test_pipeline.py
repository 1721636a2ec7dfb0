r"""Unit tests for the hook pipeline ordering and outcomes."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any
from unittest.mock import Mock

import httpx
import pytest

from resttree import (
    ErrorKind,
    Request,
    Resource,
    ResourceArena,
    ResponseEnvelope,
    SerialContext,
    WorkerPool,
    build_request,
)
from resttree.pipeline import HookPipeline, Stage
from tests.helpers import BASE_URL, HookRecorder, ScriptedTransport, wait_for

if TYPE_CHECKING:
    from collections.abc import Generator

AFFINITY = "pipeline-affinity"


@pytest.fixture
def affinity() -> Generator[SerialContext, None, None]:
    context = SerialContext(name=AFFINITY)
    yield context
    context.stop(5.0)


@pytest.fixture
def workers() -> Generator[WorkerPool, None, None]:
    pool = WorkerPool(max_workers=2)
    yield pool
    pool.shutdown()


def make_request(arena: ResourceArena, recorder: HookRecorder, **kwargs: Any) -> Request:
    api = Resource.root(
        BASE_URL,
        arena=arena,
        preflight=kwargs.pop("preflight", recorder.preflight),
        progress=kwargs.pop("progress", recorder.progress),
        post_process=kwargs.pop("post_process", recorder.post_process),
    )
    method = kwargs.pop("method", "GET")
    return build_request(api / "users", method, on_complete=recorder.on_complete, **kwargs)


def run(
    request: Request,
    transport: ScriptedTransport,
    affinity: SerialContext,
    workers: WorkerPool,
    **kwargs: Any,
) -> tuple[HookPipeline, Future[ResponseEnvelope]]:
    future: Future[ResponseEnvelope] = Future()
    pipeline = HookPipeline(
        request,
        transport=transport,
        affinity=affinity,
        workers=workers,
        future=future,
        **kwargs,
    )
    pipeline.start()
    return pipeline, future


###################################
#     Tests for hook ordering     #
###################################


def test_pipeline_hook_order(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    transport = ScriptedTransport(result=b"raw", progress=[(50, 100, None), (100, 100, None)])
    request = make_request(arena, recorder)

    pipeline, future = run(request, transport, affinity, workers)
    envelope = future.result(5.0)

    assert recorder.names == ["preflight", "progress", "progress", "post_process", "complete"]
    assert envelope.success
    assert envelope.status_code == 200
    assert envelope.result == {"parsed": b"raw"}
    assert recorder.events[-1][1] is envelope
    assert pipeline.stage is Stage.DONE


def test_pipeline_hook_threads(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    """Test that post-processing runs on a worker and every other hook on
    the affinity thread."""
    transport = ScriptedTransport(progress=[(1, 2, None)])

    run(make_request(arena, recorder), transport, affinity, workers)[1].result(5.0)

    assert recorder.threads["preflight"] == {AFFINITY}
    assert recorder.threads["progress"] == {AFFINITY}
    assert recorder.threads["complete"] == {AFFINITY}
    assert AFFINITY not in recorder.threads["post_process"]


def test_pipeline_without_hooks(
    arena: ResourceArena, affinity: SerialContext, workers: WorkerPool
) -> None:
    transport = ScriptedTransport(status_code=204, result=b"")
    request = build_request(Resource.root(BASE_URL, arena=arena), "DELETE")

    envelope = run(request, transport, affinity, workers)[1].result(5.0)

    assert envelope.success
    assert envelope.status_code == 204
    assert envelope.result == b""


def test_pipeline_without_notify_skips_completion_hook(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    envelope = run(
        make_request(arena, recorder), ScriptedTransport(), affinity, workers, notify=False
    )[1].result(5.0)

    assert envelope.success
    assert "complete" not in recorder.names


###############################
#     Tests for preflight     #
###############################


def test_pipeline_preflight_rejection(
    arena: ResourceArena, affinity: SerialContext, workers: WorkerPool
) -> None:
    """Test that a veto skips the transport and every hook but completion."""
    recorder = HookRecorder(approve=False)
    transport = ScriptedTransport(progress=[(1, 2, None)])

    envelope = run(make_request(arena, recorder), transport, affinity, workers)[1].result(5.0)

    assert recorder.names == ["preflight", "complete"]
    assert transport.calls == []
    assert not envelope.success
    assert envelope.error_kind is ErrorKind.REJECTED_BY_PREFLIGHT
    assert envelope.status_code is None
    assert envelope.error.cause is None


def test_pipeline_preflight_raises(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    error = RuntimeError("no token")
    transport = ScriptedTransport()
    request = make_request(arena, recorder, preflight=Mock(side_effect=error))

    envelope = run(request, transport, affinity, workers)[1].result(5.0)

    assert envelope.error_kind is ErrorKind.REJECTED_BY_PREFLIGHT
    assert envelope.error.cause is error
    assert transport.calls == []
    assert recorder.names == ["complete"]


##############################
#     Tests for progress     #
##############################


def test_pipeline_progress_is_monotonic(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    transport = ScriptedTransport(
        progress=[(80, 100, None), (40, 100, None), (90, None, None), (150, 100, None)]
    )

    run(make_request(arena, recorder), transport, affinity, workers)[1].result(5.0)

    fractions = [value.fraction for name, value in recorder.events if name == "progress"]
    assert fractions == [0.8, 0.8, 0.8, 1.0]


def test_pipeline_progress_destination(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    transport = ScriptedTransport(progress=[(5, None, None), (10, None, "/tmp/out.bin")])

    run(make_request(arena, recorder), transport, affinity, workers)[1].result(5.0)

    progress = [value for name, value in recorder.events if name == "progress"]
    assert [p.fraction for p in progress] == [0.0, 1.0]
    assert progress[-1].destination == "/tmp/out.bin"
    assert progress[-1].completed == 10


def test_pipeline_progress_hook_failure_does_not_stop_request(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    transport = ScriptedTransport(progress=[(1, 2, None)])
    request = make_request(arena, recorder, progress=Mock(side_effect=ValueError("bad")))

    envelope = run(request, transport, affinity, workers)[1].result(5.0)

    assert envelope.success
    assert recorder.names == ["preflight", "post_process", "complete"]


#####################################
#     Tests for post-processing     #
#####################################


def test_pipeline_post_process_failure(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    error = ValueError("not json")
    transport = ScriptedTransport(result=b"<html>")
    request = make_request(arena, recorder, post_process=Mock(side_effect=error))

    envelope = run(request, transport, affinity, workers)[1].result(5.0)

    assert not envelope.success
    assert envelope.error_kind is ErrorKind.POST_PROCESSING_FAILED
    assert envelope.error.cause is error
    assert envelope.status_code == 200
    assert envelope.result is None
    assert recorder.names == ["preflight", "complete"]


def test_pipeline_post_process_receives_unsuccessful_status(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    transport = ScriptedTransport(status_code=404, result=b"missing")

    envelope = run(make_request(arena, recorder), transport, affinity, workers)[1].result(5.0)

    assert recorder.names == ["preflight", "post_process", "complete"]
    assert envelope.error_kind is ErrorKind.HTTP_STATUS
    assert envelope.result == {"parsed": b"missing"}


def test_pipeline_transport_error_skips_post_process(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    cause = httpx.ConnectError("refused")
    transport = ScriptedTransport(status_code=None, result=None, error=cause)

    envelope = run(make_request(arena, recorder), transport, affinity, workers)[1].result(5.0)

    assert recorder.names == ["preflight", "complete"]
    assert envelope.error_kind is ErrorKind.TRANSPORT
    assert envelope.error.cause is cause


def test_pipeline_execute_raises(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    transport = ScriptedTransport()
    transport.execute = Mock(side_effect=OSError("no route"))  # type: ignore[method-assign]

    envelope = run(make_request(arena, recorder), transport, affinity, workers)[1].result(5.0)

    assert envelope.error_kind is ErrorKind.TRANSPORT
    assert recorder.names == ["preflight", "complete"]


##################################
#     Tests for cancellation     #
##################################


def test_pipeline_cancel_during_transfer(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    """Test that cancelling mid-transfer reaches the transport and
    completes exactly once."""
    transport = ScriptedTransport(blocking=True)
    pipeline, future = run(make_request(arena, recorder), transport, affinity, workers)
    assert transport.started.wait(5.0)
    assert wait_for(lambda: pipeline.stage is Stage.TRANSFER)

    assert pipeline.cancel()
    assert not pipeline.cancel()
    envelope = future.result(5.0)
    transport.release()
    affinity.drain(5.0)

    assert envelope.error_kind is ErrorKind.CANCELLED
    assert len(transport.cancelled) == 1
    assert transport.cancelled[0].cancelled
    assert recorder.names == ["preflight", "complete"]


def test_pipeline_cancel_before_start(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    transport = ScriptedTransport()
    future: Future[ResponseEnvelope] = Future()
    pipeline = HookPipeline(
        make_request(arena, recorder),
        transport=transport,
        affinity=affinity,
        workers=workers,
        future=future,
    )

    assert pipeline.cancel()
    pipeline.start()
    envelope = future.result(5.0)
    affinity.drain(5.0)

    assert envelope.error_kind is ErrorKind.CANCELLED
    assert transport.calls == []
    assert recorder.names == ["complete"]


def test_pipeline_cancel_after_completion_is_noop(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    pipeline, future = run(make_request(arena, recorder), ScriptedTransport(), affinity, workers)
    envelope = future.result(5.0)

    assert not pipeline.cancel()
    affinity.drain(5.0)
    assert envelope.success
    assert recorder.names.count("complete") == 1


def test_pipeline_cancel_during_post_process(
    arena: ResourceArena,
    recorder: HookRecorder,
    affinity: SerialContext,
    workers: WorkerPool,
) -> None:
    """Test that a cancel received while the post-processing hook runs
    completes only after the hook returned."""
    started, release = threading.Event(), threading.Event()

    def post_process(envelope: ResponseEnvelope) -> Any:
        started.set()
        release.wait(5.0)
        return recorder.post_process(envelope)

    request = make_request(arena, recorder, post_process=post_process)
    pipeline, future = run(request, ScriptedTransport(), affinity, workers)
    assert started.wait(5.0)

    assert pipeline.cancel()
    assert not pipeline.cancel()
    assert not future.done()
    release.set()
    envelope = future.result(5.0)
    affinity.drain(5.0)

    assert envelope.error_kind is ErrorKind.CANCELLED
    assert envelope.result is None
    assert recorder.names == ["preflight", "post_process", "complete"]
    assert recorder.events[-1][1] is envelope


######################################
#     Tests for stopped contexts     #
######################################


def test_pipeline_post_process_rejected_by_workers(
    arena: ResourceArena, recorder: HookRecorder, affinity: SerialContext
) -> None:
    pool = WorkerPool(max_workers=1)
    pool.shutdown()

    future = run(make_request(arena, recorder), ScriptedTransport(), affinity, pool)[1]
    envelope = future.result(5.0)

    assert envelope.error_kind is ErrorKind.POST_PROCESSING_FAILED
    assert isinstance(envelope.error.cause, RuntimeError)
    assert envelope.status_code == 200
    assert envelope.result is None
    assert recorder.names == ["preflight", "complete"]


def test_pipeline_completion_rejected_by_affinity(
    arena: ResourceArena, recorder: HookRecorder, workers: WorkerPool
) -> None:
    """Test that the future still resolves when the affinity context stopped
    before the completion step."""
    context = SerialContext(name=AFFINITY)
    transport = ScriptedTransport(blocking=True)
    request = make_request(arena, recorder, post_process=None)
    pipeline, future = run(request, transport, context, workers)
    assert transport.started.wait(5.0)

    context.stop(5.0)
    transport.release()
    envelope = future.result(5.0)

    assert envelope.success
    assert pipeline.stage is Stage.DONE
    assert recorder.names == ["preflight"]
