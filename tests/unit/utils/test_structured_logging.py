from __future__ import annotations

import json
import logging
from io import StringIO
from typing import TYPE_CHECKING

import pytest

from resttree import build_request
from resttree.utils.structured_logging import (
    StructuredFormatter,
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    log_structured,
    set_correlation_id,
)

if TYPE_CHECKING:
    from collections.abc import Generator

    from resttree import Dispatcher, Resource


@pytest.fixture
def stream() -> Generator[StringIO, None, None]:
    """Attach a StructuredFormatter handler to the ``resttree`` logger."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = logging.getLogger("resttree")
    level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        yield stream
    finally:
        logger.removeHandler(handler)
        logger.setLevel(level)


def records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


##############################################
#     Tests for correlation ID management    #
##############################################


def test_get_correlation_id_initially_none() -> None:
    """Test that correlation ID is initially None."""
    clear_correlation_id()
    assert get_correlation_id() is None


def test_set_and_clear_correlation_id() -> None:
    set_correlation_id("test-123")
    assert get_correlation_id() == "test-123"
    clear_correlation_id()
    assert get_correlation_id() is None


def test_correlation_scope_restores_previous() -> None:
    set_correlation_id("outer")
    try:
        with correlation_scope("inner"):
            assert get_correlation_id() == "inner"
        assert get_correlation_id() == "outer"
    finally:
        clear_correlation_id()


def test_correlation_scope_restores_on_error() -> None:
    with pytest.raises(RuntimeError), correlation_scope("failing"):
        raise RuntimeError
    assert get_correlation_id() is None


##############################################
#     Tests for StructuredFormatter          #
##############################################


def test_structured_formatter_basic_log(stream: StringIO) -> None:
    """Test that StructuredFormatter produces valid JSON."""
    logging.getLogger("resttree.test").info("Test message")

    (log_data,) = records(stream)
    assert log_data["message"] == "Test message"
    assert log_data["level"] == "INFO"
    assert log_data["logger"] == "resttree.test"
    assert log_data["thread"] == "MainThread"
    assert "correlation_id" not in log_data


def test_structured_formatter_with_correlation_id(stream: StringIO) -> None:
    with correlation_scope("corr-1"):
        logging.getLogger("resttree.test").warning("with id")

    assert records(stream)[0]["correlation_id"] == "corr-1"


def test_structured_formatter_with_extra_fields(stream: StringIO) -> None:
    logging.getLogger("resttree.test").info(
        "request finished", extra={"request_id": "abc", "status_code": 201}
    )

    log_data = records(stream)[0]
    assert log_data["request_id"] == "abc"
    assert log_data["status_code"] == 201


def test_structured_formatter_with_exception(stream: StringIO) -> None:
    try:
        msg = "boom"
        raise ValueError(msg)
    except ValueError:
        logging.getLogger("resttree.test").exception("failed")

    log_data = records(stream)[0]
    assert log_data["level"] == "ERROR"
    assert "ValueError: boom" in log_data["exception"]


def test_structured_formatter_timestamp_format(stream: StringIO) -> None:
    logging.getLogger("resttree.test").info("time")

    timestamp = records(stream)[0]["timestamp"]
    assert timestamp.endswith("Z")
    assert timestamp[10] == "T"
    assert len(timestamp) == len("2026-01-01T00:00:00.000Z")


############################################
#     Tests for log_structured             #
############################################


def test_log_structured_with_extra_fields(stream: StringIO) -> None:
    log_structured(logging.getLogger("resttree.test"), logging.DEBUG, "hello", error_kind=None)

    log_data = records(stream)[0]
    assert log_data["message"] == "hello"
    assert log_data["error_kind"] is None


def test_log_structured_respects_log_level(stream: StringIO) -> None:
    logger = logging.getLogger("resttree.test.quiet")
    logger.setLevel(logging.WARNING)
    try:
        log_structured(logger, logging.DEBUG, "hidden")
    finally:
        logger.setLevel(logging.NOTSET)

    assert records(stream) == []


def test_pipeline_records_carry_correlation_id(
    stream: StringIO, dispatcher: Dispatcher, api: Resource
) -> None:
    """Test that the records emitted on the affinity thread carry the
    correlation id of the dispatching thread."""
    with correlation_scope("checkout-42"):
        request = build_request(api / "orders", "GET")
        dispatcher.dispatch_sync(request)

    finished = [
        log_data
        for log_data in records(stream)
        if log_data["logger"] == "resttree.pipeline" and "finished" in log_data["message"]
    ]
    assert len(finished) == 1
    assert finished[0]["correlation_id"] == "checkout-42"
    assert finished[0]["request_id"] == request.request_id
    assert finished[0]["thread"] == "resttree-affinity"
