r"""Transport collaborators that perform the network calls.

The dispatcher never performs network I/O itself. It hands each approved
request to a ``Transport`` together with two callbacks:

- ``on_progress(completed, total, destination)``: called while bytes are
  transferred. ``destination`` is set once a download is fully written.
- ``on_complete(status_code, result, error)``: called exactly once, with
  either the status code and the raw body (or download destination), or
  the exception that made the call fail.

``HttpxTransport`` is the default implementation. It runs every call on
its own thread pool with a streaming ``httpx.Client`` request, so uploads
and downloads never hold the whole body in memory.

Example:
    ```pycon
    >>> import httpx
    >>> from resttree.transport import HttpxTransport
    >>> mock = httpx.MockTransport(lambda request: httpx.Response(200, content=b"ok"))
    >>> transport = HttpxTransport(httpx.Client(transport=mock))
    >>> transport.close()

    ```
"""

from __future__ import annotations

__all__ = [
    "CompletionCallback",
    "HttpxTransport",
    "ProgressCallback",
    "Transport",
    "TransportCancelledError",
    "TransportHandle",
]

import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO

import httpx

from resttree.core.config import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_WORKERS

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import TracebackType
    from typing import Self

    from resttree.request import Request

logger: logging.Logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, "int | None", Any], None]
CompletionCallback = Callable[["int | None", Any, "BaseException | None"], None]


class TransportCancelledError(InterruptedError):
    """Raised inside a transport call that was cancelled."""


class TransportHandle:
    r"""Handle of one in-flight transport call.

    Args:
        request: The request being performed.
    """

    def __init__(self, request: Request) -> None:
        self.request = request
        self._cancelled = threading.Event()

    def __repr__(self) -> str:
        return f"TransportHandle({self.request!r}, cancelled={self.cancelled})"

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Flag the call as cancelled. Idempotent."""
        self._cancelled.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``TransportCancelledError`` if the call was cancelled."""
        if self.cancelled:
            msg = f"{self.request.method.value} request to {self.request.url} was cancelled"
            raise TransportCancelledError(msg)


class Transport(ABC):
    r"""Asynchronous, cancellable executor of HTTP calls."""

    @abstractmethod
    def execute(
        self,
        request: Request,
        on_progress: ProgressCallback,
        on_complete: CompletionCallback,
    ) -> TransportHandle:
        """Start performing ``request`` without blocking the caller.

        Args:
            request: The request to perform.
            on_progress: Callback invoked on data events.
            on_complete: Callback invoked exactly once when the call ends.

        Returns:
            The handle of the in-flight call.
        """

    def cancel(self, handle: TransportHandle) -> None:
        """Abort an in-flight call on a best-effort basis. Idempotent."""
        handle.cancel()

    def close(self) -> None:
        """Release the resources held by the transport."""


class HttpxTransport(Transport):
    r"""Transport backed by a streaming ``httpx.Client``.

    Two usage patterns are supported, as for ``httpx.Client`` itself:
    when no client is given, one is created and closed by ``close``;
    when a client is given, its lifecycle is left to the caller.

    Args:
        client: Optional httpx.Client used to send the requests. Headers,
            auth, proxies and TLS settings are configured on it.
        chunk_size: Size in bytes of the streamed chunks.
        max_workers: Number of calls that can be in flight at once.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)
        self._chunk_size = chunk_size
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="resttree-transport"
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def execute(
        self,
        request: Request,
        on_progress: ProgressCallback,
        on_complete: CompletionCallback,
    ) -> TransportHandle:
        handle = TransportHandle(request)
        self._executor.submit(self._perform, handle, on_progress, on_complete)
        return handle

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        if self._owns_client:
            self._client.close()

    def _perform(
        self,
        handle: TransportHandle,
        on_progress: ProgressCallback,
        on_complete: CompletionCallback,
    ) -> None:
        request = handle.request
        method = request.method.value
        try:
            handle.raise_if_cancelled()
            status_code, result = self._send(handle, on_progress)
        except Exception as exc:
            logger.debug(
                f"{method} request to {request.url} failed with {type(exc).__name__}: {exc}"
            )
            on_complete(None, None, exc)
            return
        logger.debug(f"{method} request to {request.url} completed with status {status_code}")
        on_complete(status_code, result, None)

    def _send(self, handle: TransportHandle, on_progress: ProgressCallback) -> tuple[int, Any]:
        request = handle.request
        kwargs: dict[str, Any] = {}
        headers = httpx.Headers(request.headers)
        if request.upload is not None:
            total = _source_size(request.upload)
            if total is not None:
                headers["Content-Length"] = str(total)
            kwargs["content"] = self._iter_upload(handle, total, on_progress)
        elif isinstance(request.payload, (bytes, bytearray, str)):
            kwargs["content"] = request.payload
        elif request.payload is not None:
            kwargs["json"] = request.payload

        with self._client.stream(
            request.method.value,
            request.url,
            headers=headers,
            timeout=httpx.Timeout(request.timeout),
            **kwargs,
        ) as response:
            if request.download is not None and response.is_success:
                return response.status_code, self._download(handle, response, on_progress)
            return response.status_code, self._read(handle, response, on_progress)

    def _iter_upload(
        self, handle: TransportHandle, total: int | None, on_progress: ProgressCallback
    ) -> Iterator[bytes]:
        source = handle.request.upload
        stream: BinaryIO
        if isinstance(source, (str, os.PathLike)):
            stream = open(source, "rb")  # noqa: SIM115
            owned = True
        else:
            stream = source
            owned = False
        sent = 0
        try:
            while chunk := stream.read(self._chunk_size):
                handle.raise_if_cancelled()
                sent += len(chunk)
                yield chunk
                on_progress(sent, total, None)
        finally:
            if owned:
                stream.close()

    def _read(
        self, handle: TransportHandle, response: httpx.Response, on_progress: ProgressCallback
    ) -> bytes:
        total = _content_length(response)
        body = bytearray()
        for chunk in response.iter_bytes(self._chunk_size):
            handle.raise_if_cancelled()
            body.extend(chunk)
            on_progress(len(body), total, None)
        return bytes(body)

    def _download(
        self, handle: TransportHandle, response: httpx.Response, on_progress: ProgressCallback
    ) -> Any:
        destination = handle.request.download
        total = _content_length(response)
        if not isinstance(destination, (str, os.PathLike)):
            written = self._write_chunks(handle, response, destination, total, on_progress)
            on_progress(written, written, destination)
            return destination

        target = Path(destination)
        partial = target.with_name(f"{target.name}.part")
        try:
            with partial.open("wb") as stream:
                written = self._write_chunks(handle, response, stream, total, on_progress)
            partial.replace(target)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        on_progress(written, written, target)
        return target

    def _write_chunks(
        self,
        handle: TransportHandle,
        response: httpx.Response,
        stream: BinaryIO,
        total: int | None,
        on_progress: ProgressCallback,
    ) -> int:
        written = 0
        for chunk in response.iter_bytes(self._chunk_size):
            handle.raise_if_cancelled()
            stream.write(chunk)
            written += len(chunk)
            on_progress(written, total, None)
        return written


def _content_length(response: httpx.Response) -> int | None:
    value = response.headers.get("Content-Length")
    if value is None or not value.isdigit():
        return None
    return int(value)


def _source_size(source: Any) -> int | None:
    if isinstance(source, (str, os.PathLike)):
        return os.path.getsize(source)
    try:
        return os.fstat(source.fileno()).st_size - source.tell()
    except (AttributeError, OSError, ValueError):
        pass
    # in-memory streams such as io.BytesIO have no file descriptor
    if not getattr(source, "seekable", lambda: False)():
        return None
    position = source.tell()
    end = source.seek(0, os.SEEK_END)
    source.seek(position)
    return end - position
