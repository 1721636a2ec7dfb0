r"""Immutable result of a dispatched request."""

from __future__ import annotations

__all__ = ["ResponseEnvelope"]

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from resttree.core.config import SUCCESS_STATUS_CODES
from resttree.exceptions import HttpStatusError, RequestFailedError, TransportError

if TYPE_CHECKING:
    from resttree.exceptions import ErrorKind
    from resttree.request import Request


@dataclass(frozen=True, eq=False)
class ResponseEnvelope:
    r"""Outcome of one request, delivered exactly once.

    ``success`` is derived from ``error``: it is ``True`` iff no error is
    set. An error is set whenever the status code is outside the 2xx
    range, the transport failed, the preflight hook vetoed the request,
    the post-processing hook raised, or the request was cancelled.

    Attributes:
        request: The originating request.
        status_code: The HTTP status code, or ``None`` if no response was
            received.
        result: The raw body, the download destination, or the output of
            the post-processing hook if one is configured.
        error: The failure, if any.

    Example:
        ```pycon
        >>> from resttree import Resource
        >>> from resttree.envelope import ResponseEnvelope
        >>> from resttree.request import build_request
        >>> request = build_request(Resource.root("http://example.com"), "GET")
        >>> envelope = ResponseEnvelope.from_transport(request, 201, b"created", None)
        >>> envelope.success, envelope.result
        (True, b'created')
        >>> ResponseEnvelope.from_transport(request, 404, b"", None).error_kind
        <ErrorKind.HTTP_STATUS: 'http_status'>

        ```
    """

    request: Request
    status_code: int | None = None
    result: Any = None
    error: RequestFailedError | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> ErrorKind | None:
        """The kind of the error, or ``None`` on success."""
        return None if self.error is None else self.error.kind

    @classmethod
    def from_transport(
        cls,
        request: Request,
        status_code: int | None,
        result: Any,
        error: BaseException | None,
    ) -> ResponseEnvelope:
        """Create the raw envelope of a transport completion.

        Args:
            request: The originating request.
            status_code: The status code reported by the transport.
            result: The raw body or download destination.
            error: The transport-level failure, if any.

        Returns:
            The raw envelope. A transport failure is wrapped in
            ``TransportError`` and a non-2xx status in ``HttpStatusError``.
        """
        method = request.method.value
        if error is not None:
            return cls(
                request=request,
                status_code=status_code,
                error=TransportError(
                    method=method,
                    url=request.url,
                    message=f"{method} request to {request.url} failed: {error}",
                    status_code=status_code,
                    cause=error,
                ),
            )
        failure = None
        if status_code not in SUCCESS_STATUS_CODES:
            failure = HttpStatusError(
                method=method,
                url=request.url,
                message=f"{method} request to {request.url} failed with status {status_code}",
                status_code=status_code,
            )
        return cls(request=request, status_code=status_code, result=result, error=failure)

    @classmethod
    def failure(cls, request: Request, error: RequestFailedError) -> ResponseEnvelope:
        """Create an envelope for a request that ended without a response."""
        return cls(request=request, status_code=error.status_code, error=error)

    def with_result(self, result: Any) -> ResponseEnvelope:
        """Return a copy of the envelope with ``result`` replaced."""
        return replace(self, result=result)

    def with_error(self, error: RequestFailedError) -> ResponseEnvelope:
        """Return a copy of the envelope with ``error`` set and ``result``
        cleared."""
        return replace(self, result=None, error=error)
