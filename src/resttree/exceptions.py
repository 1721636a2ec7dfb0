r"""Exception hierarchy for resource resolution and request dispatch.

Two families of errors exist:

- Construction errors (``InvalidMethodBodyError``,
  ``ConflictingBodySourceError``, ``DanglingAncestorError``) are raised
  synchronously to the caller that builds or resolves a request.
- Request errors (subclasses of ``RequestFailedError``) are never raised
  by the dispatcher. They are stored in the ``error`` field of the
  ``ResponseEnvelope`` delivered to the completion hook.

Example:
    ```pycon
    >>> from resttree.exceptions import ErrorKind, TransportError
    >>> error = TransportError(method="GET", url="https://example.com", message="boom")
    >>> error.kind
    <ErrorKind.TRANSPORT: 'transport'>

    ```
"""

from __future__ import annotations

__all__ = [
    "ConflictingBodySourceError",
    "DanglingAncestorError",
    "ErrorKind",
    "HttpStatusError",
    "InvalidMethodBodyError",
    "PostProcessingError",
    "RejectedByPreflightError",
    "RequestBuildError",
    "RequestCancelledError",
    "RequestFailedError",
    "RestTreeError",
    "TransportError",
]

from enum import Enum
from typing import ClassVar


class ErrorKind(Enum):
    """Kinds of failure a request can end with."""

    INVALID_METHOD_BODY = "invalid_method_body"
    CONFLICTING_BODY_SOURCE = "conflicting_body_source"
    DANGLING_ANCESTOR = "dangling_ancestor"
    REJECTED_BY_PREFLIGHT = "rejected_by_preflight"
    TRANSPORT = "transport"
    POST_PROCESSING_FAILED = "post_processing_failed"
    CANCELLED = "cancelled"
    HTTP_STATUS = "http_status"


class RestTreeError(Exception):
    """Base class of all the errors raised or reported by resttree."""

    kind: ClassVar[ErrorKind]


class RequestBuildError(RestTreeError, ValueError):
    """Raised when a request cannot be built from the call arguments."""


class InvalidMethodBodyError(RequestBuildError):
    """Raised when a structured payload is given to a method that cannot
    carry one (e.g. GET or DELETE).

    Args:
        method: The HTTP method name.
        url: The resolved URL of the resource.
    """

    kind = ErrorKind.INVALID_METHOD_BODY

    def __init__(self, method: str, url: str) -> None:
        super().__init__(f"{method} request to {url} must not carry a payload")
        self.method = method
        self.url = url


class ConflictingBodySourceError(RequestBuildError):
    """Raised when both a structured payload and an upload source are
    given for the same request.

    Args:
        method: The HTTP method name.
        url: The resolved URL of the resource.
    """

    kind = ErrorKind.CONFLICTING_BODY_SOURCE

    def __init__(self, method: str, url: str) -> None:
        super().__init__(
            f"{method} request to {url} cannot have both a payload and an upload source"
        )
        self.method = method
        self.url = url


class DanglingAncestorError(RestTreeError, LookupError):
    """Raised when a resource resolves against an ancestor that no longer
    exists in its arena.

    Args:
        node_id: The identifier of the node being resolved.
        missing_id: The identifier of the ancestor that was not found.
    """

    kind = ErrorKind.DANGLING_ANCESTOR

    def __init__(self, node_id: int, missing_id: int) -> None:
        super().__init__(f"resource {node_id} has a destroyed ancestor {missing_id}")
        self.node_id = node_id
        self.missing_id = missing_id


class RequestFailedError(RestTreeError):
    r"""Base class of the errors delivered inside a response envelope.

    Args:
        method: The HTTP method name (e.g. "GET", "POST").
        url: The URL that was requested.
        message: A descriptive error message.
        status_code: The HTTP status code, if a response was received.
        cause: The underlying exception, if any.

    Example:
        ```pycon
        >>> from resttree.exceptions import HttpStatusError
        >>> error = HttpStatusError(
        ...     method="GET",
        ...     url="https://example.com/users",
        ...     message="GET request to https://example.com/users failed with status 404",
        ...     status_code=404,
        ... )
        >>> error.status_code
        404

        ```
    """

    def __init__(
        self,
        method: str,
        url: str,
        message: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.url = url
        self.status_code = status_code
        self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


class RejectedByPreflightError(RequestFailedError):
    """The preflight hook vetoed the request before any network
    activity."""

    kind = ErrorKind.REJECTED_BY_PREFLIGHT


class TransportError(RequestFailedError):
    """The transport failed to perform the call (connectivity, TLS,
    timeout, malformed response)."""

    kind = ErrorKind.TRANSPORT


class PostProcessingError(RequestFailedError):
    """The post-processing hook raised instead of returning a value."""

    kind = ErrorKind.POST_PROCESSING_FAILED


class RequestCancelledError(RequestFailedError):
    """The request was cancelled before its completion hook fired."""

    kind = ErrorKind.CANCELLED


class HttpStatusError(RequestFailedError):
    """The server answered with a status code outside the success
    range."""

    kind = ErrorKind.HTTP_STATUS
