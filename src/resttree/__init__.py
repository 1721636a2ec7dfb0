r"""resttree - REST resource client with inherited configuration.

This package lets callers describe a REST API as a tree of resources.
Each resource is one URL path segment and inherits its timeout, headers
and lifecycle hooks from its ancestors unless it overrides them. Built on
top of the httpx library, every resource supports the usual HTTP verbs,
synchronously or asynchronously, plus streamed uploads and downloads.

Key Features:
    - Resource trees with field-by-field configuration inheritance
    - Request snapshots unaffected by later configuration changes
    - Ordered lifecycle hooks: preflight, progress, post-processing, completion
    - A serial affinity context for hooks and a worker pool for transforms
    - Cancellable asynchronous requests, awaitable from asyncio code
    - Failures delivered as response envelopes, never as stray exceptions

Example:
    ```pycon
    >>> from resttree import Resource
    >>> api = Resource.root("https://api.example.com", headers={"Authorization": "Bearer token"})
    >>> users = api / "users"
    >>> users.set_timeout(5.0)
    >>> envelope = users.get()  # doctest: +SKIP
    >>> pending = users.post_async(
    ...     {"name": "Ada"}, on_complete=lambda envelope: print(envelope.status_code)
    ... )  # doctest: +SKIP

    ```
"""

from __future__ import annotations

__all__ = [
    "ConfigurationSet",
    "ConflictingBodySourceError",
    "DanglingAncestorError",
    "Dispatcher",
    "EffectiveConfig",
    "ErrorKind",
    "HttpMethod",
    "HttpStatusError",
    "HttpxTransport",
    "InvalidMethodBodyError",
    "PendingRequest",
    "PostProcessingError",
    "Progress",
    "RejectedByPreflightError",
    "Request",
    "RequestCancelledError",
    "RequestFailedError",
    "Resource",
    "ResourceArena",
    "ResponseEnvelope",
    "RestTreeError",
    "SerialContext",
    "Transport",
    "TransportError",
    "WorkerPool",
    "__version__",
    "build_request",
    "get_default_dispatcher",
]

from importlib.metadata import PackageNotFoundError, version

from resttree.context import SerialContext, WorkerPool
from resttree.core.arena import ResourceArena
from resttree.core.config import ConfigurationSet, EffectiveConfig
from resttree.dispatcher import Dispatcher, PendingRequest, get_default_dispatcher
from resttree.envelope import ResponseEnvelope
from resttree.exceptions import (
    ConflictingBodySourceError,
    DanglingAncestorError,
    ErrorKind,
    HttpStatusError,
    InvalidMethodBodyError,
    PostProcessingError,
    RejectedByPreflightError,
    RequestCancelledError,
    RequestFailedError,
    RestTreeError,
    TransportError,
)
from resttree.hooks import Progress
from resttree.request import HttpMethod, Request, build_request
from resttree.resource import Resource
from resttree.transport import HttpxTransport, Transport

try:
    __version__ = version(__name__)
except PackageNotFoundError:  # pragma: no cover
    # Package is not installed, fallback if needed
    __version__ = "0.0.0"
