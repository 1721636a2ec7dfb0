r"""Immutable request snapshots and the builder that produces them.

A ``Request`` captures everything the dispatcher needs at the instant it
is built: the resolved URL, the merged headers, the timeout and the hook
references. Mutating a resource afterwards never affects a request that
was already built.

Example:
    ```pycon
    >>> from resttree import Resource
    >>> from resttree.request import HttpMethod, build_request
    >>> api = Resource.root("http://example.com", headers={"X": "1"})
    >>> request = build_request(api / "users", HttpMethod.GET, headers={"Accept": "text/plain"})
    >>> request.url
    'http://example.com/users'
    >>> dict(request.headers)
    {'x': '1', 'accept': 'text/plain'}

    ```
"""

from __future__ import annotations

__all__ = ["HttpMethod", "Request", "RequestBuilder", "build_request"]

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from resttree.core.validation import (
    BODYLESS_METHODS,
    has_payload,
    validate_body_source,
    validate_method_body,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from resttree.core.arena import ResourceArena
    from resttree.hooks import CompletionHook, PostProcessHook, PreflightHook, ProgressHook
    from resttree.resource import Resource

logger: logging.Logger = logging.getLogger(__name__)


class HttpMethod(str, Enum):
    """HTTP methods supported by resources."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, eq=False)
class Request:
    """Snapshot of one call against a resource.

    At most one of ``payload`` and ``upload`` is set. ``download`` may be
    set independently of them.

    Attributes:
        method: The HTTP method.
        url: The resolved absolute URL.
        headers: The merged headers (a private copy).
        timeout: The resolved timeout in seconds.
        payload: Optional structured body, sent as JSON unless it is
            ``bytes`` or ``str``.
        upload: Optional upload source (binary file object or path).
        download: Optional download destination (binary file object or path).
        preflight: The preflight hook snapshotted at build time.
        progress: The progress hook snapshotted at build time.
        post_process: The post-processing hook snapshotted at build time.
        on_complete: The completion hook of this call.
        request_id: Identifier used in log messages.
    """

    method: HttpMethod
    url: str
    headers: httpx.Headers
    timeout: float
    payload: Any = None
    upload: Any = None
    download: Any = None
    preflight: PreflightHook | None = None
    progress: ProgressHook | None = None
    post_process: PostProcessHook | None = None
    on_complete: CompletionHook | None = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def __repr__(self) -> str:
        return f"Request({self.method.value} {self.url}, id={self.request_id})"


class RequestBuilder:
    r"""Build request snapshots from the resources of an arena.

    Args:
        arena: The arena that owns the resources.
    """

    def __init__(self, arena: ResourceArena) -> None:
        self._arena = arena

    def build(
        self,
        node_id: int,
        method: HttpMethod | str,
        *,
        payload: Any = None,
        upload: Any = None,
        download: Any = None,
        headers: Mapping[str, str] | None = None,
        on_progress: ProgressHook | None = None,
        on_complete: CompletionHook | None = None,
    ) -> Request:
        """Build a request against a resource.

        Args:
            node_id: The identifier of the resource.
            method: The HTTP method.
            payload: Optional structured body.
            upload: Optional upload source.
            download: Optional download destination.
            headers: Optional per-call headers. They win over the resource
                headers on key collision.
            on_progress: Optional progress hook for this call only. It
                replaces the resource progress hook.
            on_complete: Optional completion hook for this call.

        Returns:
            The request snapshot.

        Raises:
            InvalidMethodBodyError: If ``method`` cannot carry ``payload``.
            ConflictingBodySourceError: If both ``payload`` and ``upload``
                are given.
            DanglingAncestorError: If the resource cannot be resolved.
        """
        method = HttpMethod(str(method).upper())
        url = self._arena.resolve_path(node_id)
        validate_method_body(method.value, url, payload)
        validate_body_source(method.value, url, payload, upload)
        if method.value in BODYLESS_METHODS or (not has_payload(payload) and upload is not None):
            payload = None

        config = self._arena.resolve(node_id)
        merged = httpx.Headers(config.headers)
        if headers:
            merged.update(headers)
        request = Request(
            method=method,
            url=url,
            headers=merged,
            timeout=config.timeout,
            payload=payload,
            upload=upload,
            download=download,
            preflight=config.preflight,
            progress=on_progress if on_progress is not None else config.progress,
            post_process=config.post_process,
            on_complete=on_complete,
        )
        logger.debug(f"Built {request!r}")
        return request


def build_request(resource: Resource, method: HttpMethod | str, **kwargs: Any) -> Request:
    """Build a request against a resource.

    Args:
        resource: The resource handle.
        method: The HTTP method.
        **kwargs: Additional keyword arguments passed to
            ``RequestBuilder.build``.

    Returns:
        The request snapshot.
    """
    return RequestBuilder(resource.arena).build(resource.node_id, method, **kwargs)
