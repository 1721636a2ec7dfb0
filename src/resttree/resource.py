r"""Caller-facing handles on the nodes of a resource tree.

A ``Resource`` identifies one URL path segment below a root base URL. It
carries its own sparse configuration and inherits everything it does not
set from its ancestors. Every HTTP verb is available in a synchronous
form, which returns a ``ResponseEnvelope``, and an asynchronous form,
which returns a ``PendingRequest`` and delivers the envelope to an
optional completion hook.
"""

from __future__ import annotations

__all__ = ["Resource"]

import weakref
from typing import TYPE_CHECKING, Any

import httpx

from resttree.core.arena import get_default_arena
from resttree.core.config import ConfigurationSet
from resttree.core.validation import validate_timeout
from resttree.dispatcher import get_default_dispatcher
from resttree.request import HttpMethod, RequestBuilder

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType
    from typing import Self

    from resttree.core.arena import ResourceArena
    from resttree.core.config import EffectiveConfig
    from resttree.dispatcher import Dispatcher, PendingRequest
    from resttree.envelope import ResponseEnvelope
    from resttree.hooks import CompletionHook, PostProcessHook, PreflightHook, ProgressHook
    from resttree.request import Request


class Resource:
    r"""Handle on one node of a resource tree.

    A handle keeps its node alive, and every node keeps its parent alive,
    so a resource can always resolve against its ancestors. The node is
    destroyed when its last handle is garbage collected or closed and no
    child node refers to it. Using a handle as a context manager closes it
    on exit, which suits single-use resources.

    Resources are created with ``Resource.root`` and ``child`` (or the
    ``/`` operator), never directly.

    Example:
        ```pycon
        >>> from resttree import Resource
        >>> api = Resource.root("http://example.com", headers={"X": "1"})
        >>> users = api.child("users", timeout=5.0)
        >>> users.url
        'http://example.com/users'
        >>> config = users.resolve()
        >>> config.timeout, config.headers["x"]
        (5.0, '1')
        >>> (users / "ada lovelace").url
        'http://example.com/users/ada%20lovelace'

        ```
    """

    def __init__(
        self,
        arena: ResourceArena,
        node_id: int,
        *,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        arena.retain(node_id)
        self._arena = arena
        self._node_id = node_id
        self._dispatcher = dispatcher
        self._finalizer = weakref.finalize(self, arena.release, node_id)

    @classmethod
    def root(
        cls,
        base_url: str,
        *,
        arena: ResourceArena | None = None,
        dispatcher: Dispatcher | None = None,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
        preflight: PreflightHook | None = None,
        progress: ProgressHook | None = None,
        post_process: PostProcessHook | None = None,
    ) -> Resource:
        """Create the root of a new resource tree.

        Args:
            base_url: The base URL, e.g. ``"https://api.example.com/v1"``.
            arena: The arena owning the tree. Defaults to the process-wide
                arena.
            dispatcher: The dispatcher running the requests of the tree.
                Defaults to the process-wide dispatcher, created on first use.
            timeout: Optional timeout in seconds.
            headers: Optional headers.
            preflight: Optional preflight hook.
            progress: Optional progress hook.
            post_process: Optional post-processing hook.

        Returns:
            The root resource.
        """
        if arena is None:
            arena = get_default_arena()
        config = ConfigurationSet(
            timeout=timeout,
            headers=headers,
            preflight=preflight,
            progress=progress,
            post_process=post_process,
        )
        node_id = arena.add_root(base_url, config)
        return cls(arena, node_id, dispatcher=dispatcher)

    def child(
        self,
        segment: Any,
        *,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
        preflight: PreflightHook | None = None,
        progress: ProgressHook | None = None,
        post_process: PostProcessHook | None = None,
    ) -> Resource:
        """Create a child resource.

        Args:
            segment: The path segment. Any value is accepted; it is
                converted with ``str()`` and URL-escaped.
            timeout: Optional timeout override.
            headers: Optional headers override.
            preflight: Optional preflight hook override.
            progress: Optional progress hook override.
            post_process: Optional post-processing hook override.

        Returns:
            The child resource. It shares the dispatcher of this resource.
        """
        config = ConfigurationSet(
            timeout=timeout,
            headers=headers,
            preflight=preflight,
            progress=progress,
            post_process=post_process,
        )
        node_id = self._arena.add_child(self._node_id, segment, config)
        return Resource(self._arena, node_id, dispatcher=self._dispatcher)

    def __truediv__(self, segment: Any) -> Resource:
        return self.child(segment)

    def __repr__(self) -> str:
        if self.closed:
            return f"Resource(<closed {self._node_id}>)"
        return f"Resource({self.url!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Resource):
            return NotImplemented
        return self._arena is other._arena and self._node_id == other._node_id

    def __hash__(self) -> int:
        return hash((id(self._arena), self._node_id))

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def arena(self) -> ResourceArena:
        return self._arena

    @property
    def node_id(self) -> int:
        return self._node_id

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    @property
    def dispatcher(self) -> Dispatcher:
        """The dispatcher of this resource, or the process-wide one."""
        return self._dispatcher or get_default_dispatcher()

    @property
    def url(self) -> str:
        """The absolute URL of this resource, resolved now."""
        return self._arena.resolve_path(self._node_id)

    @property
    def config(self) -> ConfigurationSet:
        """The own, mutable configuration set of this resource."""
        return self._arena.config(self._node_id)

    @property
    def parent(self) -> Resource | None:
        """A new handle on the parent resource, if any."""
        parent_id = self._arena.parent(self._node_id)
        if parent_id is None:
            return None
        return Resource(self._arena, parent_id, dispatcher=self._dispatcher)

    def close(self) -> None:
        """Release this handle. Closing twice is a no-op."""
        self._finalizer()

    def resolve(self) -> EffectiveConfig:
        """Compute the effective configuration of this resource, now."""
        return self._arena.resolve(self._node_id)

    ################################
    #     Configuration setters    #
    ################################

    def set_timeout(self, timeout: float | None) -> None:
        """Set the timeout in seconds, or inherit it again with ``None``.

        Raises:
            ValueError: If the timeout is not > 0.
        """
        if timeout is not None:
            validate_timeout(timeout)
        self.config.timeout = timeout

    def set_headers(self, headers: Mapping[str, str] | None) -> None:
        """Set the headers, or inherit them again with ``None``.

        The headers replace the inherited ones as a whole; they are not
        merged key by key with the headers of the ancestors.
        """
        self.config.headers = None if headers is None else httpx.Headers(headers)

    def set_preflight(self, hook: PreflightHook | None) -> None:
        """Set the preflight hook, or inherit it again with ``None``."""
        self.config.preflight = hook

    def set_progress(self, hook: ProgressHook | None) -> None:
        """Set the progress hook, or inherit it again with ``None``."""
        self.config.progress = hook

    def set_post_process(self, hook: PostProcessHook | None) -> None:
        """Set the post-processing hook, or inherit it again with
        ``None``."""
        self.config.post_process = hook

    ##########################
    #     Generic request    #
    ##########################

    def build(self, method: HttpMethod | str, **kwargs: Any) -> Request:
        """Build a request snapshot against this resource.

        Args:
            method: The HTTP method.
            **kwargs: Additional keyword arguments passed to
                ``RequestBuilder.build``.

        Raises:
            InvalidMethodBodyError: If ``method`` cannot carry the payload.
            ConflictingBodySourceError: If both a payload and an upload
                source are given.
        """
        return RequestBuilder(self._arena).build(self._node_id, method, **kwargs)

    def request(
        self,
        method: HttpMethod | str,
        payload: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        on_progress: ProgressHook | None = None,
    ) -> ResponseEnvelope:
        r"""Send a request and wait for its envelope.

        Args:
            method: The HTTP method.
            payload: Optional structured body.
            headers: Optional per-call headers.
            on_progress: Optional progress hook for this call only.

        Returns:
            The final envelope. Failures are reported in its ``error``.

        Raises:
            InvalidMethodBodyError: If ``method`` cannot carry ``payload``.
        """
        request = self.build(method, payload=payload, headers=headers, on_progress=on_progress)
        return self.dispatcher.dispatch_sync(request)

    def request_async(
        self,
        method: HttpMethod | str,
        payload: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        on_progress: ProgressHook | None = None,
        on_complete: CompletionHook | None = None,
    ) -> PendingRequest:
        r"""Send a request without waiting for it.

        Args:
            method: The HTTP method.
            payload: Optional structured body.
            headers: Optional per-call headers.
            on_progress: Optional progress hook for this call only.
            on_complete: Optional completion hook, called exactly once.

        Returns:
            The handle of the pending request.

        Raises:
            InvalidMethodBodyError: If ``method`` cannot carry ``payload``.
        """
        request = self.build(
            method,
            payload=payload,
            headers=headers,
            on_progress=on_progress,
            on_complete=on_complete,
        )
        return self.dispatcher.dispatch_async(request)

    #######################
    #     HTTP verbs      #
    #######################

    def get(self, **kwargs: Any) -> ResponseEnvelope:
        """Send a GET request and wait for its envelope."""
        return self.request(HttpMethod.GET, **kwargs)

    def post(self, payload: Any = None, **kwargs: Any) -> ResponseEnvelope:
        """Send a POST request and wait for its envelope."""
        return self.request(HttpMethod.POST, payload, **kwargs)

    def put(self, payload: Any = None, **kwargs: Any) -> ResponseEnvelope:
        """Send a PUT request and wait for its envelope."""
        return self.request(HttpMethod.PUT, payload, **kwargs)

    def patch(self, payload: Any = None, **kwargs: Any) -> ResponseEnvelope:
        """Send a PATCH request and wait for its envelope."""
        return self.request(HttpMethod.PATCH, payload, **kwargs)

    def delete(self, **kwargs: Any) -> ResponseEnvelope:
        """Send a DELETE request and wait for its envelope."""
        return self.request(HttpMethod.DELETE, **kwargs)

    def get_async(self, **kwargs: Any) -> PendingRequest:
        """Send a GET request without waiting for it."""
        return self.request_async(HttpMethod.GET, **kwargs)

    def post_async(self, payload: Any = None, **kwargs: Any) -> PendingRequest:
        """Send a POST request without waiting for it."""
        return self.request_async(HttpMethod.POST, payload, **kwargs)

    def put_async(self, payload: Any = None, **kwargs: Any) -> PendingRequest:
        """Send a PUT request without waiting for it."""
        return self.request_async(HttpMethod.PUT, payload, **kwargs)

    def patch_async(self, payload: Any = None, **kwargs: Any) -> PendingRequest:
        """Send a PATCH request without waiting for it."""
        return self.request_async(HttpMethod.PATCH, payload, **kwargs)

    def delete_async(self, **kwargs: Any) -> PendingRequest:
        """Send a DELETE request without waiting for it."""
        return self.request_async(HttpMethod.DELETE, **kwargs)

    ##########################
    #     File transfers     #
    ##########################

    def download(
        self,
        destination: Any,
        on_progress: ProgressHook | None = None,
        on_complete: CompletionHook | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> PendingRequest:
        r"""Stream the body of a GET request into ``destination``.

        Args:
            destination: A path, or a binary file object opened for writing.
            on_progress: Optional progress hook for this call only.
            on_complete: Optional completion hook. On success the envelope
                ``result`` is the destination, not the body.
            headers: Optional per-call headers.

        Returns:
            The handle of the pending request.
        """
        request = self.build(
            HttpMethod.GET,
            download=destination,
            headers=headers,
            on_progress=on_progress,
            on_complete=on_complete,
        )
        return self.dispatcher.dispatch_async(request)

    def upload(
        self,
        source: Any,
        on_progress: ProgressHook | None = None,
        on_complete: CompletionHook | None = None,
        *,
        method: HttpMethod | str = HttpMethod.POST,
        headers: Mapping[str, str] | None = None,
    ) -> PendingRequest:
        r"""Stream ``source`` as the body of a request.

        Args:
            source: A path, or a binary file object opened for reading.
            on_progress: Optional progress hook for this call only. It
                reports bytes sent versus total.
            on_complete: Optional completion hook.
            method: The HTTP method, POST by default.
            headers: Optional per-call headers.

        Returns:
            The handle of the pending request.
        """
        request = self.build(
            method,
            upload=source,
            headers=headers,
            on_progress=on_progress,
            on_complete=on_complete,
        )
        return self.dispatcher.dispatch_async(request)
