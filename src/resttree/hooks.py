r"""Hook types and data structures for the request lifecycle.

This module defines the four lifecycle hooks a request goes through:

- preflight: Called before any network activity; returning ``False``
  vetoes the request
- progress: Called zero or more times while data is transferred
- post_process: Called once with the raw envelope to transform its result
- on_complete: Called exactly once with the final envelope

Preflight, progress and completion hooks run on the affinity context,
post-processing hooks run on the worker pool. Hooks never choose their
own context; the dispatcher does.

Example:
    ```pycon
    >>> from resttree import Resource
    >>> from resttree.hooks import Progress
    >>> def log_progress(progress: Progress) -> None:
    ...     print(f"{progress.fraction:.0%}")
    ...
    >>> api = Resource.root("https://api.example.com")
    >>> api.set_progress(log_progress)

    ```
"""

from __future__ import annotations

__all__ = [
    "CompletionHook",
    "PostProcessHook",
    "PreflightHook",
    "Progress",
    "ProgressHook",
    "invoke_on_complete",
    "invoke_preflight",
    "invoke_progress",
]

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resttree.envelope import ResponseEnvelope
    from resttree.request import Request

logger: logging.Logger = logging.getLogger(__name__)

PreflightHook = Callable[["Request"], bool]
ProgressHook = Callable[["Progress"], None]
PostProcessHook = Callable[["ResponseEnvelope"], Any]
CompletionHook = Callable[["ResponseEnvelope"], None]


@dataclass(frozen=True)
class Progress:
    """Information passed to the progress hook.

    Attributes:
        fraction: The completed fraction in ``[0, 1]``. Never decreases
            between two calls for the same request.
        completed: The number of bytes transferred so far.
        total: The total number of bytes to transfer, if known.
        destination: For downloads, the destination handle once the body
            has been fully written, otherwise ``None``.
    """

    fraction: float
    completed: int
    total: int | None = None
    destination: Any = None


def invoke_preflight(hook: PreflightHook | None, request: Request) -> bool:
    """Invoke the preflight hook if provided.

    Args:
        hook: Optional preflight hook.
        request: The request about to be sent.

    Returns:
        ``True`` if the request may proceed. A missing hook approves
        the request.
    """
    if hook is None:
        return True
    return bool(hook(request))


def invoke_progress(hook: ProgressHook | None, progress: Progress) -> None:
    """Invoke the progress hook if provided.

    Exceptions raised by the hook are logged and discarded so that they
    cannot stop the affinity context.

    Args:
        hook: Optional progress hook.
        progress: The normalized progress record.
    """
    if hook is None:
        return
    try:
        hook(progress)
    except Exception:
        logger.exception("progress hook raised an exception")


def invoke_on_complete(hook: CompletionHook | None, envelope: ResponseEnvelope) -> None:
    """Invoke the completion hook if provided.

    Exceptions raised by the hook are logged and discarded so that they
    cannot stop the affinity context.

    Args:
        hook: Optional completion hook.
        envelope: The final response envelope.
    """
    if hook is None:
        return
    try:
        hook(envelope)
    except Exception:
        logger.exception("completion hook raised an exception")
