r"""Parameter validation utilities for resources and requests.

This module provides validation functions that run before a request is
dispatched, so that call-site mistakes surface synchronously to the
caller instead of reaching a completion hook.
"""

from __future__ import annotations

__all__ = ["has_payload", "validate_body_source", "validate_method_body", "validate_timeout"]

from typing import Any

from resttree.exceptions import ConflictingBodySourceError, InvalidMethodBodyError

# Methods whose requests never carry a structured payload
BODYLESS_METHODS = frozenset({"GET", "DELETE", "HEAD", "OPTIONS"})


def validate_timeout(timeout: float) -> None:
    """Validate timeout parameter.

    Args:
        timeout: Maximum seconds to wait for server responses.
            Must be > 0.

    Raises:
        ValueError: If timeout is <= 0.

    Example:
        ```pycon
        >>> from resttree.core.validation import validate_timeout
        >>> validate_timeout(10.0)
        >>> validate_timeout(0)
        Traceback (most recent call last):
        ...
        ValueError: timeout must be > 0, got 0

        ```
    """
    if timeout <= 0:
        msg = f"timeout must be > 0, got {timeout}"
        raise ValueError(msg)


def has_payload(payload: Any) -> bool:
    """Indicate whether a payload is present and non-empty.

    Example:
        ```pycon
        >>> from resttree.core.validation import has_payload
        >>> has_payload({"name": "Ada"})
        True
        >>> has_payload({})
        False
        >>> has_payload(None)
        False

        ```
    """
    if payload is None:
        return False
    try:
        return len(payload) > 0
    except TypeError:
        return True


def validate_method_body(method: str, url: str, payload: Any) -> None:
    """Validate that the method accepts a structured payload.

    Raises:
        InvalidMethodBodyError: If a non-empty payload is given to GET,
            DELETE, HEAD or OPTIONS.
    """
    if method in BODYLESS_METHODS and has_payload(payload):
        raise InvalidMethodBodyError(method, url)


def validate_body_source(method: str, url: str, payload: Any, upload: Any) -> None:
    """Validate that at most one body source is given.

    Raises:
        ConflictingBodySourceError: If both a payload and an upload
            source are given.
    """
    if has_payload(payload) and upload is not None:
        raise ConflictingBodySourceError(method, url)
