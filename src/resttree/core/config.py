r"""Configuration dataclasses and defaults for resources.

This module provides configuration constants, the sparse
``ConfigurationSet`` stored on every resource, and the fully resolved
``EffectiveConfig`` computed by walking a resource's ancestors.
"""

from __future__ import annotations

__all__ = [
    "CONFIG_FIELDS",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_HEADERS",
    "DEFAULT_MAX_WORKERS",
    "DEFAULT_TIMEOUT",
    "SUCCESS_STATUS_CODES",
    "ConfigurationSet",
    "EffectiveConfig",
]

from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

import httpx

from resttree.core.validation import validate_timeout

if TYPE_CHECKING:
    from collections.abc import Mapping

    from resttree.hooks import PostProcessHook, PreflightHook, ProgressHook


# Default timeout in seconds, applied when no resource in the chain sets one
DEFAULT_TIMEOUT = 10.0

# Headers sent when no resource in the chain sets any
DEFAULT_HEADERS: Mapping[str, str] = {}

# Status codes considered successful (2xx)
SUCCESS_STATUS_CODES = range(200, 300)

# Size in bytes of the chunks streamed for uploads and downloads
DEFAULT_CHUNK_SIZE = 64 * 1024

# Number of threads of the default worker pool
DEFAULT_MAX_WORKERS = 4


@dataclass
class ConfigurationSet:
    """Inheritable per-resource settings.

    Every field is optional. ``None`` means "inherit from the parent
    resource", never "reset to the default": defaults only apply once the
    walk reaches the root.

    Args:
        timeout: Maximum seconds to wait for the server. Must be > 0.
        headers: Headers sent with every request. Keys are case-insensitive.
        preflight: Hook called before any network activity. Returning
            ``False`` vetoes the request.
        progress: Hook called with a ``Progress`` record during transfers.
        post_process: Hook called on the worker pool with the raw envelope.
            Its return value replaces the envelope result.

    Example:
        ```pycon
        >>> from resttree.core.config import ConfigurationSet
        >>> config = ConfigurationSet(headers={"X-Api-Key": "secret"})
        >>> config.headers["x-api-key"]
        'secret'
        >>> config.timeout is None
        True
        >>> config.merge(timeout=5.0).timeout
        5.0

        ```
    """

    timeout: float | None = None
    headers: httpx.Headers | None = None
    preflight: PreflightHook | None = None
    progress: ProgressHook | None = None
    post_process: PostProcessHook | None = None

    def __post_init__(self) -> None:
        """Validate and normalize the fields.

        Raises:
            ValueError: If the timeout is not > 0.
        """
        if self.timeout is not None:
            validate_timeout(self.timeout)
        if self.headers is not None:
            self.headers = httpx.Headers(self.headers)

    def is_empty(self) -> bool:
        """Indicate whether no field is overridden."""
        return all(getattr(self, f.name) is None for f in fields(self))

    def merge(self, **overrides: Any) -> ConfigurationSet:
        """Create a new configuration set with the non-None overrides
        applied.

        Args:
            **overrides: Fields to override. ``None`` values are ignored.

        Returns:
            A new ConfigurationSet. The current one is unchanged.
        """
        filtered_overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **filtered_overrides)

    def to_dict(self) -> dict[str, Any]:
        """Return the overridden fields as a dictionary."""
        return {
            f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None
        }


CONFIG_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(ConfigurationSet))


@dataclass(frozen=True)
class EffectiveConfig:
    """Fully resolved configuration of a resource.

    Produced by walking from a resource to its root and taking, for each
    field independently, the nearest value that is set.

    Args:
        timeout: The resolved timeout in seconds.
        headers: The resolved headers.
        preflight: The resolved preflight hook, if any.
        progress: The resolved progress hook, if any.
        post_process: The resolved post-processing hook, if any.
    """

    timeout: float = DEFAULT_TIMEOUT
    headers: httpx.Headers = field(default_factory=lambda: httpx.Headers(DEFAULT_HEADERS))
    preflight: PreflightHook | None = None
    progress: ProgressHook | None = None
    post_process: PostProcessHook | None = None

    @classmethod
    def from_chain(cls, chain: list[ConfigurationSet]) -> EffectiveConfig:
        """Resolve the configuration sets of a resource chain.

        Args:
            chain: The configuration sets ordered from the resource itself
                to its root.

        Returns:
            The effective configuration. Fields unset along the whole chain
            take their default value.
        """
        resolved: dict[str, Any] = {}
        for config in chain:
            for name in CONFIG_FIELDS:
                if name not in resolved:
                    value = getattr(config, name)
                    if value is not None:
                        resolved[name] = value
            if len(resolved) == len(CONFIG_FIELDS):
                break
        # copy so that later mutations of a resource never leak into snapshots
        headers = resolved.get("headers", DEFAULT_HEADERS)
        resolved["headers"] = httpx.Headers(headers)
        return cls(**resolved)
