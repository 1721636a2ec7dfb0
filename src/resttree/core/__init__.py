r"""Core resource model shared by the request builder and dispatcher.

This package contains the configuration dataclasses, the arena that owns
resource nodes and resolves their inherited configuration, and the
validation helpers used before a request is dispatched.
"""

from __future__ import annotations

__all__ = [
    "DEFAULT_TIMEOUT",
    "SUCCESS_STATUS_CODES",
    "ConfigurationSet",
    "EffectiveConfig",
    "ResourceArena",
    "escape_segment",
    "get_default_arena",
    "validate_body_source",
    "validate_method_body",
    "validate_timeout",
]

from resttree.core.arena import ResourceArena, escape_segment, get_default_arena
from resttree.core.config import (
    DEFAULT_TIMEOUT,
    SUCCESS_STATUS_CODES,
    ConfigurationSet,
    EffectiveConfig,
)
from resttree.core.validation import (
    validate_body_source,
    validate_method_body,
    validate_timeout,
)
