r"""Arena of resource nodes and inherited configuration resolution.

Resources form a tree: every node stores a path segment, the identifier
of its parent (``None`` for roots) and its own sparse
``ConfigurationSet``. The arena owns all the node records; no node holds
a reference to another. Ownership is expressed with reference counts:
every live child record and every live handle keep a node record alive,
so a parent cannot disappear while a descendant can still resolve
against it.

Example:
    ```pycon
    >>> from resttree.core.arena import ResourceArena
    >>> from resttree.core.config import ConfigurationSet
    >>> arena = ResourceArena()
    >>> root = arena.add_root("http://example.com", ConfigurationSet(headers={"X": "1"}))
    >>> users = arena.add_child(root, "users", ConfigurationSet(timeout=5.0))
    >>> arena.resolve_path(users)
    'http://example.com/users'
    >>> config = arena.resolve(users)
    >>> config.timeout, config.headers["X"]
    (5.0, '1')

    ```
"""

from __future__ import annotations

__all__ = ["ResourceArena", "escape_segment", "get_default_arena"]

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from resttree.core.config import ConfigurationSet, EffectiveConfig
from resttree.exceptions import DanglingAncestorError

logger: logging.Logger = logging.getLogger(__name__)

_default_arena: ResourceArena | None = None
_default_arena_lock = threading.Lock()


def escape_segment(segment: Any) -> str:
    """Convert a path segment to its canonical URL-safe form.

    Any value is accepted. It is converted with ``str()`` and every
    reserved character, including ``/``, is percent-encoded.

    Example:
        ```pycon
        >>> from resttree.core.arena import escape_segment
        >>> escape_segment(42)
        '42'
        >>> escape_segment("a b/c")
        'a%20b%2Fc'

        ```
    """
    return quote(str(segment), safe="")


@dataclass
class _Node:
    segment: str
    parent_id: int | None
    config: ConfigurationSet
    refcount: int = field(default=0)


class ResourceArena:
    r"""Own the resource nodes of one or more trees.

    Nodes are addressed by stable integer identifiers. Structural changes
    (adding and releasing nodes) are serialized with a lock. Configuration
    fields are not locked: concurrent mutation of the same node from
    several threads requires external synchronization.
    """

    def __init__(self) -> None:
        self._nodes: dict[int, _Node] = {}
        self._ids = itertools.count(1)
        # reentrant: handle finalizers may run from a garbage collection
        # triggered while the lock is held
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def add_root(self, base_url: str, config: ConfigurationSet | None = None) -> int:
        """Add a root node.

        Args:
            base_url: The base URL of the tree. It is used verbatim apart
                from trailing slashes, which are removed.
            config: Optional configuration of the root.

        Returns:
            The identifier of the new node.
        """
        return self._add(base_url.rstrip("/"), None, config)

    def add_child(
        self, parent_id: int, segment: Any, config: ConfigurationSet | None = None
    ) -> int:
        """Add a child node below ``parent_id``.

        Args:
            parent_id: The identifier of the parent node.
            segment: The path segment. It is escaped with
                ``escape_segment`` at creation time.
            config: Optional configuration of the child.

        Returns:
            The identifier of the new node.

        Raises:
            DanglingAncestorError: If the parent does not exist.
        """
        return self._add(escape_segment(segment), parent_id, config)

    def _add(self, segment: str, parent_id: int | None, config: ConfigurationSet | None) -> int:
        with self._lock:
            node_id = next(self._ids)
            if parent_id is not None:
                parent = self._nodes.get(parent_id)
                if parent is None:
                    raise DanglingAncestorError(node_id, parent_id)
                parent.refcount += 1
            self._nodes[node_id] = _Node(
                segment=segment, parent_id=parent_id, config=config or ConfigurationSet()
            )
        logger.debug(f"Added resource {node_id} ({segment!r}) below {parent_id}")
        return node_id

    def retain(self, node_id: int) -> None:
        """Increment the reference count of a node.

        Raises:
            DanglingAncestorError: If the node does not exist.
        """
        with self._lock:
            self._get(node_id, node_id).refcount += 1

    def release(self, node_id: int) -> None:
        """Decrement the reference count of a node.

        A node whose count drops to zero is removed, which releases its
        parent in turn. Releasing an unknown node is a no-op.
        """
        with self._lock:
            current: int | None = node_id
            while current is not None:
                node = self._nodes.get(current)
                if node is None:
                    return
                node.refcount -= 1
                if node.refcount > 0:
                    return
                del self._nodes[current]
                logger.debug(f"Destroyed resource {current}")
                current = node.parent_id

    def discard(self, node_id: int) -> None:
        """Remove a node regardless of its reference count.

        Descendants of a discarded node fail to resolve with
        ``DanglingAncestorError``.
        """
        with self._lock:
            node = self._nodes.pop(node_id, None)
        if node is not None and node.parent_id is not None:
            self.release(node.parent_id)

    def config(self, node_id: int) -> ConfigurationSet:
        """Return the own, mutable configuration set of a node.

        Raises:
            DanglingAncestorError: If the node does not exist.
        """
        return self._get(node_id, node_id).config

    def segment(self, node_id: int) -> str:
        """Return the escaped path segment of a node."""
        return self._get(node_id, node_id).segment

    def parent(self, node_id: int) -> int | None:
        """Return the identifier of the parent of a node, if any."""
        return self._get(node_id, node_id).parent_id

    def _get(self, origin_id: int, node_id: int) -> _Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise DanglingAncestorError(origin_id, node_id)
        return node

    def _chain(self, node_id: int) -> list[_Node]:
        chain = []
        current: int | None = node_id
        while current is not None:
            node = self._get(node_id, current)
            chain.append(node)
            current = node.parent_id
        return chain

    def resolve(self, node_id: int) -> EffectiveConfig:
        """Compute the effective configuration of a node.

        The ancestors are walked once, from the node to its root, and each
        field takes the nearest value that is set. Nothing is cached: the
        current state of every ancestor is read on each call.

        Raises:
            DanglingAncestorError: If the node or one of its ancestors
                does not exist.
        """
        return EffectiveConfig.from_chain([node.config for node in self._chain(node_id)])

    def resolve_path(self, node_id: int) -> str:
        """Compute the absolute URL of a node.

        Raises:
            DanglingAncestorError: If the node or one of its ancestors
                does not exist.
        """
        return "/".join(node.segment for node in reversed(self._chain(node_id)))


def get_default_arena() -> ResourceArena:
    """Return the process-wide arena used when none is given."""
    global _default_arena
    with _default_arena_lock:
        if _default_arena is None:
            _default_arena = ResourceArena()
        return _default_arena
