from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import Mock

import pytest

from resttree import Dispatcher, Resource, ResourceArena
from tests.helpers import BASE_URL, HookRecorder, ScriptedTransport

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture
def arena() -> ResourceArena:
    """Create an empty arena, isolated from the process-wide one."""
    return ResourceArena()


@pytest.fixture
def transport() -> ScriptedTransport:
    """Create a transport completing every call with status 200."""
    return ScriptedTransport()


@pytest.fixture
def dispatcher(transport: ScriptedTransport) -> Generator[Dispatcher, None, None]:
    """Create a dispatcher using the scripted transport."""
    dispatcher = Dispatcher(transport)
    yield dispatcher
    dispatcher.shutdown(cancel_pending=True, timeout=5.0)


@pytest.fixture
def api(arena: ResourceArena, dispatcher: Dispatcher) -> Resource:
    """Create the root resource ``http://example.com``."""
    return Resource.root(BASE_URL, arena=arena, dispatcher=dispatcher)


@pytest.fixture
def recorder() -> HookRecorder:
    """Create a recorder approving every request."""
    return HookRecorder()


@pytest.fixture
def mock_callback() -> Mock:
    """Create a mock callback function for testing hooks."""
    return Mock()
