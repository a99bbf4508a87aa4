import asyncio
from typing import Any, Callable, List, Optional, Tuple

import pytest

from taskplane.contracts import ToolInvocationError
from taskplane.persistence import InMemoryWorkflowRepository
from taskplane.routing import KeywordRouter
from taskplane.runtime import ControlPlane
from taskplane.transports.inmemory import InMemoryTransport
from taskplane.utils.retry import no_backoff


class RecordingTools:
    """Tool invoker that records calls and fails the first ``fail_times`` of them."""

    def __init__(
        self,
        output: Any = None,
        fail_times: int = 0,
        error: str = "boom",
        delay: float = 0.0,
    ) -> None:
        self.output = output if output is not None else {"hits": ["trace-1", "trace-2"]}
        self.fail_times = fail_times
        self.error = error
        self.delay = delay
        self.calls: List[Tuple[str, Any]] = []

    async def invoke(self, tool_name: str, arguments: Any) -> Any:
        self.calls.append((tool_name, arguments))
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.calls) <= self.fail_times:
            raise ToolInvocationError(self.error)
        return self.output


class AlwaysFailingTools(RecordingTools):
    def __init__(self, error: str = "boom") -> None:
        super().__init__(fail_times=10**6, error=error)


@pytest.fixture
def repo() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def make_plane(repo, transport) -> Callable[..., ControlPlane]:
    def _make(
        tools: Optional[Any] = None,
        router: Optional[Any] = None,
        **kwargs: Any,
    ) -> ControlPlane:
        return ControlPlane.build(
            repository=repo,
            transport=transport,
            tools=tools or RecordingTools(),
            router=router or KeywordRouter(),
            backoff=no_backoff,
            **kwargs,
        )

    return _make


@pytest.fixture
def recording_tools() -> Callable[..., RecordingTools]:
    return RecordingTools


@pytest.fixture
def failing_tools() -> Callable[..., AlwaysFailingTools]:
    return AlwaysFailingTools
