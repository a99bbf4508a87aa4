"""Tool-invocation interface consumed by the execution engine."""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import JsonValue


class ToolInvoker(Protocol):
    """Executes a named tool with structured input.

    Implementations raise ``ToolInvocationError`` for transport or protocol
    failures; the engine treats every such failure as retryable.
    """

    async def invoke(self, tool_name: str, arguments: Any) -> JsonValue:
        """Run ``tool_name`` and return its structured output."""
