"""In-process tool registry."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import JsonValue

from ..contracts import ToolInvocationError
from .base import ToolInvoker

logger = logging.getLogger(__name__)

ToolFunc = Callable[..., Any]


class LocalToolInvoker(ToolInvoker):
    """Dispatch tool calls to Python callables registered by name.

    Callables receive the task input as keyword arguments when it is a mapping,
    or as a single positional argument otherwise. Both sync and async
    callables are supported.
    """

    def __init__(self, tools: Optional[Dict[str, ToolFunc]] = None) -> None:
        self._tools: Dict[str, ToolFunc] = dict(tools or {})

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._tools)

    def register(self, name: Optional[str] = None) -> Callable[[ToolFunc], ToolFunc]:
        """Decorator registering a callable under ``name`` (defaults to its ``__name__``)."""

        def decorator(func: ToolFunc) -> ToolFunc:
            self._tools[name or func.__name__] = func
            return func

        return decorator

    def add_tool(self, name: str, func: ToolFunc) -> None:
        self._tools[name] = func

    async def invoke(self, tool_name: str, arguments: Any) -> JsonValue:
        func = self._tools.get(tool_name)
        if func is None:
            raise ToolInvocationError(f"Tool not found: {tool_name}")

        logger.info(f"Requesting tool execution: {tool_name}")
        try:
            if isinstance(arguments, dict):
                result = func(**arguments)
            elif arguments is None:
                result = func()
            else:
                result = func(arguments)
            if inspect.isawaitable(result):
                result = await result
        except ToolInvocationError:
            raise
        except Exception as exc:
            raise ToolInvocationError(f"Tool {tool_name} failed: {exc}") from exc
        return result


async def search_web(query: str) -> list[dict[str, str]]:
    """Return canned search hits for ``query``."""
    return [
        {"title": f"Result for: {query}", "url": "https://modelcontextprotocol.io/docs"},
        {"title": "Python asyncio documentation", "url": "https://docs.python.org/3/library/asyncio.html"},
    ]


async def analyze_request(goal: str) -> dict[str, Any]:
    """Summarize a goal that no specialised tool matched."""
    words = goal.split()
    return {"goal": goal, "word_count": len(words), "summary": " ".join(words[:12])}


def default_tools() -> LocalToolInvoker:
    """Local invoker preloaded with the tools the keyword router emits."""
    return LocalToolInvoker({"search_web": search_web, "analyze_request": analyze_request})
