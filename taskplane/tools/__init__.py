"""Tool invokers and factory."""

from __future__ import annotations

from typing import Optional

from ..config import TaskplaneConfig, load_config
from .base import ToolInvoker
from .local import LocalToolInvoker, default_tools


def get_tool_invoker(config: Optional[TaskplaneConfig] = None) -> ToolInvoker:
    """Factory function to get the configured tool invoker."""

    config = config or load_config()
    backend = config.tools.backend
    if backend == "local":
        return default_tools()
    elif backend == "mcp":
        from .mcp import MCPToolInvoker

        return MCPToolInvoker(config.tools.mcp)
    else:
        raise ValueError(f"Unsupported tool backend: {backend}")


__all__ = ["ToolInvoker", "LocalToolInvoker", "default_tools", "get_tool_invoker"]
