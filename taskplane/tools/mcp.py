"""Model Context Protocol client for tool execution.

Wraps the ``mcp`` Python SDK to call tools on a server reached over stdio
or SSE. A session is opened and closed around every call.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters, stdio_client
from pydantic import JsonValue

from ..config import MCPServerConfig
from ..contracts import ToolInvocationError
from .base import ToolInvoker

logger = logging.getLogger(__name__)


def _extract_text(result: Any) -> Optional[str]:
    """Return the first text block of an MCP ``CallToolResult``."""
    for block in result.content or []:
        if getattr(block, "type", None) == "text" and hasattr(block, "text"):
            return block.text
    return None


def decode_result(result: Any) -> JsonValue:
    """Normalize a ``CallToolResult`` into a JSON value.

    Text content is parsed as JSON when possible and returned verbatim
    otherwise. ``structuredContent`` is used when the server provides no text.

    Raises:
        ToolInvocationError: If the server flagged the result as an error.
    """
    text = _extract_text(result)
    if getattr(result, "isError", False):
        raise ToolInvocationError(text or "MCP tool reported an error")
    if text is not None:
        try:
            return json.loads(text)
        except ValueError:
            return text
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return structured
    return None


class MCPToolInvoker(ToolInvoker):
    """Invoke tools on an MCP server."""

    def __init__(self, server: MCPServerConfig) -> None:
        if server.transport == "stdio" and not server.command:
            raise ValueError("stdio MCP server requires a command")
        if server.transport == "sse" and not server.url:
            raise ValueError("sse MCP server requires a url")
        self._server = server

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[ClientSession]:
        server = self._server
        if server.transport == "stdio":
            params = StdioServerParameters(
                command=server.command, args=server.args, env=server.env
            )
            transport = stdio_client(params)
        else:
            sse_kwargs: Dict[str, Any] = {"url": server.url}
            if server.headers:
                sse_kwargs["headers"] = server.headers
            transport = sse_client(**sse_kwargs)

        async with transport as (read_stream, write_stream):
            async with ClientSession(read_stream, write_stream) as session:
                await session.initialize()
                yield session

    async def invoke(self, tool_name: str, arguments: Any) -> JsonValue:
        logger.info(f"[MCP] Requesting tool execution: {tool_name}")
        try:
            async with self._session() as session:
                result = await session.call_tool(tool_name, arguments or {})
        except Exception as exc:
            raise ToolInvocationError(f"MCP tool call failed: {exc}") from exc
        logger.info(f"[MCP] Tool response received: {tool_name}")
        return decode_result(result)

    async def list_tools(self) -> List[Dict[str, Any]]:
        """Discover the tools the server exposes."""
        try:
            async with self._session() as session:
                tools_result = await session.list_tools()
        except Exception as exc:
            raise ToolInvocationError(f"MCP discovery failed: {exc}") from exc
        return [
            {
                "name": tool.name,
                "description": getattr(tool, "description", "") or "",
                "inputSchema": getattr(tool, "inputSchema", {}) or {},
            }
            for tool in getattr(tools_result, "tools", []) or []
        ]
