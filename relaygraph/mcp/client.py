import os
from contextlib import AsyncExitStack
from typing import Any, Optional

from mcp import ClientSession, StdioServerParameters, Tool
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.types import CallToolResult
from pydantic import BaseModel


class SSEServerParameters(BaseModel):
    url: str
    headers: dict | None = None
    timeout: float = 5
    sse_read_timeout: float = 60 * 5


ServerParams = StdioServerParameters | SSEServerParameters


def with_process_env(server_params: StdioServerParameters) -> StdioServerParameters:
    """Stdio servers see the parent environment, overlaid with their configured ``env``."""
    return server_params.model_copy(update={"env": {**os.environ, **(server_params.env or {})}})


class MCPClient:
    server_params: ServerParams

    def __init__(self, server_params: ServerParams):
        self.session: Optional[ClientSession] = None
        self.exit_stack = AsyncExitStack()

        self.server_params = server_params

    async def initialize(self) -> None:
        """Connect to an MCP server"""

        if isinstance(self.server_params, StdioServerParameters):
            transport = await self.exit_stack.enter_async_context(stdio_client(with_process_env(self.server_params)))
        elif isinstance(self.server_params, SSEServerParameters):
            transport = await self.exit_stack.enter_async_context(
                sse_client(
                    self.server_params.url,
                    headers=self.server_params.headers,
                    timeout=self.server_params.timeout,
                    sse_read_timeout=self.server_params.sse_read_timeout,
                )
            )
        else:
            raise TypeError(f"Unsupported server parameters type: {type(self.server_params)}")
        self.read, self.write = transport
        self.session = await self.exit_stack.enter_async_context(ClientSession(self.read, self.write))

        await self.session.initialize()

    async def get_tools(self) -> list[Tool]:
        response = await self._require_session().list_tools()
        return response.tools

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> CallToolResult:
        return await self._require_session().call_tool(tool_name, arguments)

    def _require_session(self) -> ClientSession:
        if self.session is None:
            raise RuntimeError("MCP client is not initialized")
        return self.session

    async def cleanup(self):
        """Clean up resources"""
        await self.exit_stack.aclose()
        self.session = None
