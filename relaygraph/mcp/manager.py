from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from os import PathLike
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from relaygraph.config import Config
from relaygraph.errors import ToolExecutionError, ToolNameError, ToolServerNotFoundError
from relaygraph.log import logger
from relaygraph.mcp.client import MCPClient, ServerParams
from relaygraph.mcp.tools import ToolDefinition

TOOL_NAME_SEPARATOR = "__"

ServerName = str
ApprovalPredicate = Callable[[str, dict[str, Any]], bool]


@asynccontextmanager
async def init_mcp_manager(
    config: Config, requires_approval: ApprovalPredicate | None = None
) -> AsyncIterator[MCPManager]:
    mcp_manager = MCPManager(config.mcp_config_path, requires_approval=requires_approval)
    await mcp_manager.initialize()
    try:
        yield mcp_manager
    finally:
        await mcp_manager.cleanup()
        logger.info("MCP manager disposed")


class MCPConfig(BaseModel):
    mcp_servers: dict[ServerName, ServerParams] = Field({}, alias="mcpServers")


def load_mcp_config(config_path: Path) -> tuple[MCPConfig, list[ServerName]]:
    try:
        mcp_configs = json.loads(config_path.read_text())
    except (OSError, ValueError) as e:
        logger.info(f"No usable MCP config at {config_path} ({e}). Running without MCP tools.")
        return MCPConfig(), []

    if not isinstance(mcp_configs, dict) or not isinstance(mcp_configs.get("mcpServers", {}), dict):
        logger.error(f"Invalid MCP config at {config_path}. Running without MCP tools.")
        return MCPConfig(), []

    disabled_clients = []
    servers = {}
    for server_name, server_params in (mcp_configs.get("mcpServers") or {}).items():
        if isinstance(server_params, dict) and not server_params.pop("enabled", True):
            disabled_clients.append(server_name)
            continue
        servers[server_name] = server_params

    try:
        return MCPConfig.model_validate({"mcpServers": servers}), disabled_clients
    except ValidationError as e:
        logger.error(f"Invalid MCP config at {config_path}: {e}. Running without MCP tools.")
        return MCPConfig(), disabled_clients


def split_tool_name(tool_name: str) -> tuple[ServerName, str]:
    parts = tool_name.split(TOOL_NAME_SEPARATOR)
    if len(parts) != 2:
        raise ToolNameError(f"Invalid tool name format: {tool_name}")
    server_name, actual_tool_name = parts
    return server_name, actual_tool_name


class MCPManager:
    """Tool registry backed by the MCP servers listed in an ``mcp.json`` file.

    Connections are opened by ``initialize`` (or lazily by
    ``ensure_initialized``) and closed by ``cleanup``.
    """

    clients: dict[ServerName, MCPClient]
    disabled_clients: list[ServerName]
    failed_clients: dict[ServerName, tuple[ServerParams, Exception]]
    initialized: bool

    def __init__(self, config_path: PathLike | str, requires_approval: ApprovalPredicate | None = None) -> None:
        logger.info(f"Loading MCP config from {config_path}")
        self.config_path = Path(config_path)
        self._requires_approval = requires_approval

        self.mcp_config, self.disabled_clients = load_mcp_config(self.config_path)
        self.clients = {
            server_name: MCPClient(server_params) for server_name, server_params in self.mcp_config.mcp_servers.items()
        }
        self.failed_clients = {}
        self.initialized = False

    async def initialize(self):
        for server_name, client in self.clients.items():
            try:
                logger.info(f"Initializing MCP server: {server_name}")
                await client.initialize()
            except Exception as e:
                logger.exception(f"Error connecting to {server_name}: {e}")
                self.failed_clients[server_name] = (client.server_params, e)

        if self.failed_clients:
            logger.error(f"{len(self.failed_clients)} MCP clients failed to connect")
            self.clients = {
                server_name: client
                for server_name, client in self.clients.items()
                if server_name not in self.failed_clients
            }
        logger.info(f"Initialized {len(self.clients)} MCP server(s)")
        self.initialized = True

    async def ensure_initialized(self) -> None:
        if not self.initialized:
            await self.initialize()

    async def list_tools(self) -> list[ToolDefinition]:
        await self.ensure_initialized()

        tool_definitions = []
        for server_name, client in self.clients.items():
            try:
                tools = await client.get_tools()
            except Exception as e:
                logger.warning(f"Failed to list tools from {server_name}: {e}")
                continue

            tool_definitions.extend(
                ToolDefinition(
                    name=f"{server_name}{TOOL_NAME_SEPARATOR}{tool.name}",
                    description=tool.description or "",
                    input_schema=tool.inputSchema or {"type": "object", "properties": {}},
                )
                for tool in tools
            )
        return tool_definitions

    async def call_tool(self, tool_name: str, args: dict[str, Any]) -> Any:
        await self.ensure_initialized()

        server_name, actual_tool_name = split_tool_name(tool_name)
        client = self.clients.get(server_name)
        if client is None:
            raise ToolServerNotFoundError(f"MCP server not found: {server_name}")

        try:
            return await client.call_tool(actual_tool_name, args)
        except Exception as e:
            raise ToolExecutionError(f"Tool execution failed: {e}") from e

    def requires_approval(self, tool_name: str, args: dict[str, Any]) -> bool:
        if self._requires_approval is None:
            return False
        return self._requires_approval(tool_name, args)

    async def cleanup(self) -> None:
        for server_name, client in self.clients.items():
            try:
                await client.cleanup()
                logger.info(f"Closed MCP server: {server_name}")
            except Exception as e:
                logger.warning(f"Failed to close MCP server {server_name}: {e}")
        self.initialized = False
