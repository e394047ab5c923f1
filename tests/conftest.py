from __future__ import annotations

import json
import os
import sys

os.environ["LOGURU_LEVEL"] = "DEBUG"

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from relaygraph.llms import Model
from relaygraph.mcp.tools import ToolDefinition
from relaygraph.messages import AssistantMessage, Message
from relaygraph.notifications import NotificationSink

_HERE = Path(__file__).parent


class ScriptedModel(Model):
    """Returns queued assistant messages (or raises queued exceptions) in order."""

    def __init__(self, responses: list[AssistantMessage | Exception]):
        self.responses = list(responses)
        self.calls: list[tuple[list[Message], list[ToolDefinition]]] = []

    async def stream_message(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        sink: NotificationSink | None = None,
    ) -> AssistantMessage:
        self.calls.append((list(messages), list(tools)))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingRegistry:
    """In-memory tool registry that records every dispatch."""

    def __init__(
        self,
        results: dict[str, Any] | None = None,
        failures: dict[str, Exception] | None = None,
        requires_approval: Callable[[str, dict[str, Any]], bool] | None = None,
    ):
        self.results = results or {}
        self.failures = failures or {}
        self._requires_approval = requires_approval
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def list_tools(self) -> list[ToolDefinition]:
        names = sorted({*self.results, *self.failures})
        return [ToolDefinition(name=name, description=f"{name} tool") for name in names]

    async def call_tool(self, tool_name: str, args: dict[str, Any]) -> Any:
        self.calls.append((tool_name, args))
        if tool_name in self.failures:
            raise self.failures[tool_name]
        return self.results.get(tool_name, f"{tool_name} done")

    def requires_approval(self, tool_name: str, args: dict[str, Any]) -> bool:
        if self._requires_approval is None:
            return False
        return self._requires_approval(tool_name, args)


@pytest.fixture
def scripted_model() -> Callable[..., ScriptedModel]:
    return lambda *responses: ScriptedModel(list(responses))


@pytest.fixture
def registry() -> RecordingRegistry:
    return RecordingRegistry(
        results={
            "files__read": {"content": [{"type": "text", "text": "file body"}]},
            "browser__delete_window": "window deleted",
            "browser__remove_tab": "tab removed",
            "search__query": "3 hits",
        },
        failures={"files__write": RuntimeError("disk full")},
    )


@pytest.fixture
def temp_mcp_config(tmp_path: Path) -> Path:
    """Create a temporary MCP config file."""
    config_path = tmp_path / "mcp.json"
    config = {
        "mcpServers": {
            "mock": {
                "command": sys.executable,
                "args": [(_HERE / "mock" / "mcp_server.py").absolute().as_posix()],
                "enabled": True,
            },
            "disabled-mock": {
                "command": sys.executable,
                "args": [(_HERE / "mock" / "mcp_server.py").absolute().as_posix()],
                "enabled": False,
            },
        }
    }
    config_path.write_text(json.dumps(config))
    return config_path
