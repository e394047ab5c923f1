from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field

from relaygraph.messages import ToolResultMessage

NO_OUTPUT = "Tool executed successfully with no output"


class ToolDefinition(BaseModel):
    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


def _as_plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def format_content_item(item: Any) -> str:
    item = _as_plain(item)
    if not isinstance(item, dict):
        return json.dumps(item)

    item_type = item.get("type")
    if item_type == "text":
        return item.get("text") or ""
    elif item_type == "image":
        return f"[Image: {item.get('mimeType') or 'unknown'}]"
    elif item_type == "resource":
        resource = item.get("resource")
        uri = item.get("uri") or (resource.get("uri") if isinstance(resource, dict) else None)
        return f"[Resource: {uri or 'unknown'}]"
    return json.dumps(item)


def format_tool_result(result: Any) -> str:
    """Render a tool result as the string stored in a tool-result message.

    MCP results render their ``content`` items one per line, strings are kept
    verbatim and anything else is serialized as JSON.
    """
    if not result:
        return NO_OUTPUT

    result = _as_plain(result)
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        return "\n".join(format_content_item(item) for item in result["content"])

    if isinstance(result, str):
        return result

    return json.dumps(result, indent=2, default=str)


def result_is_error(result: Any) -> bool:
    result = _as_plain(result)
    return isinstance(result, dict) and bool(result.get("isError"))


def create_tool_message(result: Any, tool_call_id: str, tool_name: str) -> ToolResultMessage:
    return ToolResultMessage(
        tool_call_id=tool_call_id,
        name=tool_name,
        content=format_tool_result(result),
        is_error=result_is_error(result),
    )


def create_error_tool_message(error: Exception, tool_call_id: str, tool_name: str) -> ToolResultMessage:
    return ToolResultMessage(
        tool_call_id=tool_call_id,
        name=tool_name,
        content=f"Error executing tool: {error}",
        is_error=True,
    )
