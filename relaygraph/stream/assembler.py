from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from relaygraph.log import logger
from relaygraph.messages import AssistantMessage, ToolCall


@dataclass
class PartialToolCall:
    id: str = ""
    name: str = ""
    args_buffer: str = ""


@dataclass
class StreamAccumulatorState:
    """Everything collected from a single provider call."""

    text: str = ""
    reasoning: str = ""
    signature: str = ""
    tool_calls: dict[int, PartialToolCall] = field(default_factory=dict)


def parse_tool_args(args_buffer: str) -> dict[str, Any]:
    if not args_buffer:
        return {}
    try:
        args = json.loads(args_buffer)
    except ValueError:
        logger.debug(f"Malformed tool arguments, using empty object: {args_buffer[:80]!r}")
        return {}
    if not isinstance(args, dict):
        logger.debug(f"Tool arguments are not an object, using empty object: {args_buffer[:80]!r}")
        return {}
    return args


def assemble_message(state: StreamAccumulatorState, message_id: str) -> AssistantMessage:
    tool_calls = [
        ToolCall(id=partial.id, name=partial.name, args=parse_tool_args(partial.args_buffer))
        for _, partial in sorted(state.tool_calls.items())
    ]
    return AssistantMessage(
        id=message_id,
        content=state.text,
        reasoning=state.reasoning or None,
        reasoning_signature=state.signature or None,
        tool_calls=tool_calls,
    )
