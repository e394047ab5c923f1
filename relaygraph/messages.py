"""Conversation messages.

History is an append-only list of :data:`Message`, a closed union over four
frozen models discriminated by ``kind``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def new_message_id() -> str:
    return f"msg_{uuid4().hex}"


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class SystemMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["system"] = "system"
    content: str


class HumanMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["human"] = "human"
    content: str


class AssistantMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["assistant"] = "assistant"
    id: str = Field(default_factory=new_message_id)
    content: str = ""
    reasoning: str | None = None
    reasoning_signature: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ToolResultMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    name: str
    content: str
    is_error: bool = False


Message = Annotated[
    Union[SystemMessage, HumanMessage, AssistantMessage, ToolResultMessage],
    Field(discriminator="kind"),
]

history_adapter: TypeAdapter[list[Message]] = TypeAdapter(list[Message])


def answered_tool_call_ids(history: list[Message]) -> set[str]:
    """Ids of every tool call that already has a result in ``history``."""
    return {message.tool_call_id for message in history if isinstance(message, ToolResultMessage)}
