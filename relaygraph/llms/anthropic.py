from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from relaygraph.config import Config
from relaygraph.errors import ProviderError
from relaygraph.llms import Model
from relaygraph.log import logger
from relaygraph.mcp.tools import ToolDefinition
from relaygraph.messages import (
    AssistantMessage,
    HumanMessage,
    Message,
    SystemMessage,
    ToolCall,
    ToolResultMessage,
    answered_tool_call_ids,
    new_message_id,
)
from relaygraph.notifications import NotificationSink
from relaygraph.stream import read_message

UNANSWERED_TOOL_RESULT = "Tool call was not executed because an earlier call in this turn was rejected."


def to_anthropic_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]] | None:
    if not tools:
        return None
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.input_schema,
        }
        for tool in tools
    ]


def build_assistant_content(message: AssistantMessage, thinking_enabled: bool) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    if thinking_enabled and message.reasoning:
        thinking: dict[str, Any] = {"type": "thinking", "thinking": message.reasoning}
        if message.reasoning_signature:
            thinking["signature"] = message.reasoning_signature
        blocks.append(thinking)
    if message.content:
        blocks.append({"type": "text", "text": message.content})
    for tool_call in message.tool_calls:
        blocks.append({"type": "tool_use", "id": tool_call.id, "name": tool_call.name, "input": tool_call.args})

    if not blocks:
        blocks.append({"type": "text", "text": ""})
    return blocks


def build_tool_result_block(message: ToolResultMessage) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": message.tool_call_id,
        "content": message.content,
    }
    if message.is_error:
        block["is_error"] = True
    return block


def append_tool_result(out: list[dict[str, Any]], block: dict[str, Any]) -> None:
    previous = out[-1] if out else None
    if (
        previous is not None
        and previous["role"] == "user"
        and isinstance(previous["content"], list)
        and all(b.get("type") == "tool_result" for b in previous["content"])
    ):
        previous["content"].append(block)
    else:
        out.append({"role": "user", "content": [block]})


def build_anthropic_messages(
    messages: list[Message], thinking_enabled: bool
) -> tuple[list[dict[str, Any]], str | None]:
    """Convert history into Anthropic ``messages`` plus the joined ``system`` prompt.

    Consecutive tool results share one user message, as the API expects every
    result for an assistant turn in the next user turn. Calls left without a
    result (the rest of a batch abandoned after a rejection) get an error
    result once the conversation moves past them.
    """
    system_parts: list[str] = []
    out: list[dict[str, Any]] = []
    answered = answered_tool_call_ids(messages)
    unanswered: list[ToolCall] = []

    def close_tool_turn() -> None:
        for call in unanswered:
            placeholder = ToolResultMessage(
                tool_call_id=call.id, name=call.name, content=UNANSWERED_TOOL_RESULT, is_error=True
            )
            append_tool_result(out, build_tool_result_block(placeholder))
        unanswered.clear()

    for message in messages:
        match message:
            case SystemMessage():
                if message.content:
                    system_parts.append(message.content)
            case HumanMessage():
                close_tool_turn()
                out.append({"role": "user", "content": message.content})
            case AssistantMessage():
                close_tool_turn()
                out.append({"role": "assistant", "content": build_assistant_content(message, thinking_enabled)})
                unanswered.extend(call for call in message.tool_calls if call.id not in answered)
            case ToolResultMessage():
                append_tool_result(out, build_tool_result_block(message))
            case _:
                raise TypeError(f"Unsupported message type: {type(message)}")

    return out, "\n".join(system_parts) if system_parts else None


class AnthropicModel(Model):
    """Streams completions from an Anthropic-compatible ``/v1/messages`` endpoint."""

    def __init__(self, config: Config, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.request_timeout)

    def build_payload(self, messages: list[Message], tools: list[ToolDefinition]) -> dict[str, Any]:
        thinking_enabled = self.config.use_thinking
        anthropic_messages, system = build_anthropic_messages(messages, thinking_enabled)

        payload: dict[str, Any] = {
            "model": self.config.wire_model_name,
            "max_tokens": self.config.max_tokens,
            "stream": True,
            "messages": anthropic_messages,
        }
        anthropic_tools = to_anthropic_tools(tools)
        if anthropic_tools:
            payload["tools"] = anthropic_tools
        if system:
            payload["system"] = system
        if thinking_enabled:
            payload["thinking"] = {"type": "enabled", "budget_tokens": self.config.thinking_budget_tokens}
        return payload

    def build_headers(self) -> dict[str, str]:
        headers = {
            "content-type": "application/json",
            "anthropic-version": self.config.anthropic_version,
        }
        if self.config.anthropic_api_key:
            headers["x-api-key"] = self.config.anthropic_api_key
            headers["authorization"] = f"Bearer {self.config.anthropic_api_key}"
        return headers

    async def stream_message(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        sink: NotificationSink | None = None,
    ) -> AssistantMessage:
        endpoint = self.config.get_messages_endpoint()
        message_id = new_message_id()
        logger.info(f"Requesting {self.config.wire_model_name} with {len(messages)} messages and {len(tools)} tools")

        try:
            async with self.client.stream(
                "POST", endpoint, headers=self.build_headers(), json=self.build_payload(messages, tools)
            ) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode(errors="replace")
                    raise ProviderError(
                        f"Anthropic request failed: {response.status_code} {error_text}",
                        status_code=response.status_code,
                    )

                received = False

                async def body() -> AsyncIterator[str]:
                    nonlocal received
                    async for text in response.aiter_text():
                        received = received or bool(text)
                        yield text

                message = await read_message(body(), sink, message_id)
                if not received:
                    raise ProviderError("Anthropic response body is empty", status_code=response.status_code)
                return message
        except httpx.HTTPError as e:
            raise ProviderError(f"Anthropic request failed: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
