import json

import httpx
import pytest
from inline_snapshot import snapshot

from relaygraph.config import Config
from relaygraph.errors import ProviderError, StreamEventError
from relaygraph.llms.anthropic import (
    UNANSWERED_TOOL_RESULT,
    AnthropicModel,
    build_anthropic_messages,
    to_anthropic_tools,
)
from relaygraph.mcp.tools import ToolDefinition
from relaygraph.messages import (
    AssistantMessage,
    HumanMessage,
    SystemMessage,
    ToolCall,
    ToolResultMessage,
)
from relaygraph.notifications import Notification

HISTORY = [
    SystemMessage(content="You are a helpful assistant"),
    SystemMessage(content="Be brief"),
    HumanMessage(content="Tidy up my browser"),
    AssistantMessage(
        id="msg_1",
        content="Looking at it",
        reasoning="User wants cleanup",
        tool_calls=[
            ToolCall(id="t1", name="browser__list_windows", args={}),
            ToolCall(id="t2", name="browser__delete_window", args={"window_id": 3}),
        ],
    ),
    ToolResultMessage(tool_call_id="t1", name="browser__list_windows", content="1, 3"),
    ToolResultMessage(tool_call_id="t2", name="browser__delete_window", content="denied", is_error=True),
    AssistantMessage(id="msg_2"),
    HumanMessage(content="Thanks"),
]

TOOLS = [
    ToolDefinition(
        name="browser__delete_window",
        description="Delete a window",
        input_schema={"type": "object", "properties": {"window_id": {"type": "integer"}}},
    )
]


def sse_body(*events: tuple[str, dict]) -> str:
    return "".join(f"event: {event}\ndata: {json.dumps(payload)}\n\n" for event, payload in events)


def make_model(handler, **config_kwargs) -> AnthropicModel:
    config_kwargs = {"anthropic_api_key": "sk-test", "anthropic_base_url": "https://llm.example.com", **config_kwargs}
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AnthropicModel(Config(**config_kwargs), client=client)


def streaming_response(body: str, chunk_size: int = 5) -> httpx.Response:
    raw = body.encode()

    async def chunks():
        for i in range(0, len(raw), chunk_size):
            yield raw[i : i + chunk_size]

    return httpx.Response(200, headers={"content-type": "text/event-stream; charset=utf-8"}, content=chunks())


def test_build_anthropic_messages():
    messages, system = build_anthropic_messages(HISTORY, thinking_enabled=False)
    assert system == "You are a helpful assistant\nBe brief"
    assert messages == snapshot([
        {"role": "user", "content": "Tidy up my browser"},
        {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Looking at it"},
                {"type": "tool_use", "id": "t1", "name": "browser__list_windows", "input": {}},
                {"type": "tool_use", "id": "t2", "name": "browser__delete_window", "input": {"window_id": 3}},
            ],
        },
        {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "t1", "content": "1, 3"},
                {"type": "tool_result", "tool_use_id": "t2", "content": "denied", "is_error": True},
            ],
        },
        {"role": "assistant", "content": [{"type": "text", "text": ""}]},
        {"role": "user", "content": "Thanks"},
    ])


def test_build_anthropic_messages_with_thinking():
    messages, _ = build_anthropic_messages(HISTORY, thinking_enabled=True)
    assert messages[1]["content"][0] == {"type": "thinking", "thinking": "User wants cleanup"}


def test_thinking_signature_is_sent_back():
    message = AssistantMessage(reasoning="User wants cleanup", reasoning_signature="EqQBZm9v", content="ok")

    messages, _ = build_anthropic_messages([HumanMessage(content="hi"), message], thinking_enabled=True)

    assert messages[1]["content"] == [
        {"type": "thinking", "thinking": "User wants cleanup", "signature": "EqQBZm9v"},
        {"type": "text", "text": "ok"},
    ]


def test_calls_abandoned_after_rejection_get_error_results():
    history = [
        HumanMessage(content="Close windows 3 and 4"),
        AssistantMessage(
            tool_calls=[
                ToolCall(id="t1", name="browser__delete_window", args={"window_id": 3}),
                ToolCall(id="t2", name="browser__delete_window", args={"window_id": 4}),
            ]
        ),
        ToolResultMessage(tool_call_id="t1", name="browser__delete_window", content="rejected", is_error=True),
        AssistantMessage(content="Okay, I did not run it."),
        HumanMessage(content="Then just list them"),
    ]

    messages, _ = build_anthropic_messages(history, thinking_enabled=False)

    assert [message["role"] for message in messages] == ["user", "assistant", "user", "assistant", "user"]
    assert messages[2]["content"] == [
        {"type": "tool_result", "tool_use_id": "t1", "content": "rejected", "is_error": True},
        {"type": "tool_result", "tool_use_id": "t2", "content": UNANSWERED_TOOL_RESULT, "is_error": True},
    ]


def test_pending_calls_at_the_end_of_history_are_left_open():
    history = [
        HumanMessage(content="Close window 3"),
        AssistantMessage(tool_calls=[ToolCall(id="t1", name="browser__delete_window", args={"window_id": 3})]),
    ]

    messages, _ = build_anthropic_messages(history, thinking_enabled=False)

    assert [message["role"] for message in messages] == ["user", "assistant"]


def test_build_anthropic_messages_without_system():
    messages, system = build_anthropic_messages([HumanMessage(content="hi")], thinking_enabled=False)
    assert system is None
    assert messages == [{"role": "user", "content": "hi"}]


def test_to_anthropic_tools():
    assert to_anthropic_tools([]) is None
    assert to_anthropic_tools(TOOLS) == [
        {
            "name": "browser__delete_window",
            "description": "Delete a window",
            "input_schema": {"type": "object", "properties": {"window_id": {"type": "integer"}}},
        }
    ]


async def test_stream_message_sends_request_and_assembles_response():
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return streaming_response(
            sse_body(
                ("message_start", {"type": "message_start"}),
                ("content_block_start", {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
                ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Héllo wörld"}}),
                ("content_block_start", {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "id": "t9", "name": "browser__delete_window", "input": {}}}),
                ("content_block_delta", {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"window_id"'}}),
                ("content_block_delta", {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": ": 7}"}}),
                ("message_stop", {"type": "message_stop"}),
            )
            + "data: [DONE]\n\n"
        )

    notifications: list[Notification] = []
    model = make_model(handler, model_name="claude-test-thinking", thinking_budget_tokens=2048, max_tokens=4096)
    message = await model.stream_message([HumanMessage(content="hi")], TOOLS, notifications.append)

    assert message.content == "Héllo wörld"
    assert message.tool_calls == [ToolCall(id="t9", name="browser__delete_window", args={"window_id": 7})]
    assert [n.content for n in notifications] == ["Héllo wörld"]
    assert notifications[0].message_id == message.id

    (request,) = requests
    assert str(request.url) == "https://llm.example.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-test"
    assert request.headers["authorization"] == "Bearer sk-test"
    assert request.headers["anthropic-version"] == "2023-06-01"
    assert json.loads(request.content) == snapshot({
        "model": "claude-test",
        "max_tokens": 4096,
        "stream": True,
        "messages": [{"role": "user", "content": "hi"}],
        "tools": [
            {
                "name": "browser__delete_window",
                "description": "Delete a window",
                "input_schema": {"type": "object", "properties": {"window_id": {"type": "integer"}}},
            }
        ],
        "thinking": {"type": "enabled", "budget_tokens": 2048},
    })


async def test_stream_message_without_tools_omits_tools_and_key():
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return streaming_response(sse_body(("message_stop", {"type": "message_stop"})))

    model = make_model(handler, anthropic_api_key=None, anthropic_base_url="https://proxy.example.com/v1/")
    message = await model.stream_message([SystemMessage(content="sys"), HumanMessage(content="hi")], [])

    assert message.content == ""
    assert message.tool_calls == []
    (request,) = requests
    assert str(request.url) == "https://proxy.example.com/v1/messages"
    assert "x-api-key" not in request.headers
    payload = json.loads(request.content)
    assert "tools" not in payload
    assert "thinking" not in payload
    assert payload["system"] == "sys"


async def test_non_success_status_raises_provider_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(529, text='{"error": "overloaded"}')

    model = make_model(handler)
    with pytest.raises(ProviderError) as exc_info:
        await model.stream_message([HumanMessage(content="hi")], [])

    assert exc_info.value.status_code == 529
    assert str(exc_info.value) == 'Anthropic request failed: 529 {"error": "overloaded"}'


async def test_error_event_raises_without_message():
    async def handler(request: httpx.Request) -> httpx.Response:
        return streaming_response(
            sse_body(
                ("content_block_delta", {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}}),
                ("error", {"type": "error", "error": {"type": "api_error", "message": "Internal server error"}}),
            )
        )

    model = make_model(handler)
    with pytest.raises(StreamEventError, match="Internal server error"):
        await model.stream_message([HumanMessage(content="hi")], [])


async def test_transport_failure_is_wrapped():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    model = make_model(handler)
    with pytest.raises(ProviderError, match="connection refused") as exc_info:
        await model.stream_message([HumanMessage(content="hi")], [])
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
    assert exc_info.value.status_code is None


async def test_empty_body_raises_provider_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    model = make_model(handler)
    with pytest.raises(ProviderError, match="Anthropic response body is empty") as exc_info:
        await model.stream_message([HumanMessage(content="hi")], [])
    assert exc_info.value.status_code == 200
