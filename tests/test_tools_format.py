import pytest
from mcp.types import CallToolResult, ImageContent, TextContent

from relaygraph.mcp.tools import (
    NO_OUTPUT,
    create_error_tool_message,
    create_tool_message,
    format_content_item,
    format_tool_result,
    result_is_error,
)
from relaygraph.messages import ToolResultMessage


@pytest.mark.parametrize(
    "item, expected",
    [
        ({"type": "text", "text": "hello"}, "hello"),
        ({"type": "image", "data": "aGk=", "mimeType": "image/png"}, "[Image: image/png]"),
        ({"type": "resource", "resource": {"uri": "file:///a.txt", "text": "a"}}, "[Resource: file:///a.txt]"),
        ({"type": "audio", "data": "x"}, '{"type": "audio", "data": "x"}'),
        ("plain", '"plain"'),
    ],
)
def test_format_content_item(item, expected):
    assert format_content_item(item) == expected


@pytest.mark.parametrize(
    "result, expected",
    [
        (None, NO_OUTPUT),
        ("", NO_OUTPUT),
        ({}, NO_OUTPUT),
        ("verbatim text", "verbatim text"),
        ({"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}, "a\nb"),
        ({"count": 3}, '{\n  "count": 3\n}'),
        ([1, 2], "[\n  1,\n  2\n]"),
    ],
)
def test_format_tool_result(result, expected):
    assert format_tool_result(result) == expected


def test_format_mcp_result():
    result = CallToolResult(
        content=[
            TextContent(type="text", text="window list"),
            ImageContent(type="image", data="aGk=", mimeType="image/jpeg"),
        ]
    )
    assert format_tool_result(result) == "window list\n[Image: image/jpeg]"
    assert not result_is_error(result)


def test_mcp_error_result_is_flagged():
    result = CallToolResult(content=[TextContent(type="text", text="boom")], isError=True)

    message = create_tool_message(result, "t1", "browser__delete_window")

    assert message == ToolResultMessage(tool_call_id="t1", name="browser__delete_window", content="boom", is_error=True)


def test_create_error_tool_message():
    message = create_error_tool_message(RuntimeError("disk full"), "t2", "files__write")
    assert message.content == "Error executing tool: disk full"
    assert message.is_error
