from __future__ import annotations

import json
from typing import Any, Literal

from httpx_sse import ServerSentEvent

from relaygraph.errors import StreamEventError
from relaygraph.messages import AssistantMessage
from relaygraph.notifications import Notification, NotificationSink
from relaygraph.stream.assembler import PartialToolCall, StreamAccumulatorState, assemble_message

THINKING_BLOCK_TYPES = ("thinking", "redacted_thinking")
THINKING_DELTA_TYPES = ("thinking_delta", "redacted_thinking_delta")


def inline_input_json(value: Any) -> str:
    if not isinstance(value, dict) or not value:
        return ""
    return json.dumps(value)


def stream_error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if payload.get("message"):
            return str(payload["message"])
    return "Unknown streaming error"


class StreamAccumulator:
    """Folds the frames of one provider call into text, reasoning and tool-call buffers.

    Every text or reasoning fragment is forwarded to ``sink`` as soon as it is
    appended. The sink is optional.
    """

    def __init__(self, message_id: str, sink: NotificationSink | None = None) -> None:
        self.message_id = message_id
        self.sink = sink
        self.state = StreamAccumulatorState()

    def feed(self, frame: ServerSentEvent) -> None:
        payload = frame.json()

        event = frame.event
        if event == "message" and isinstance(payload, dict):
            # Unnamed frames are classified by their payload type
            event = payload.get("type") or event

        if event == "error":
            raise StreamEventError(stream_error_message(payload))

        if not isinstance(payload, dict):
            return

        if event == "content_block_start":
            self._on_block_start(payload.get("index"), payload.get("content_block"))
        elif event == "content_block_delta":
            self._on_block_delta(payload.get("index"), payload.get("delta"))

    def finalize(self) -> AssistantMessage:
        return assemble_message(self.state, self.message_id)

    def _on_block_start(self, index: Any, block: Any) -> None:
        if not isinstance(block, dict):
            return

        block_type = block.get("type")
        if block_type == "text":
            self._append_text(block.get("text"))
        elif block_type in THINKING_BLOCK_TYPES:
            self._append_reasoning(block.get("thinking") or block.get("text"))
            self._append_signature(block.get("signature"))
        elif block_type == "tool_use" and isinstance(index, int):
            partial = self.state.tool_calls.setdefault(index, PartialToolCall())
            if not partial.id:
                partial.id = block.get("id") or ""
            if not partial.name:
                partial.name = block.get("name") or ""
            if not partial.args_buffer:
                partial.args_buffer = inline_input_json(block.get("input"))

    def _on_block_delta(self, index: Any, delta: Any) -> None:
        if not isinstance(delta, dict):
            return

        delta_type = delta.get("type")
        if delta_type == "text_delta":
            self._append_text(delta.get("text"))
        elif delta_type in THINKING_DELTA_TYPES:
            self._append_reasoning(delta.get("thinking") or delta.get("text"))
        elif delta_type == "signature_delta":
            self._append_signature(delta.get("signature"))
        elif delta_type == "input_json_delta" and isinstance(index, int):
            fragment = delta.get("partial_json")
            if isinstance(fragment, str) and fragment:
                # Argument fragments may arrive before the tool_use start
                self.state.tool_calls.setdefault(index, PartialToolCall()).args_buffer += fragment

    def _append_text(self, fragment: Any) -> None:
        if not isinstance(fragment, str) or not fragment:
            return
        self.state.text += fragment
        self._emit("content_chunk", fragment)

    def _append_reasoning(self, fragment: Any) -> None:
        if not isinstance(fragment, str) or not fragment:
            return
        self.state.reasoning += fragment
        self._emit("reasoning_chunk", fragment)

    def _append_signature(self, fragment: Any) -> None:
        if isinstance(fragment, str):
            self.state.signature += fragment

    def _emit(self, kind: Literal["content_chunk", "reasoning_chunk"], content: str) -> None:
        if self.sink is not None:
            self.sink(Notification(type=kind, message_id=self.message_id, content=content))
