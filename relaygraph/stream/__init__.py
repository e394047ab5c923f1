from __future__ import annotations

from collections.abc import AsyncIterable

from relaygraph.messages import AssistantMessage, new_message_id
from relaygraph.notifications import NotificationSink
from relaygraph.stream.accumulator import StreamAccumulator
from relaygraph.stream.assembler import StreamAccumulatorState, assemble_message
from relaygraph.stream.decoder import aiter_frames

__all__ = [
    "StreamAccumulator",
    "StreamAccumulatorState",
    "aiter_frames",
    "assemble_message",
    "read_message",
]


async def read_message(
    fragments: AsyncIterable[str],
    sink: NotificationSink | None = None,
    message_id: str | None = None,
) -> AssistantMessage:
    """Consume a provider event stream and return the assistant message it describes.

    Raises ``StreamEventError`` if the stream carries an ``error`` event.
    """
    accumulator = StreamAccumulator(message_id or new_message_id(), sink)
    async for frame in aiter_frames(fragments):
        accumulator.feed(frame)
    return accumulator.finalize()
