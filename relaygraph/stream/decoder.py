"""Split a provider's event stream into frames.

Frames are separated by a blank line. The scan keeps whatever follows the last
separator buffered until more text arrives, so the frames produced do not
depend on how the transport fragments the stream.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from httpx_sse import ServerSentEvent

from relaygraph.log import logger

FRAME_SEPARATOR = "\n\n"
DONE_SENTINEL = "[DONE]"


class DecodedEvent(ServerSentEvent):
    """A frame whose JSON payload was parsed while decoding."""

    def __init__(self, event: str, data: str, payload: Any) -> None:
        super().__init__(event=event, data=data)
        self._payload = payload

    def json(self) -> Any:
        return self._payload


def parse_frame(raw: str) -> ServerSentEvent | None:
    event = "message"
    data_lines: list[str] = []
    for line in raw.split("\n"):
        if line.startswith("event:"):
            event = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].strip())

    data = "\n".join(data_lines)
    if not data:
        return None
    return ServerSentEvent(event=event, data=data)


async def aiter_frames(fragments: AsyncIterable[str]) -> AsyncIterator[DecodedEvent]:
    """Yield one ``DecodedEvent`` per complete frame carrying a JSON payload.

    A trailing frame that never sees its blank-line terminator is discarded.
    """
    buffer = ""
    async for fragment in fragments:
        # A "\r" at the end of the buffer stays put until its "\n" arrives
        buffer = (buffer + fragment).replace("\r\n", "\n")
        while True:
            boundary = buffer.find(FRAME_SEPARATOR)
            if boundary == -1:
                break
            raw, buffer = buffer[:boundary], buffer[boundary + len(FRAME_SEPARATOR) :]

            frame = parse_frame(raw)
            if frame is None or frame.data == DONE_SENTINEL:
                continue
            try:
                payload = frame.json()
            except ValueError:
                logger.debug(f"Skipping frame with non-JSON payload: {frame.data[:80]!r}")
                continue
            yield DecodedEvent(frame.event, frame.data, payload)

    if buffer.strip():
        logger.debug(f"Discarding unterminated trailing frame ({len(buffer)} chars)")
