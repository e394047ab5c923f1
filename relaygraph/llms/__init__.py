from abc import ABC, abstractmethod

from relaygraph.mcp.tools import ToolDefinition
from relaygraph.messages import AssistantMessage, Message
from relaygraph.notifications import NotificationSink


class Model(ABC):
    @abstractmethod
    async def stream_message(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        sink: NotificationSink | None = None,
    ) -> AssistantMessage:
        pass
