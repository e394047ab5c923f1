from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from relaygraph.approval import (
    ApprovalPolicy,
    Decision,
    PendingApproval,
    is_rejection,
    parse_decision,
    rejection_acknowledgement,
)
from relaygraph.config import Config
from relaygraph.llms import Model
from relaygraph.log import logger
from relaygraph.mcp.tools import ToolDefinition, create_error_tool_message, create_tool_message
from relaygraph.messages import (
    AssistantMessage,
    Message,
    ToolCall,
    ToolResultMessage,
    answered_tool_call_ids,
)
from relaygraph.notifications import Notification, NotificationSink


class ToolRegistry(Protocol):
    async def list_tools(self) -> list[ToolDefinition]: ...

    async def call_tool(self, tool_name: str, args: dict[str, Any]) -> Any: ...

    def requires_approval(self, tool_name: str, args: dict[str, Any]) -> bool: ...


@dataclass(frozen=True)
class Ok:
    result: ToolResultMessage


@dataclass(frozen=True)
class Err:
    result: ToolResultMessage


@dataclass(frozen=True)
class Suspend:
    pending: PendingApproval


@dataclass(frozen=True)
class Rejected:
    result: ToolResultMessage


ToolOutcome = Ok | Err | Suspend | Rejected


@dataclass
class ActResult:
    """Tool results produced by one ``act`` pass.

    ``pending`` is set when the pass stopped at a call awaiting approval; the
    results before it are complete and belong in history.
    """

    messages: list[ToolResultMessage] = field(default_factory=list)
    pending: PendingApproval | None = None

    @property
    def suspended(self) -> bool:
        return self.pending is not None


def last_assistant_message(history: list[Message]) -> AssistantMessage | None:
    for message in reversed(history):
        if isinstance(message, AssistantMessage):
            return message
    return None


class Agent:
    def __init__(
        self,
        model: Model,
        registry: ToolRegistry,
        approval_policy: ApprovalPolicy | None = None,
        sink: NotificationSink | None = None,
    ):
        self.model = model
        self.registry = registry
        self.approval_policy = approval_policy or ApprovalPolicy(registry=registry)
        self.sink = sink

    @classmethod
    def from_config(
        cls,
        config: Config,
        model: Model,
        registry: ToolRegistry,
        sink: NotificationSink | None = None,
    ) -> Agent:
        return cls(model, registry, approval_policy=ApprovalPolicy.from_config(config, registry), sink=sink)

    async def generate(self, history: list[Message]) -> AssistantMessage:
        """Produce the next assistant message for ``history``.

        After a rejected tool call the model is not consulted; a fixed
        acknowledgement is returned so the same call is not attempted again.
        """
        if history and is_rejection(history[-1]):
            logger.info("Last tool call was rejected, skipping model call")
            message = rejection_acknowledgement()
            if self.sink is not None:
                self.sink(Notification(type="content_chunk", message_id=message.id, content=message.content))
            return message

        tools = await self.registry.list_tools()
        return await self.model.stream_message(history, tools, self.sink)

    def route(self, history: list[Message]) -> Literal["act", "end"]:
        match history[-1] if history else None:
            case AssistantMessage(tool_calls=tool_calls) if tool_calls:
                return "act"
            case _:
                return "end"

    async def dispatch(self, call: ToolCall) -> Ok | Err:
        try:
            result = await self.registry.call_tool(call.name, call.args)
        except Exception as e:
            logger.warning(f"Tool {call.name} ({call.id}) failed: {e}")
            return Err(create_error_tool_message(e, call.id, call.name))
        return Ok(create_tool_message(result, call.id, call.name))

    async def evaluate(self, call: ToolCall, decision: Decision | None) -> ToolOutcome:
        if not self.approval_policy.requires_approval(call):
            return await self.dispatch(call)

        if decision is None:
            logger.info(f"Tool {call.name} ({call.id}) requires approval, suspending")
            return Suspend(self.approval_policy.build_request(call))

        applied = self.approval_policy.apply_decision(call, parse_decision(decision))
        if isinstance(applied, ToolResultMessage):
            logger.info(f"Tool {call.name} ({call.id}) was rejected")
            return Rejected(applied)
        return await self.dispatch(applied)

    async def act(self, history: list[Message], resume: Any = None) -> ActResult:
        """Run the tool calls of the latest assistant message that have no result yet.

        ``resume`` carries the decision for the call this step last suspended on.
        Calls before the first one needing approval run concurrently; from there
        on they run one at a time so that at most one approval is pending.
        """
        message = last_assistant_message(history)
        if message is None:
            return ActResult()

        answered = answered_tool_call_ids(history)
        calls = [call for call in message.tool_calls if call.id not in answered]
        if len(calls) < len(message.tool_calls):
            logger.debug(f"Skipping {len(message.tool_calls) - len(calls)} tool calls that already have results")

        first_gated = next(
            (i for i, call in enumerate(calls) if self.approval_policy.requires_approval(call)),
            len(calls),
        )
        outcomes = await asyncio.gather(*(self.dispatch(call) for call in calls[:first_gated]))
        result = ActResult(messages=[outcome.result for outcome in outcomes])

        decision = parse_decision(resume) if resume is not None else None
        for call in calls[first_gated:]:
            gated = self.approval_policy.requires_approval(call)
            outcome = await self.evaluate(call, decision)
            if gated:
                decision = None

            match outcome:
                case Suspend(pending=pending):
                    result.pending = pending
                    return result
                case Rejected(result=rejected):
                    result.messages.append(rejected)
                    # Remaining calls of this batch are abandoned for the turn
                    break
                case Ok(result=tool_result) | Err(result=tool_result):
                    result.messages.append(tool_result)

        return result
