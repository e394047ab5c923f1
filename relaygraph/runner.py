from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from relaygraph.approval import PendingApproval, parse_decision
from relaygraph.config import Config
from relaygraph.llms.agent import Agent
from relaygraph.log import logger
from relaygraph.messages import Message


class ConversationState(BaseModel):
    """Checkpoint of one conversation: the history so far and the call awaiting approval, if any."""

    messages: list[Message] = Field(default_factory=list)
    pending: PendingApproval | None = None

    @property
    def suspended(self) -> bool:
        return self.pending is not None


class ConversationRunner:
    """Drives an :class:`Agent` through generate and act steps.

    Suspension is returned to the caller as a state whose ``pending`` is set.
    The caller may persist it (``model_dump_json``) and later hand it to
    :meth:`resume` together with the approval response.
    """

    def __init__(self, agent: Agent, max_steps: int = 25) -> None:
        self.agent = agent
        self.max_steps = max_steps

    @classmethod
    def from_config(cls, config: Config, agent: Agent) -> ConversationRunner:
        return cls(agent, max_steps=config.max_turn_steps)

    async def run(self, state: ConversationState) -> ConversationState:
        messages = list(state.messages)
        for _ in range(self.max_steps):
            messages.append(await self.agent.generate(messages))
            if self.agent.route(messages) == "end":
                return ConversationState(messages=messages)

            act_result = await self.agent.act(messages)
            messages.extend(act_result.messages)
            if act_result.suspended:
                return ConversationState(messages=messages, pending=act_result.pending)

        logger.warning(f"Conversation stopped after {self.max_steps} steps")
        return ConversationState(messages=messages)

    async def resume(self, state: ConversationState, response: Any) -> ConversationState:
        if state.pending is None:
            raise RuntimeError("Conversation has no pending approval to resume")

        messages = list(state.messages)
        act_result = await self.agent.act(messages, resume=parse_decision(response))
        messages.extend(act_result.messages)
        if act_result.suspended:
            return ConversationState(messages=messages, pending=act_result.pending)
        return await self.run(ConversationState(messages=messages))
