"""Human approval for destructive tool calls.

A call flagged by :class:`ApprovalPolicy` is not dispatched until a
:data:`Decision` arrives. The request shown to the reviewer and the response
sent back follow this shape::

    request  = {"action_requests": [{"name", "args", "description"}],
                "review_configs": [{"action_name", "allowed_decisions"}]}
    response = {"decisions": [{"type": "approve" | "reject" | "edit",
                               "message"?, "edited_action"?}]}

A missing or malformed decision is treated as a rejection.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Annotated, Any, Literal, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from relaygraph.config import Config
from relaygraph.log import logger
from relaygraph.messages import AssistantMessage, Message, ToolCall, ToolResultMessage

TOOL_REJECTED_MARKER = "[TOOL_CALL_REJECTED]"
DEFAULT_REJECT_MESSAGE = "The user rejected this action. It was not executed."
REJECTION_ACKNOWLEDGEMENT = (
    "The requested action was rejected, so I did not run it. Let me know if you would like to do something else."
)

DecisionType = Literal["approve", "reject", "edit"]


class ApprovalPredicateSource(Protocol):
    def requires_approval(self, tool_name: str, args: dict[str, Any]) -> bool: ...


class ActionRequest(BaseModel):
    name: str
    args: dict[str, Any]
    description: str


class ReviewConfig(BaseModel):
    action_name: str
    allowed_decisions: list[DecisionType]


class ApprovalRequest(BaseModel):
    action_requests: list[ActionRequest]
    review_configs: list[ReviewConfig]


class PendingApproval(BaseModel):
    tool_call_id: str
    name: str
    args: dict[str, Any]
    request: ApprovalRequest


class ApproveDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["approve"] = "approve"


class RejectDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["reject"] = "reject"
    message: str | None = None


class EditedAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    args: dict[str, Any]


class EditDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["edit"] = "edit"
    edited_action: EditedAction


Decision = Annotated[Union[ApproveDecision, RejectDecision, EditDecision], Field(discriminator="type")]

decision_adapter: TypeAdapter[Decision] = TypeAdapter(Decision)


def parse_decision(response: Any) -> Decision:
    """Pick the decision out of an approval response.

    Accepts a full response (``{"decisions": [...]}``), a single decision
    mapping, or an already parsed decision. Anything else is a rejection.
    """
    if isinstance(response, (ApproveDecision, RejectDecision, EditDecision)):
        return response

    raw = response
    if isinstance(response, dict) and "decisions" in response:
        decisions = response["decisions"]
        raw = decisions[0] if isinstance(decisions, list) and decisions else None

    if raw is None:
        return RejectDecision()
    try:
        return decision_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(f"Malformed approval decision, treating as reject: {e}")
        return RejectDecision()


class ApprovalPolicy:
    """Decides which tool calls need a human decision before they run.

    A call is flagged when its name mentions a browser or window resource
    together with a delete or remove action, or when the tool registry says so.
    """

    def __init__(
        self,
        resource_keywords: Iterable[str] = ("window", "browser"),
        action_keywords: Iterable[str] = ("delete", "remove"),
        allow_edit: bool = True,
        registry: ApprovalPredicateSource | None = None,
    ) -> None:
        self.resource_keywords = tuple(keyword.lower() for keyword in resource_keywords)
        self.action_keywords = tuple(keyword.lower() for keyword in action_keywords)
        self.allow_edit = allow_edit
        self.registry = registry

    @classmethod
    def from_config(cls, config: Config, registry: ApprovalPredicateSource | None = None) -> ApprovalPolicy:
        return cls(
            resource_keywords=config.approval_resource_keywords,
            action_keywords=config.approval_action_keywords,
            allow_edit=config.approval_allow_edit,
            registry=registry,
        )

    def requires_approval(self, call: ToolCall) -> bool:
        name = call.name.lower()
        if any(keyword in name for keyword in self.resource_keywords) and any(
            keyword in name for keyword in self.action_keywords
        ):
            return True
        return self.registry is not None and self.registry.requires_approval(call.name, call.args)

    @property
    def allowed_decisions(self) -> list[DecisionType]:
        if self.allow_edit:
            return ["approve", "reject", "edit"]
        return ["approve", "reject"]

    def build_request(self, call: ToolCall) -> PendingApproval:
        description = (
            f"Tool '{call.name}' will delete or remove a browser/window resource. "
            f"Review the arguments before allowing it to run."
        )
        return PendingApproval(
            tool_call_id=call.id,
            name=call.name,
            args=call.args,
            request=ApprovalRequest(
                action_requests=[ActionRequest(name=call.name, args=call.args, description=description)],
                review_configs=[ReviewConfig(action_name=call.name, allowed_decisions=self.allowed_decisions)],
            ),
        )

    def apply_decision(self, call: ToolCall, decision: Decision) -> ToolCall | ToolResultMessage:
        """Return the call to dispatch, or the tool result standing in for a rejected call."""
        if isinstance(decision, ApproveDecision):
            return call
        if isinstance(decision, EditDecision) and self.allow_edit:
            return call.model_copy(update={"args": decision.edited_action.args})

        message = decision.message if isinstance(decision, RejectDecision) else None
        return rejected_tool_message(call, message)


def rejected_tool_message(call: ToolCall, message: str | None = None) -> ToolResultMessage:
    return ToolResultMessage(
        tool_call_id=call.id,
        name=call.name,
        content=f"{TOOL_REJECTED_MARKER} {message or DEFAULT_REJECT_MESSAGE}",
        is_error=True,
    )


def is_rejection(message: Message) -> bool:
    return (
        isinstance(message, ToolResultMessage) and message.is_error and message.content.startswith(TOOL_REJECTED_MARKER)
    )


def rejection_acknowledgement() -> AssistantMessage:
    return AssistantMessage(content=REJECTION_ACKNOWLEDGEMENT)
