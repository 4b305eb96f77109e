"""Tool call model shared by the orchestrator and the tool scheduler."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from agentic_chat.domain.models.content import FunctionResponsePart, Part


class ToolCallStatus(str, Enum):
    """Lifecycle states of a scheduled tool call."""

    SCHEDULED = "scheduled"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.SUCCESS, ToolCallStatus.ERROR, ToolCallStatus.CANCELLED)


class ToolConfirmationOutcome(str, Enum):
    """Answer given to a confirmation request."""

    PROCEED_ONCE = "proceed_once"
    PROCEED_ALWAYS = "proceed_always"
    CANCEL = "cancel"

    @property
    def approved(self) -> bool:
        return self is not ToolConfirmationOutcome.CANCEL


class ApprovalMode(str, Enum):
    """Policy controlling which tool calls need human confirmation.

    Ordered from most to least restrictive.
    """

    DEFAULT = "default"
    AUTO_EDIT = "auto_edit"
    YOLO = "yolo"

    @property
    def permissiveness(self) -> int:
        return list(ApprovalMode).index(self)


@dataclass
class ToolCallConfirmationDetails:
    """What a human needs to know to approve or deny a tool call.

    Attributes:
        call_id: The call awaiting approval
        tool_name: Name of the tool
        title: Short human-readable title
        args: Arguments the tool would be called with
        on_confirm: Forwards the outcome into the scheduler
    """

    call_id: str
    tool_name: str
    title: str
    args: dict[str, Any] = field(default_factory=dict)
    on_confirm: Callable[[ToolConfirmationOutcome], Awaitable[None]] | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"call_id": self.call_id, "tool_name": self.tool_name, "title": self.title, "args": self.args}


@dataclass
class ToolCallRequest:
    """A tool invocation requested by the model.

    Attributes:
        call_id: Identifier synthesized when the call was observed
        name: Tool name
        args: Tool arguments
        is_client_initiated: True when the user, not the model, requested it
        prompt_id: Prompt that produced the call
    """

    call_id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    is_client_initiated: bool = False
    prompt_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "name": self.name,
            "args": self.args,
            "is_client_initiated": self.is_client_initiated,
            "prompt_id": self.prompt_id,
        }


@dataclass
class ToolCallResult:
    """Terminal outcome of a tool call.

    Attributes:
        call_id: The call this result belongs to
        status: success, error or cancelled
        response_parts: Parts folded back into the next model request
        result_display: Human-readable preview of the result
        error: Error message when status is error
    """

    call_id: str
    status: ToolCallStatus
    response_parts: list[Part] = field(default_factory=list)
    result_display: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == ToolCallStatus.SUCCESS

    @classmethod
    def succeeded(cls, request: ToolCallRequest, output: Any) -> "ToolCallResult":
        response = output if isinstance(output, dict) else {"output": output}
        return cls(
            call_id=request.call_id,
            status=ToolCallStatus.SUCCESS,
            response_parts=[FunctionResponsePart(id=request.call_id, name=request.name, response=response)],
            result_display=str(output),
        )

    @classmethod
    def failed(cls, request: ToolCallRequest, message: str) -> "ToolCallResult":
        return cls(
            call_id=request.call_id,
            status=ToolCallStatus.ERROR,
            response_parts=[FunctionResponsePart(id=request.call_id, name=request.name, response={"error": message})],
            result_display=message,
            error=message,
        )

    @classmethod
    def cancelled(cls, request: ToolCallRequest, reason: str = "Tool call was cancelled by the user.") -> "ToolCallResult":
        return cls(
            call_id=request.call_id,
            status=ToolCallStatus.CANCELLED,
            response_parts=[FunctionResponsePart(id=request.call_id, name=request.name, response={"error": reason})],
            result_display=reason,
            error=reason,
        )


@dataclass
class ToolCall:
    """A tool call tracked by a scheduler.

    Attributes:
        request: The originating request
        status: Current lifecycle state
        confirmation_details: Set while awaiting approval
        result: Set once terminal
    """

    request: ToolCallRequest
    status: ToolCallStatus = ToolCallStatus.SCHEDULED
    confirmation_details: ToolCallConfirmationDetails | None = None
    result: ToolCallResult | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_ms: float | None = None

    @property
    def call_id(self) -> str:
        return self.request.call_id
