"""Outward events emitted by the AgenticOrchestrator.

The variants form a closed set discriminated by ``type``. Every event
serializes to a flat dictionary for a UI layer.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from agentic_chat.domain.models.tool_call import ToolCallRequest


class OrchestratorEventType(str, Enum):
    """Types of events emitted by the orchestrator."""

    CONTENT_DELTA = "content_delta"
    THOUGHT = "thought"
    TOOL_CALL_REQUEST = "tool_call_request"
    TOOL_CALL_RESPONSE = "tool_call_response"
    COMPRESSION = "compression"
    RETRY = "retry"
    ERROR = "error"
    MESSAGE_COMPLETE = "message_complete"
    CANCELLED = "cancelled"


@dataclass(kw_only=True)
class OrchestratorEvent:
    """Base event.

    Attributes:
        type: Discriminator
        timestamp: When the event was produced
    """

    type: OrchestratorEventType
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"type": self.type.value, "timestamp": self.timestamp.isoformat()}


@dataclass(kw_only=True)
class ContentDeltaEvent(OrchestratorEvent):
    type: OrchestratorEventType = OrchestratorEventType.CONTENT_DELTA
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "content": self.content, "role": "assistant"}


@dataclass(kw_only=True)
class ThoughtEvent(OrchestratorEvent):
    """A reasoning summary split into a bold subject and its description."""

    type: OrchestratorEventType = OrchestratorEventType.THOUGHT
    subject: str
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "thought_summary": {"subject": self.subject, "description": self.description}}


@dataclass(kw_only=True)
class ToolCallRequestEvent(OrchestratorEvent):
    type: OrchestratorEventType = OrchestratorEventType.TOOL_CALL_REQUEST
    request: ToolCallRequest

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "tool_call": self.request.to_dict()}


@dataclass(kw_only=True)
class ToolCallResponseEvent(OrchestratorEvent):
    type: OrchestratorEventType = OrchestratorEventType.TOOL_CALL_RESPONSE
    call_id: str
    tool_name: str
    content: str
    success: bool
    session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "tool_call_id": self.call_id,
            "tool_name": self.tool_name,
            "content": self.content,
            "tool_success": self.success,
            "session_id": self.session_id,
        }


@dataclass(kw_only=True)
class CompressionEvent(OrchestratorEvent):
    type: OrchestratorEventType = OrchestratorEventType.COMPRESSION
    original_token_count: int
    new_token_count: int

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "compression_info": {"original_token_count": self.original_token_count, "new_token_count": self.new_token_count}}


@dataclass(kw_only=True)
class RetryNoticeEvent(OrchestratorEvent):
    """Partial content emitted since the last completed event must be discarded."""

    type: OrchestratorEventType = OrchestratorEventType.RETRY


@dataclass(kw_only=True)
class ErrorEvent(OrchestratorEvent):
    type: OrchestratorEventType = OrchestratorEventType.ERROR
    error: str
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "error": self.error, "error_code": self.error_code}


@dataclass(kw_only=True)
class MessageCompleteEvent(OrchestratorEvent):
    type: OrchestratorEventType = OrchestratorEventType.MESSAGE_COMPLETE
    content: str
    iterations: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "content": self.content, "role": "assistant", "iterations": self.iterations}


@dataclass(kw_only=True)
class CancelledEvent(OrchestratorEvent):
    type: OrchestratorEventType = OrchestratorEventType.CANCELLED
    reason: str = "Request cancelled"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "reason": self.reason}
