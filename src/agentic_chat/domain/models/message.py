"""Display messages persisted to the SessionStore.

These are the UI-facing records of a conversation, distinct from the model-facing
Turn history owned by ChatSession.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional


class MessageRole:
    """Role of a persisted display message."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class DisplayToolCall:
    """A tool call attached to an assistant display message."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": "function", "function": {"name": self.name, "arguments": self.arguments}}


@dataclass
class DisplayMessage:
    """A message persisted to the session store.

    Attributes:
        role: user, assistant or tool
        content: Text content of the message
        tool_calls: Tool calls made by an assistant message
        tool_call_id: For tool messages, the call this result belongs to
        name: For tool messages, the tool name
        success: For tool messages, whether the call succeeded
        timestamp: When the message was produced
    """

    role: str
    content: str
    tool_calls: Optional[list[DisplayToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    success: Optional[bool] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.tool_calls:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            result["tool_call_id"] = self.tool_call_id
        if self.name:
            result["name"] = self.name
        if self.success is not None:
            result["success"] = self.success
        return result

    @classmethod
    def user(cls, content: str) -> "DisplayMessage":
        """Create a user message."""
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[list[DisplayToolCall]] = None) -> "DisplayMessage":
        """Create an assistant message."""
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls)

    @classmethod
    def tool_result(cls, tool_call_id: str, tool_name: str, content: str, success: bool) -> "DisplayMessage":
        """Create a tool result message."""
        return cls(role=MessageRole.TOOL, content=content, name=tool_name, tool_call_id=tool_call_id, success=success)
