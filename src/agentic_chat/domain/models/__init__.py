"""Domain models for agentic-chat."""

from agentic_chat.domain.models.content import FunctionCallPart, FunctionResponsePart, Part, Role, TextPart, ThoughtPart, Turn
from agentic_chat.domain.models.message import DisplayMessage, DisplayToolCall, MessageRole
from agentic_chat.domain.models.stream import (
    ChunkEvent,
    FinishReason,
    GenerateRequest,
    GenerationConfig,
    ResponseChunk,
    RetryEvent,
    StreamEvent,
    StreamEventType,
    ToolDeclaration,
    UsageMetadata,
)
from agentic_chat.domain.models.tool_call import (
    ApprovalMode,
    ToolCall,
    ToolCallConfirmationDetails,
    ToolCallRequest,
    ToolCallResult,
    ToolCallStatus,
    ToolConfirmationOutcome,
)

__all__ = [
    # Content
    "Role",
    "Part",
    "TextPart",
    "ThoughtPart",
    "FunctionCallPart",
    "FunctionResponsePart",
    "Turn",
    # Stream
    "FinishReason",
    "UsageMetadata",
    "ResponseChunk",
    "ToolDeclaration",
    "GenerationConfig",
    "GenerateRequest",
    "StreamEventType",
    "ChunkEvent",
    "RetryEvent",
    "StreamEvent",
    # Tool calls
    "ToolCallStatus",
    "ToolConfirmationOutcome",
    "ApprovalMode",
    "ToolCallConfirmationDetails",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolCall",
    # Display messages
    "MessageRole",
    "DisplayToolCall",
    "DisplayMessage",
]
