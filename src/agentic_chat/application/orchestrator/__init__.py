"""Agentic orchestration: model turns, tool execution and confirmations."""

from agentic_chat.application.orchestrator.confirmation import ConfirmationChannel, ConfirmationRequest
from agentic_chat.application.orchestrator.events import (
    CancelledEvent,
    CompressionEvent,
    ContentDeltaEvent,
    ErrorEvent,
    MessageCompleteEvent,
    OrchestratorEvent,
    OrchestratorEventType,
    RetryNoticeEvent,
    ThoughtEvent,
    ToolCallRequestEvent,
    ToolCallResponseEvent,
)
from agentic_chat.application.orchestrator.orchestrator import AgenticOrchestrator

__all__ = [
    "AgenticOrchestrator",
    "ConfirmationChannel",
    "ConfirmationRequest",
    "OrchestratorEventType",
    "OrchestratorEvent",
    "ContentDeltaEvent",
    "ThoughtEvent",
    "ToolCallRequestEvent",
    "ToolCallResponseEvent",
    "CompressionEvent",
    "RetryNoticeEvent",
    "ErrorEvent",
    "MessageCompleteEvent",
    "CancelledEvent",
]
