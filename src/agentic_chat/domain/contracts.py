"""Contracts for the collaborators the chat engine depends on.

Concrete implementations live in the infrastructure layer; tests substitute
mocks that satisfy the same shape.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from agentic_chat.domain.models.message import DisplayMessage
from agentic_chat.domain.models.stream import GenerateRequest, ResponseChunk
from agentic_chat.domain.models.tool_call import ApprovalMode, ToolCall, ToolCallConfirmationDetails, ToolCallRequest, ToolConfirmationOutcome


class Transport(Protocol):
    """Protocol for the model transport."""

    async def generate(self, request: GenerateRequest) -> AsyncIterator[ResponseChunk]:
        """Open a streamed response. Raises TransportError when the stream cannot be opened."""
        ...

    async def generate_content(self, request: GenerateRequest) -> ResponseChunk:
        """Produce a complete, non-streamed response."""
        ...


class ToolScheduler(Protocol):
    """Protocol for the tool scheduler.

    The scheduler owns the tool-call state machine. It reports every status change
    through the update callback and fires the completion callback exactly once per
    batch, after every call has reached a terminal state.
    """

    async def schedule(self, requests: list[ToolCallRequest], abort_signal: asyncio.Event) -> None:
        """Accept a batch of requests and start driving them."""
        ...

    async def reevaluate_all_pending_tools(self, abort_signal: asyncio.Event) -> None:
        """Re-check calls awaiting approval against the current approval mode."""
        ...

    def set_approval_mode(self, mode: ApprovalMode) -> None:
        """Change the approval policy applied to calls."""
        ...


class SessionStore(Protocol):
    """Protocol for the display-history store."""

    async def add_history(self, message: DisplayMessage) -> None:
        """Append a message to the current session."""
        ...

    def get_current_session_id(self) -> str | None:
        """Return the active session id, if any."""
        ...

    async def trigger_title_generation(self, session_id: str, model_info: str) -> None:
        """Refresh the session title from its conversation."""
        ...


ToolCallsUpdateHandler = Callable[[list[ToolCall]], None]
AllToolCallsCompleteHandler = Callable[[list[ToolCall]], None]
ToolSchedulerFactory = Callable[[ToolCallsUpdateHandler, AllToolCallsCompleteHandler], ToolScheduler]
ConfirmationHandler = Callable[[ToolCallConfirmationDetails], Awaitable[ToolConfirmationOutcome]]
MutatorLookup = Callable[[str], bool]
