"""Request/response channel for human tool-call confirmation.

The orchestrator side asks for a decision with ``request()`` and awaits it. The
UI side consumes ``requests()`` (or polls ``pending()``) and answers with
``respond(correlation_id, outcome)``. Tearing down a session with ``close()``
abandons its open requests, which resolve as ``CANCEL``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

from agentic_chat.domain.contracts import ConfirmationHandler
from agentic_chat.domain.models.tool_call import ToolCallConfirmationDetails, ToolConfirmationOutcome

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationRequest:
    """A confirmation awaiting a human decision."""

    session_id: Optional[str]
    details: ToolCallConfirmationDetails
    correlation_id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {"correlation_id": self.correlation_id, "session_id": self.session_id, "details": self.details.to_dict()}


class ConfirmationChannel:
    """Correlates confirmation requests with their responses."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ConfirmationRequest] = asyncio.Queue()
        self._pending: dict[str, tuple[ConfirmationRequest, asyncio.Future[ToolConfirmationOutcome]]] = {}
        self._closed_sessions: set[Optional[str]] = set()

    async def request(self, session_id: Optional[str], details: ToolCallConfirmationDetails) -> ToolConfirmationOutcome:
        """Publish a confirmation request and wait for its outcome."""
        if session_id in self._closed_sessions:
            logger.info(f"Confirmation for '{details.tool_name}' refused: session {session_id} is closed")
            return ToolConfirmationOutcome.CANCEL

        request = ConfirmationRequest(session_id=session_id, details=details)
        future: asyncio.Future[ToolConfirmationOutcome] = asyncio.get_running_loop().create_future()
        self._pending[request.correlation_id] = (request, future)
        await self._queue.put(request)
        logger.info(f"⏳ Awaiting confirmation {request.correlation_id} for tool '{details.tool_name}'")

        try:
            return await future
        finally:
            self._pending.pop(request.correlation_id, None)

    def respond(self, correlation_id: str, outcome: ToolConfirmationOutcome) -> bool:
        """Resolve a pending request. Returns False when the id is unknown or already answered."""
        entry = self._pending.get(correlation_id)
        if entry is None or entry[1].done():
            logger.warning(f"No pending confirmation for correlation id {correlation_id}")
            return False
        entry[1].set_result(outcome)
        logger.info(f"Confirmation {correlation_id} answered: {outcome.value}")
        return True

    def pending(self, session_id: Optional[str] = None) -> list[ConfirmationRequest]:
        return [request for request, _ in self._pending.values() if session_id is None or request.session_id == session_id]

    async def requests(self) -> AsyncIterator[ConfirmationRequest]:
        """Yield requests as they are published, skipping ones already resolved."""
        while True:
            request = await self._queue.get()
            if request.correlation_id in self._pending:
                yield request

    def close(self, session_id: Optional[str] = None) -> int:
        """Abandon open requests (all, or only those of one session).

        Returns:
            Number of requests cancelled
        """
        if session_id is not None:
            self._closed_sessions.add(session_id)
        cancelled = 0
        for request, future in list(self._pending.values()):
            if session_id is not None and request.session_id != session_id:
                continue
            if not future.done():
                future.set_result(ToolConfirmationOutcome.CANCEL)
                cancelled += 1
        if cancelled:
            logger.info(f"Abandoned {cancelled} pending confirmation(s)")
        return cancelled

    def reopen(self, session_id: str) -> None:
        self._closed_sessions.discard(session_id)

    def as_handler(self, session_id: Optional[str]) -> ConfirmationHandler:
        """Adapt the channel to the confirmation-handler callable the orchestrator accepts."""

        async def handler(details: ToolCallConfirmationDetails) -> ToolConfirmationOutcome:
            return await self.request(session_id, details)

        return handler
