"""AgenticOrchestrator: drives a ChatSession through a full tool-calling exchange.

Each iteration of the loop:
1. Streams one model turn through ChatSession, re-emitting content as outward events
2. Stops when the model requested no tool calls
3. Otherwise hands the whole batch to a ToolScheduler, routes confirmation
   requests to the confirmation handler, and waits for every call to finish
4. Persists the iteration (assistant message + tool results) to the SessionStore
5. Feeds the tool responses back as the next request

The loop has no iteration cap; the caller's abort signal is the only hard stop.
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Optional
from uuid import uuid4

from opentelemetry import trace

from agentic_chat.application.chat.chat_session import ChatSession
from agentic_chat.application.chat.compression import ChatCompressionService, CompressionStatus
from agentic_chat.application.orchestrator.events import (
    CancelledEvent,
    CompressionEvent,
    ContentDeltaEvent,
    ErrorEvent,
    MessageCompleteEvent,
    OrchestratorEvent,
    RetryNoticeEvent,
    ThoughtEvent,
    ToolCallRequestEvent,
    ToolCallResponseEvent,
)
from agentic_chat.application.services.retry import run_abortable
from agentic_chat.domain.contracts import ConfirmationHandler, SessionStore, ToolScheduler, ToolSchedulerFactory
from agentic_chat.domain.exceptions import OperationCancelledError
from agentic_chat.domain.models.content import FunctionCallPart, Part, TextPart, ThoughtPart
from agentic_chat.domain.models.message import DisplayMessage, DisplayToolCall
from agentic_chat.domain.models.stream import ResponseChunk, RetryEvent
from agentic_chat.domain.models.tool_call import ApprovalMode, ToolCall, ToolCallConfirmationDetails, ToolCallRequest, ToolCallStatus, ToolConfirmationOutcome
from agentic_chat.observability import orchestrator_iterations

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

TOOL_RESULT_PREVIEW_CHARS = 500

_THOUGHT_SUBJECT_PATTERN = re.compile(r"\*\*(.*?)\*\*", re.DOTALL)


def parse_thought(text: str) -> tuple[str, str]:
    """Split a thought into its bold ``**subject**`` and the remaining description."""
    match = _THOUGHT_SUBJECT_PATTERN.search(text)
    if match is None:
        return "", text.strip()
    subject = match.group(1).strip()
    description = (text[: match.start()] + text[match.end() :]).strip()
    return subject, description


def _preview(text: str) -> str:
    if len(text) <= TOOL_RESULT_PREVIEW_CHARS:
        return text
    return text[:TOOL_RESULT_PREVIEW_CHARS] + "..."


class _TurnAccumulator:
    """Collects the assistant text and tool calls of the attempt in progress."""

    def __init__(self, prompt_id: str) -> None:
        self._prompt_id = prompt_id
        self.text = ""
        self.tool_requests: list[ToolCallRequest] = []

    def reset(self) -> None:
        self.text = ""
        self.tool_requests = []

    def consume(self, chunk: ResponseChunk) -> list[OrchestratorEvent]:
        events: list[OrchestratorEvent] = []
        for part in chunk.parts:
            if isinstance(part, TextPart) and part.text:
                self.text += part.text
                events.append(ContentDeltaEvent(content=part.text))
            elif isinstance(part, ThoughtPart) and part.text:
                subject, description = parse_thought(part.text)
                events.append(ThoughtEvent(subject=subject, description=description))
            elif isinstance(part, FunctionCallPart) and part.id:
                request = ToolCallRequest(call_id=part.id, name=part.name, args=dict(part.args), prompt_id=self._prompt_id)
                self.tool_requests.append(request)
                events.append(ToolCallRequestEvent(request=request))
        return events


class AgenticOrchestrator:
    """Turns a single user request into a full agentic exchange.

    Usage:
        orchestrator = AgenticOrchestrator(chat_session, scheduler_factory, session_store, confirmation_handler)
        async with aclosing(orchestrator.send_message_stream("Summarize the sheet")) as events:
            async for event in events:
                render(event)
    """

    def __init__(
        self,
        chat_session: ChatSession,
        scheduler_factory: ToolSchedulerFactory,
        session_store: Optional[SessionStore] = None,
        confirmation_handler: Optional[ConfirmationHandler] = None,
        compression_service: Optional[ChatCompressionService] = None,
        approval_mode: ApprovalMode = ApprovalMode.DEFAULT,
        title_generation_enabled: bool = True,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            chat_session: Owner of the model-facing history
            scheduler_factory: Builds a ToolScheduler bound to the update/complete callbacks
            session_store: Display-history persistence
            confirmation_handler: Asked for a decision on every call awaiting approval.
                When absent, tools run without confirmation.
            compression_service: Compresses history before each model turn
            approval_mode: Initial approval policy
            title_generation_enabled: Trigger session title generation after a final answer
        """
        self._chat = chat_session
        self._scheduler_factory = scheduler_factory
        self._store = session_store
        self._confirmation_handler = confirmation_handler
        self._compression = compression_service
        self._approval_mode = approval_mode
        self._title_generation_enabled = title_generation_enabled
        self._active_scheduler: Optional[ToolScheduler] = None
        self._active_abort_signal: Optional[asyncio.Event] = None
        self._background_tasks: set[asyncio.Task] = set()

        if confirmation_handler is None:
            logger.warning("⚠️ No confirmation handler configured: tool calls will execute WITHOUT user confirmation")

    @property
    def approval_mode(self) -> ApprovalMode:
        return self._approval_mode

    @property
    def chat_session(self) -> ChatSession:
        return self._chat

    async def set_approval_mode(self, mode: ApprovalMode) -> None:
        """Change the approval policy.

        When the policy is relaxed while tool calls are pending, the active
        scheduler re-evaluates them and may approve some without asking.
        """
        previous = self._approval_mode
        self._approval_mode = mode
        logger.info(f"Approval mode changed: {previous.value} -> {mode.value}")

        scheduler = self._active_scheduler
        if scheduler is None:
            return
        scheduler.set_approval_mode(mode)
        if mode.permissiveness > previous.permissiveness:
            await scheduler.reevaluate_all_pending_tools(self._active_abort_signal or asyncio.Event())

    async def drain_background_tasks(self) -> None:
        """Wait for fire-and-forget work (title generation) to finish."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # =========================================================================
    # Agentic loop
    # =========================================================================

    async def send_message_stream(
        self,
        user_parts: str | list[Part],
        abort_signal: Optional[asyncio.Event] = None,
        prompt_id: Optional[str] = None,
    ) -> AsyncIterator[OrchestratorEvent]:
        """Run the agentic loop for one user request.

        Args:
            user_parts: User text or parts
            abort_signal: Cooperative cancellation signal
            prompt_id: Identifier propagated to the model and tool requests

        Yields:
            Outward events in production order
        """
        abort_signal = abort_signal or asyncio.Event()
        prompt_id = prompt_id or str(uuid4())
        parts: list[Part] = [TextPart(text=user_parts)] if isinstance(user_parts, str) else list(user_parts)
        session_id = self._store.get_current_session_id() if self._store is not None else None

        user_text = "".join(p.text for p in parts if isinstance(p, TextPart)).strip()
        if user_text:
            await self._persist([DisplayMessage.user(user_text)])

        current_request: list[Part] = parts
        iteration = 0

        while True:
            iteration += 1
            orchestrator_iterations.add(1)
            logger.info(f"🔄 Agentic loop iteration {iteration} (prompt {prompt_id})")

            turn = _TurnAccumulator(prompt_id)
            try:
                if self._compression is not None:
                    info = await run_abortable(self._compression.try_compress(self._chat, prompt_id), abort_signal)
                    if info.compression_status == CompressionStatus.COMPRESSED:
                        yield CompressionEvent(original_token_count=info.original_token_count, new_token_count=info.new_token_count)

                async with aclosing(self._chat.send_stream(current_request, prompt_id=prompt_id, abort_signal=abort_signal)) as stream:
                    async for event in stream:
                        if abort_signal.is_set():
                            break
                        if isinstance(event, RetryEvent):
                            turn.reset()
                            yield RetryNoticeEvent()
                            continue
                        for outward in turn.consume(event.value):
                            yield outward
            except OperationCancelledError:
                logger.info("🛑 Model stream cancelled")
                yield CancelledEvent()
                return
            except Exception as e:
                logger.error(f"❌ Fatal error during model stream: {e}", exc_info=True)
                if turn.text:
                    await self._persist([DisplayMessage.assistant(turn.text)])
                yield ErrorEvent(error=str(e), error_code=getattr(e, "code", None) or "unexpected_error")
                return

            if abort_signal.is_set():
                logger.info("🛑 Model stream aborted by caller")
                yield CancelledEvent()
                return

            if not turn.tool_requests:
                if turn.text:
                    await self._persist([DisplayMessage.assistant(turn.text)])
                self._schedule_title_generation(session_id)
                yield MessageCompleteEvent(content=turn.text, iterations=iteration)
                return

            completed_calls = await self._execute_tool_calls(turn.tool_requests, abort_signal)
            if completed_calls is None:
                logger.info("🛑 Tool execution aborted by caller")
                yield CancelledEvent()
                return

            response_parts: list[Part] = []
            tool_messages: list[DisplayMessage] = []
            for call in completed_calls:
                result = call.result
                if result is None:
                    continue
                response_parts.extend(result.response_parts)
                content = _preview(result.result_display or result.error or "")
                tool_messages.append(DisplayMessage.tool_result(call.call_id, call.request.name, content, result.success))
                yield ToolCallResponseEvent(call_id=call.call_id, tool_name=call.request.name, content=content, success=result.success, session_id=session_id)

            assistant_message = DisplayMessage.assistant(
                turn.text,
                tool_calls=[DisplayToolCall(id=r.call_id, name=r.name, arguments=r.args) for r in turn.tool_requests],
            )
            await self._persist([assistant_message, *tool_messages])

            if not response_parts:
                logger.info("No tool responses to report, ending agentic loop")
                yield MessageCompleteEvent(content=turn.text, iterations=iteration)
                return

            current_request = response_parts

    # =========================================================================
    # Tool execution
    # =========================================================================

    async def _execute_tool_calls(self, requests: list[ToolCallRequest], abort_signal: asyncio.Event) -> Optional[list[ToolCall]]:
        """Schedule a batch and wait until every call is terminal.

        Returns:
            One terminal call per request, in request order, or None if aborted
        """
        loop = asyncio.get_running_loop()
        all_complete: asyncio.Future[list[ToolCall]] = loop.create_future()
        confirmation_tasks: dict[str, asyncio.Task] = {}

        def on_update(calls: list[ToolCall]) -> None:
            for call in calls:
                task = confirmation_tasks.get(call.call_id)
                if call.status == ToolCallStatus.AWAITING_APPROVAL and task is None and call.confirmation_details is not None:
                    confirmation_tasks[call.call_id] = asyncio.create_task(self._confirm(call.confirmation_details))
                elif call.status != ToolCallStatus.AWAITING_APPROVAL and task is not None and not task.done() and task is not asyncio.current_task():
                    task.cancel()

        def on_all_complete(calls: list[ToolCall]) -> None:
            if not all_complete.done():
                all_complete.set_result(list(calls))

        scheduler = self._scheduler_factory(on_update, on_all_complete)
        scheduler.set_approval_mode(self._approval_mode)
        self._active_scheduler = scheduler
        self._active_abort_signal = abort_signal

        with tracer.start_as_current_span("orchestrator.execute_tool_calls") as span:
            span.set_attribute("tools.count", len(requests))
            abort_waiter = asyncio.ensure_future(abort_signal.wait())
            try:
                logger.info(f"🔧 Scheduling {len(requests)} tool call(s): {[r.name for r in requests]}")
                await scheduler.schedule(requests, abort_signal)
                done, _ = await asyncio.wait({all_complete, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)
                if all_complete not in done:
                    return None
                batch = all_complete.result()
            finally:
                abort_waiter.cancel()
                self._active_scheduler = None
                self._active_abort_signal = None
                for task in confirmation_tasks.values():
                    if not task.done():
                        task.cancel()

        by_id = {call.call_id: call for call in batch if call.status.is_terminal}
        ordered: list[ToolCall] = []
        seen: set[str] = set()
        for request in requests:
            if request.call_id in seen:
                continue
            seen.add(request.call_id)
            call = by_id.get(request.call_id)
            if call is None:
                logger.warning(f"Scheduler reported no terminal result for call {request.call_id} ({request.name})")
                continue
            ordered.append(call)
        return ordered

    async def _confirm(self, details: ToolCallConfirmationDetails) -> None:
        if self._confirmation_handler is None:
            logger.warning(f"⚠️ Executing tool '{details.tool_name}' WITHOUT confirmation: no confirmation handler configured")
            outcome = ToolConfirmationOutcome.PROCEED_ONCE
        else:
            try:
                outcome = await self._confirmation_handler(details)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Confirmation handler failed for '{details.tool_name}', cancelling the call: {e}")
                outcome = ToolConfirmationOutcome.CANCEL

        logger.info(f"Confirmation outcome for '{details.tool_name}' ({details.call_id}): {outcome.value}")
        if details.on_confirm is not None:
            await details.on_confirm(outcome)

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _persist(self, messages: list[DisplayMessage]) -> None:
        if self._store is None:
            return
        try:
            for message in messages:
                await self._store.add_history(message)
        except Exception as e:
            logger.exception(f"Failed to persist {len(messages)} message(s) to the session store: {e}")

    def _schedule_title_generation(self, session_id: Optional[str]) -> None:
        if self._store is None or session_id is None or not self._title_generation_enabled:
            return
        task = asyncio.create_task(self._store.trigger_title_generation(session_id, self._chat.model_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
