"""In-process tool scheduler.

Owns the tool-call state machine for one batch at a time::

    scheduled -> awaiting_approval -> (approved) executing -> success | error
                                   -> (denied)   cancelled
    scheduled -> executing (no approval needed)
    scheduled | awaiting_approval | executing -> cancelled (abort)

Approved calls of a batch run concurrently. Every status change is reported
through ``on_update``; ``on_all_complete`` fires exactly once per batch, after
every call is terminal.
"""

import asyncio
import logging
import time
from functools import partial
from typing import Optional

from opentelemetry import trace

from agentic_chat.domain.contracts import AllToolCallsCompleteHandler, ToolCallsUpdateHandler, ToolSchedulerFactory
from agentic_chat.domain.exceptions import ToolExecutionError
from agentic_chat.domain.models.tool_call import ApprovalMode, ToolCall, ToolCallConfirmationDetails, ToolCallRequest, ToolCallResult, ToolCallStatus, ToolConfirmationOutcome
from agentic_chat.infrastructure.tool_registry import Tool, ToolKind, ToolRegistry
from agentic_chat.observability import tool_execution_count, tool_execution_errors, tool_execution_time

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class InProcessToolScheduler:
    """Runs tool calls from a ToolRegistry inside the current event loop."""

    def __init__(
        self,
        registry: ToolRegistry,
        on_update: ToolCallsUpdateHandler,
        on_all_complete: AllToolCallsCompleteHandler,
        approval_mode: ApprovalMode = ApprovalMode.DEFAULT,
    ) -> None:
        self._registry = registry
        self._on_update = on_update
        self._on_all_complete = on_all_complete
        self._approval_mode = approval_mode
        self._calls: dict[str, ToolCall] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._always_allowed: set[str] = set()
        self._completion_reported = False
        self._abort_watcher: Optional[asyncio.Task] = None

    @classmethod
    def factory(cls, registry: ToolRegistry, approval_mode: ApprovalMode = ApprovalMode.DEFAULT) -> ToolSchedulerFactory:
        """Build a factory suitable for AgenticOrchestrator."""

        def create(on_update: ToolCallsUpdateHandler, on_all_complete: AllToolCallsCompleteHandler) -> "InProcessToolScheduler":
            return cls(registry, on_update, on_all_complete, approval_mode)

        return create

    @property
    def approval_mode(self) -> ApprovalMode:
        return self._approval_mode

    @property
    def calls(self) -> list[ToolCall]:
        return list(self._calls.values())

    def set_approval_mode(self, mode: ApprovalMode) -> None:
        self._approval_mode = mode

    def _requires_approval(self, tool: Tool) -> bool:
        if not tool.requires_confirmation or tool.name in self._always_allowed:
            return False
        if self._approval_mode == ApprovalMode.YOLO:
            return False
        if self._approval_mode == ApprovalMode.AUTO_EDIT and tool.kind == ToolKind.EDIT:
            return False
        return True

    async def schedule(self, requests: list[ToolCallRequest], abort_signal: asyncio.Event) -> None:
        """Accept a batch and start every call that needs no approval.

        Raises:
            RuntimeError: If the previous batch is still running
        """
        if any(not call.status.is_terminal for call in self._calls.values()):
            raise RuntimeError("Cannot schedule a new batch while tool calls are still running")

        self._calls = {request.call_id: ToolCall(request=request) for request in requests}
        self._tasks = {}
        self._completion_reported = False
        self._notify()

        if abort_signal.is_set():
            self._cancel_all("Tool call was cancelled before execution.")
            return

        self._abort_watcher = asyncio.create_task(self._watch_abort(abort_signal))

        for call in self._calls.values():
            tool = self._registry.get(call.request.name)
            if tool is None:
                logger.error(f"Tool '{call.request.name}' not found in registry")
                self._set_result(call, ToolCallResult.failed(call.request, f"Tool '{call.request.name}' not found in registry"))
            elif self._requires_approval(tool):
                call.status = ToolCallStatus.AWAITING_APPROVAL
                call.confirmation_details = ToolCallConfirmationDetails(
                    call_id=call.call_id,
                    tool_name=tool.name,
                    title=f"Confirm {tool.kind.value}: {tool.name}",
                    args=dict(call.request.args),
                    on_confirm=partial(self._handle_confirmation, call.call_id),
                )
                logger.info(f"⏸️ Tool '{tool.name}' ({call.call_id}) awaiting approval")
            else:
                self._start(call, tool)

        self._notify()
        self._check_all_complete()

    async def reevaluate_all_pending_tools(self, abort_signal: asyncio.Event) -> None:
        """Start awaiting calls that the current approval mode no longer gates."""
        if abort_signal.is_set():
            return
        changed = False
        for call in self._calls.values():
            if call.status != ToolCallStatus.AWAITING_APPROVAL:
                continue
            tool = self._registry.get(call.request.name)
            if tool is not None and not self._requires_approval(tool):
                logger.info(f"✅ Auto-approving '{tool.name}' ({call.call_id}) under approval mode {self._approval_mode.value}")
                self._start(call, tool)
                changed = True
        if changed:
            self._notify()

    async def _handle_confirmation(self, call_id: str, outcome: ToolConfirmationOutcome) -> None:
        call = self._calls.get(call_id)
        if call is None or call.status != ToolCallStatus.AWAITING_APPROVAL:
            logger.debug(f"Ignoring confirmation for {call_id}: call is not awaiting approval")
            return

        if not outcome.approved:
            logger.info(f"🚫 Tool '{call.request.name}' ({call_id}) denied")
            self._set_result(call, ToolCallResult.cancelled(call.request))
            self._notify()
            self._check_all_complete()
            return

        if outcome == ToolConfirmationOutcome.PROCEED_ALWAYS:
            self._always_allowed.add(call.request.name)

        tool = self._registry.get(call.request.name)
        if tool is None:
            self._set_result(call, ToolCallResult.failed(call.request, f"Tool '{call.request.name}' not found in registry"))
            self._notify()
            self._check_all_complete()
            return

        self._start(call, tool)
        self._notify()

    def _start(self, call: ToolCall, tool: Tool) -> None:
        call.status = ToolCallStatus.EXECUTING
        task = asyncio.create_task(self._execute(call, tool))
        self._tasks[call.call_id] = task

    async def _execute(self, call: ToolCall, tool: Tool) -> None:
        start_time = time.time()
        logger.info(f"🔧 Executing tool: {tool.name}({call.request.args})")

        with tracer.start_as_current_span("tool_scheduler.execute") as span:
            span.set_attribute("tool.name", tool.name)
            span.set_attribute("tool.call_id", call.call_id)
            try:
                output = await tool.invoke(call.request.args)
                result = ToolCallResult.succeeded(call.request, output)
            except ToolExecutionError as e:
                logger.warning(f"🔧 Tool execution failed: {tool.name} - {e.message}")
                result = ToolCallResult.failed(call.request, e.message)
            except asyncio.CancelledError:
                logger.info(f"Tool '{tool.name}' ({call.call_id}) cancelled during execution")
                raise
            except Exception as e:
                logger.exception(f"🔧 Unexpected error executing tool {tool.name}: {e}")
                result = ToolCallResult.failed(call.request, f"{type(e).__name__}: {e}")
            span.set_attribute("tool.status", result.status.value)

        execution_time_ms = (time.time() - start_time) * 1000
        call.duration_ms = execution_time_ms
        tool_execution_count.add(1, {"tool_name": tool.name, "status": result.status.value})
        tool_execution_time.record(execution_time_ms, {"tool_name": tool.name})
        if not result.success:
            tool_execution_errors.add(1, {"tool_name": tool.name})

        self._set_result(call, result)
        self._notify()
        self._check_all_complete()

    async def _watch_abort(self, abort_signal: asyncio.Event) -> None:
        await abort_signal.wait()
        self._cancel_all("Tool call was cancelled by the user.")

    def _cancel_all(self, reason: str) -> None:
        cancelled = [call for call in self._calls.values() if not call.status.is_terminal]
        for call in cancelled:
            self._set_result(call, ToolCallResult.cancelled(call.request, reason))
            task = self._tasks.get(call.call_id)
            if task is not None and not task.done():
                task.cancel()
        if cancelled:
            logger.info(f"🛑 Cancelled {len(cancelled)} tool call(s)")
            self._notify()
        self._check_all_complete()

    def _set_result(self, call: ToolCall, result: ToolCallResult) -> None:
        if call.status.is_terminal:
            return
        call.status = result.status
        call.result = result

    def _notify(self) -> None:
        self._on_update(self.calls)

    def _check_all_complete(self) -> None:
        if self._completion_reported or not all(call.status.is_terminal for call in self._calls.values()):
            return
        self._completion_reported = True
        if self._abort_watcher is not None and self._abort_watcher is not asyncio.current_task() and not self._abort_watcher.done():
            self._abort_watcher.cancel()
        logger.info(f"🏁 All {len(self._calls)} tool call(s) complete")
        self._on_all_complete(self.calls)
