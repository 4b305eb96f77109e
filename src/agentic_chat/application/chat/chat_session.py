"""ChatSession: the single authoritative owner of a conversation's history.

ChatSession streams one request at a time to the model transport and guarantees
that callers never observe a torn history:

- Calls to ``send_stream`` are serialized on the session
- The user turn is appended once, before any attempt
- Invalid responses (no finish reason, no text) are retried with linear backoff,
  and each retry is announced with a ``RetryEvent`` before any new content
- If the call ends without a valid model turn (error, exhausted retries,
  cancellation, or the consumer closing the stream early) the history is
  truncated back to its length before the call
- A second state-mutating tool call in the same response truncates the stream,
  so the model observes the first mutation before committing another
"""

import asyncio
import copy
import logging
import secrets
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from typing import Optional

from opentelemetry import trace

from agentic_chat.application.chat.history import consolidate_text_parts, extract_curated_history, is_valid_content, remove_unpaired_tool_calls, strip_thought_signatures, thought_to_text
from agentic_chat.application.services.retry import PersistentQuotaHandler, RetryOptions, retry_with_backoff, run_abortable
from agentic_chat.domain.contracts import MutatorLookup, Transport
from agentic_chat.domain.exceptions import InvalidStreamError, InvalidStreamErrorType, OperationCancelledError
from agentic_chat.domain.models.content import FunctionCallPart, Part, Role, TextPart, ThoughtPart, Turn
from agentic_chat.domain.models.stream import ChunkEvent, FinishReason, GenerateRequest, GenerationConfig, ResponseChunk, RetryEvent, StreamEvent, ToolDeclaration
from agentic_chat.observability import chat_history_rollbacks, chat_invalid_stream_retries, chat_mutator_truncations, chat_stream_attempts

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class InvalidContentRetryOptions:
    """Retry budget for invalid streamed responses.

    Attributes:
        max_attempts: Total attempts (1 initial + retries)
        initial_delay_ms: Base delay; attempt N waits ``initial_delay_ms * N``
    """

    max_attempts: int = 3
    initial_delay_ms: int = 500


async def _wait(delay_ms: int) -> None:
    await asyncio.sleep(delay_ms / 1000)


async def _next_chunk(stream: AsyncIterator[ResponseChunk]) -> ResponseChunk:
    return await anext(stream)


def synthesize_call_id(name: str) -> str:
    """Build a unique function call id: ``{name}-{epoch ms}-{random hex}``."""
    return f"{name}-{int(time.time() * 1000)}-{secrets.token_hex(6)}"


def _to_parts(message: str | Part | list[Part]) -> list[Part]:
    if isinstance(message, str):
        return [TextPart(text=message)]
    if isinstance(message, Part):
        return [message]
    return list(message)


class ChatSession:
    """Streams a conversation with a generative model.

    Usage:
        session = ChatSession(transport, model_id="llama3.2:3b")
        async with aclosing(session.send_stream("Hello")) as events:
            async for event in events:
                ...
    """

    def __init__(
        self,
        transport: Transport,
        model_id: str,
        generation_config: Optional[GenerationConfig] = None,
        history: Optional[list[Turn]] = None,
        is_mutator: Optional[MutatorLookup] = None,
        retry_options: Optional[InvalidContentRetryOptions] = None,
        transport_retry_options: Optional[RetryOptions] = None,
        on_persistent_quota: Optional[PersistentQuotaHandler] = None,
    ) -> None:
        """Initialize the session.

        Args:
            transport: Model transport used to open response streams
            model_id: Model to address
            generation_config: Sampling parameters, system instruction and tools
            history: Initial history (copied)
            is_mutator: Lookup telling whether a tool (by name) mutates state
            retry_options: Budget for invalid-response retries
            transport_retry_options: Backoff applied when opening a stream fails
            on_persistent_quota: Fallback hook for repeated quota errors
        """
        self._transport = transport
        self._model_id = model_id
        self._generation_config = generation_config or GenerationConfig()
        self._history: list[Turn] = copy.deepcopy(history) if history else []
        self._is_mutator = is_mutator
        self._retry_options = retry_options or InvalidContentRetryOptions()
        self._transport_retry_options = transport_retry_options or RetryOptions()
        self._on_persistent_quota = on_persistent_quota
        self._send_lock = asyncio.Lock()
        self.last_prompt_token_count = 0

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def generation_config(self) -> GenerationConfig:
        return self._generation_config

    @property
    def transport(self) -> Transport:
        return self._transport

    def set_model(self, model_id: str) -> None:
        """Switch the model used by subsequent requests."""
        logger.info(f"🔁 Switching chat model: {self._model_id} -> {model_id}")
        self._model_id = model_id

    def set_system_instruction(self, instruction: str | None) -> None:
        self._generation_config.system_instruction = instruction

    def set_tools(self, tools: list[ToolDeclaration]) -> None:
        self._generation_config.tools = list(tools)

    # =========================================================================
    # History accessors
    # =========================================================================

    def get_history(self, curated: bool = False) -> list[Turn]:
        """Return a deep-copied snapshot of the history.

        Args:
            curated: When True, only valid runs of model turns are kept, making
                the result safe to re-submit to the model. Unpaired tool calls
                are stripped in both modes.
        """
        turns = extract_curated_history(self._history) if curated else self._history
        return copy.deepcopy(remove_unpaired_tool_calls(turns))

    def clear_history(self) -> None:
        self._history = []

    def add_history(self, turn: Turn) -> None:
        """Append a turn, typically when restoring a saved session."""
        self._history.append(copy.deepcopy(turn))

    def set_history(self, history: list[Turn]) -> None:
        """Replace the whole history, typically on session switch."""
        self._history = copy.deepcopy(history)

    def strip_thoughts_from_history(self) -> None:
        """Remove every thought signature from the history. Irreversible."""
        self._history = [strip_thought_signatures(turn) for turn in self._history]

    # =========================================================================
    # Streaming
    # =========================================================================

    async def send_stream(
        self,
        message: str | Part | list[Part],
        prompt_id: str = "",
        abort_signal: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Send a message and stream the response.

        Args:
            message: User text or parts (e.g. function responses)
            prompt_id: Identifier of the prompt, propagated to the transport
            abort_signal: Cooperative cancellation signal

        Yields:
            ChunkEvent for each response chunk; RetryEvent before each retry attempt

        Raises:
            InvalidStreamError: When every attempt produced an invalid response
            TransportError: When the transport fails beyond its backoff budget
            OperationCancelledError: When the abort signal fires
        """
        async with self._send_lock:
            history_length_before_request = len(self._history)
            self._history.append(Turn(role=Role.USER, parts=_to_parts(message)))
            request_contents = self.get_history(curated=True)
            completed = False

            try:
                max_attempts = self._retry_options.max_attempts
                last_error: Exception | None = None

                for attempt in range(max_attempts):
                    if abort_signal is not None and abort_signal.is_set():
                        raise OperationCancelledError("Send aborted before the request was made")
                    if attempt > 0:
                        yield RetryEvent()

                    try:
                        async with aclosing(self._make_api_call_and_process_stream(request_contents, prompt_id, abort_signal)) as chunks:
                            async for chunk in chunks:
                                yield ChunkEvent(value=chunk)
                        last_error = None
                        break
                    except InvalidStreamError as e:
                        last_error = e
                        if attempt < max_attempts - 1:
                            delay_ms = self._retry_options.initial_delay_ms * (attempt + 1)
                            logger.info(f"🔄 Invalid stream ({e.type.value}) on attempt {attempt + 1}/{max_attempts}, retrying in {delay_ms}ms")
                            chat_invalid_stream_retries.add(1, {"error_type": e.type.value, "model": self._model_id})
                            await run_abortable(_wait(delay_ms), abort_signal)
                            continue
                        break

                if last_error is not None:
                    logger.error(f"❌ Model stream failed after {max_attempts} attempt(s): {last_error}")
                    raise last_error

                completed = True
            finally:
                if not completed:
                    logger.warning(f"⚠️ Stream ended before completion, rolling back history from {len(self._history)} to {history_length_before_request} turn(s)")
                    del self._history[history_length_before_request:]
                    chat_history_rollbacks.add(1, {"model": self._model_id})

    async def _open_stream(self, request: GenerateRequest, abort_signal: Optional[asyncio.Event]) -> AsyncIterator[ResponseChunk]:
        with tracer.start_as_current_span("chat_session.open_stream") as span:
            span.set_attribute("llm.model", request.model_id)
            span.set_attribute("llm.turn_count", len(request.contents))
            return await retry_with_backoff(
                lambda: self._transport.generate(request),
                options=self._transport_retry_options,
                on_persistent_quota=self._on_persistent_quota,
                abort_signal=abort_signal,
            )

    async def _make_api_call_and_process_stream(
        self,
        request_contents: list[Turn],
        prompt_id: str,
        abort_signal: Optional[asyncio.Event],
    ) -> AsyncIterator[ResponseChunk]:
        request = GenerateRequest(model_id=self._model_id, contents=request_contents, config=self._generation_config, prompt_id=prompt_id)
        chat_stream_attempts.add(1, {"model": self._model_id})
        stream = await self._open_stream(request, abort_signal)

        model_parts: list[Part] = []
        has_tool_call = False
        has_finish_reason = False
        finish_reasons: list[FinishReason] = []
        chunk_count = 0

        async with aclosing(self._stop_before_second_mutator(stream, abort_signal)) as chunks:
            async for chunk in chunks:
                if abort_signal is not None and abort_signal.is_set():
                    raise OperationCancelledError("Stream aborted by caller")

                chunk_count += 1
                if chunk.finish_reason is not None:
                    has_finish_reason = True
                    finish_reasons.append(chunk.finish_reason)

                if chunk.parts and is_valid_content(Turn(role=Role.MODEL, parts=chunk.parts)):
                    for part in chunk.parts:
                        if isinstance(part, FunctionCallPart):
                            has_tool_call = True
                            part.id = synthesize_call_id(part.name)
                    model_parts.extend(chunk.parts)

                if chunk.usage_metadata is not None and chunk.usage_metadata.prompt_token_count:
                    self.last_prompt_token_count = chunk.usage_metadata.prompt_token_count

                yield chunk

        consolidated = consolidate_text_parts(model_parts)
        response_text = "".join(p.text for p in consolidated if isinstance(p, (TextPart, ThoughtPart))).strip()
        has_thought_signature = any(p.thought_signature for p in consolidated)

        if not has_tool_call and (not has_finish_reason or (not response_text and not has_thought_signature)):
            debug_info = (
                f"Received {chunk_count} chunk(s), "
                f"response text: {response_text[:100]!r}, "
                f"finish reasons: {[r.value for r in finish_reasons] or 'none'}, "
                f"has thought signature: {has_thought_signature}"
            )
            if not has_finish_reason:
                raise InvalidStreamError(f"Model stream ended without a finish reason. {debug_info}", InvalidStreamErrorType.NO_FINISH_REASON)
            raise InvalidStreamError(f"Model stream ended with empty response text. {debug_info}", InvalidStreamErrorType.NO_RESPONSE_TEXT)

        history_parts: list[Part] = []
        for part in consolidated:
            if isinstance(part, ThoughtPart):
                if part.text:
                    history_parts.append(thought_to_text(part))
                elif part.thought_signature:
                    history_parts.append(Part(thought_signature=part.thought_signature))
            else:
                history_parts.append(copy.deepcopy(part))

        self._history.append(Turn(role=Role.MODEL, parts=history_parts))
        logger.debug(f"🏁 Model turn recorded: {len(history_parts)} part(s), tool calls: {has_tool_call}")

    def _is_mutator_call(self, part: FunctionCallPart) -> bool:
        return self._is_mutator is not None and self._is_mutator(part.name)

    async def _stop_before_second_mutator(self, stream: AsyncIterator[ResponseChunk], abort_signal: Optional[asyncio.Event]) -> AsyncIterator[ResponseChunk]:
        """Pass chunks through until a second mutating call appears.

        The chunk holding the second mutating call is cut just before it and
        marked as finished; upstream consumption stops there. Each upstream
        read is raced against the abort signal, so a stalled transport does
        not delay cancellation.
        """
        found_mutator_call = False
        try:
            while True:
                try:
                    chunk = await run_abortable(_next_chunk(stream), abort_signal)
                except StopAsyncIteration:
                    break
                for index, part in enumerate(chunk.parts):
                    if not isinstance(part, FunctionCallPart) or not self._is_mutator_call(part):
                        continue
                    if found_mutator_call:
                        logger.warning(f"✂️ Truncating stream before second mutating call '{part.name}'")
                        chat_mutator_truncations.add(1, {"tool_name": part.name})
                        yield ResponseChunk(parts=chunk.parts[:index], finish_reason=FinishReason.STOP, usage_metadata=chunk.usage_metadata)
                        return
                    found_mutator_call = True
                yield chunk
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
