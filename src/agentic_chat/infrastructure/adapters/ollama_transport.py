"""Ollama transport implementation.

This module provides the Ollama implementation of the Transport contract,
suitable for local development and self-hosted deployments.

Features:
- Streaming chat over ``/api/chat`` (NDJSON), mapped onto ResponseChunks
- Thinking output mapped onto thought parts
- Tool/function calling support
- Non-streaming completion for summaries and titles
- Unified TransportError mapping (retryable vs. fatal)
- OpenTelemetry tracing and metrics
"""

import json
import logging
import time
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Optional

import httpx
from opentelemetry import trace

from agentic_chat.domain.exceptions import TransportError
from agentic_chat.domain.models.content import FunctionCallPart, Part, Role, TextPart, ThoughtPart
from agentic_chat.domain.models.stream import FinishReason, GenerateRequest, ResponseChunk, UsageMetadata
from agentic_chat.observability import llm_request_count, llm_request_time

if TYPE_CHECKING:
    from neuroglia.hosting.abstractions import ApplicationBuilderBase

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class OllamaTransport:
    """Transport backed by a local or remote Ollama instance.

    Configuration:
        - base_url: Ollama API URL (default: http://localhost:11434)
        - temperature, top_p: Default sampling parameters, used when a request leaves them unset
        - num_ctx: Context window size (default: 8192)

    Usage:
        transport = OllamaTransport(base_url="http://localhost:11434")
        stream = await transport.generate(GenerateRequest(model_id="llama3.2:3b", contents=[Turn.user("Hello!")]))
        async for chunk in stream:
            ...
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        temperature: float = 0.7,
        top_p: float = 0.9,
        num_ctx: int = 8192,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._temperature = temperature
        self._top_p = top_p
        self._num_ctx = num_ctx
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Conversion
    # =========================================================================

    def _convert_turns(self, request: GenerateRequest) -> list[dict[str, Any]]:
        """Convert Turns to Ollama chat messages.

        Function responses become ``tool`` messages; everything else in a user
        turn becomes a single ``user`` message.
        """
        messages: list[dict[str, Any]] = []
        if request.config.system_instruction:
            messages.append({"role": "system", "content": request.config.system_instruction})

        for turn in request.contents:
            text = "".join(p.text for p in turn.parts if isinstance(p, TextPart))
            if turn.role == Role.MODEL:
                message: dict[str, Any] = {"role": "assistant", "content": text}
                if turn.function_calls:
                    message["tool_calls"] = [{"function": {"name": call.name, "arguments": call.args}} for call in turn.function_calls]
                messages.append(message)
                continue

            for response in turn.function_responses:
                messages.append({"role": "tool", "tool_name": response.name, "content": json.dumps(response.response, default=str)})
            if text:
                messages.append({"role": "user", "content": text})
        return messages

    def _build_payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        config = request.config
        payload: dict[str, Any] = {
            "model": request.model_id,
            "messages": self._convert_turns(request),
            "stream": stream,
            "options": {
                "temperature": self._temperature if config.temperature is None else config.temperature,
                "top_p": self._top_p if config.top_p is None else config.top_p,
                "num_ctx": self._num_ctx,
                **config.extra,
            },
        }
        if config.tools:
            payload["tools"] = [tool.to_ollama_format() for tool in config.tools]
        return payload

    def _parse_message(self, data: dict[str, Any]) -> ResponseChunk:
        """Parse one Ollama response object (streamed line or full response)."""
        message = data.get("message") or {}
        parts: list[Part] = []

        if message.get("thinking"):
            parts.append(ThoughtPart(text=message["thinking"]))
        if message.get("content"):
            parts.append(TextPart(text=message["content"]))
        for tool_call in message.get("tool_calls") or []:
            function = tool_call.get("function", {})
            arguments = function.get("arguments") or {}
            if isinstance(arguments, str):
                arguments = json.loads(arguments)
            parts.append(FunctionCallPart(name=function.get("name", ""), args=arguments))

        finish_reason = None
        usage = None
        if data.get("done"):
            finish_reason = FinishReason.parse(data.get("done_reason")) or FinishReason.STOP
            usage = UsageMetadata(prompt_token_count=data.get("prompt_eval_count", 0), candidates_token_count=data.get("eval_count", 0))
        return ResponseChunk(parts=parts, finish_reason=finish_reason, usage_metadata=usage)

    # =========================================================================
    # Error mapping
    # =========================================================================

    def _status_error(self, status_code: int, error_text: str, model: str) -> TransportError:
        logger.error(f"Ollama HTTP error: {status_code} - {error_text[:500]}")
        if status_code == 404 or "not found" in error_text.lower():
            return TransportError(
                message=f"AI model '{model}' is not available",
                error_code="model_not_found",
                status_code=status_code,
                details={"model": model, "hint": f"Run: ollama pull {model}"},
            )
        if status_code == 429:
            return TransportError(message="AI model quota exceeded", error_code="quota_exceeded", is_retryable=True, status_code=status_code)
        return TransportError(
            message=f"AI model error: {error_text[:200]}",
            error_code="ollama_error",
            is_retryable=status_code >= 500,
            status_code=status_code,
        )

    def _request_error(self, error: httpx.HTTPError, model: str) -> TransportError:
        if isinstance(error, httpx.HTTPStatusError):
            return self._status_error(error.response.status_code, error.response.text, model)
        if isinstance(error, httpx.ConnectError):
            logger.error(f"Cannot connect to Ollama at {self._base_url}: {error}")
            return TransportError(message="Cannot connect to AI model service", error_code="connection_error", is_retryable=True, details={"url": self._base_url})
        if isinstance(error, httpx.TimeoutException):
            logger.error(f"Ollama request timed out: {error}")
            return TransportError(message="AI model request timed out", error_code="timeout", is_retryable=True)
        logger.error(f"Ollama request error: {error}")
        return TransportError(message="Failed to communicate with AI model", error_code="request_error", is_retryable=True)

    # =========================================================================
    # Transport contract
    # =========================================================================

    async def generate(self, request: GenerateRequest) -> AsyncIterator[ResponseChunk]:
        """Open a streaming chat request.

        The connection is established and the status checked before this
        returns, so connection failures surface here and can be retried.

        Raises:
            TransportError: If Ollama is unreachable or rejects the request
        """
        client = await self._get_client()
        payload = self._build_payload(request, stream=True)
        llm_request_count.add(1, {"model": request.model_id, "has_tools": str(bool(request.config.tools))})

        with tracer.start_as_current_span("ollama.generate") as span:
            span.set_attribute("llm.model", request.model_id)
            span.set_attribute("llm.message_count", len(payload["messages"]))
            span.set_attribute("llm.tool_count", len(request.config.tools))
            logger.info(f"🔧 Ollama stream request: model={request.model_id}, messages={len(payload['messages'])}, tools={len(request.config.tools)}")

            try:
                response = await client.send(client.build_request("POST", "/api/chat", json=payload), stream=True)
            except httpx.HTTPError as e:
                span.set_attribute("error", True)
                raise self._request_error(e, request.model_id) from e

            if response.status_code != 200:
                error_content = await response.aread()
                await response.aclose()
                span.set_attribute("error", True)
                raise self._status_error(response.status_code, error_content.decode("utf-8", errors="replace"), request.model_id)

        return self._iter_chunks(response, request.model_id)

    async def _iter_chunks(self, response: httpx.Response, model: str) -> AsyncIterator[ResponseChunk]:
        start_time = time.time()
        chunk_count = 0
        try:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Failed to parse Ollama response line: {line}")
                    continue

                if "error" in data:
                    raise TransportError(message=f"AI model error: {str(data['error'])[:200]}", error_code="ollama_error")

                chunk_count += 1
                chunk = self._parse_message(data)
                yield chunk
                if chunk.finish_reason is not None:
                    logger.info(f"🏁 Ollama stream completed: {chunk_count} chunks, finish_reason={chunk.finish_reason.value}")
                    break
        except httpx.HTTPError as e:
            raise self._request_error(e, model) from e
        finally:
            await response.aclose()
            llm_request_time.record((time.time() - start_time) * 1000, {"model": model})

    async def generate_content(self, request: GenerateRequest) -> ResponseChunk:
        """Send a non-streaming chat request and return the complete response.

        Raises:
            TransportError: If Ollama is unreachable or rejects the request
        """
        client = await self._get_client()
        payload = self._build_payload(request, stream=False)
        llm_request_count.add(1, {"model": request.model_id, "has_tools": str(bool(request.config.tools))})
        start_time = time.time()

        with tracer.start_as_current_span("ollama.generate_content") as span:
            span.set_attribute("llm.model", request.model_id)
            try:
                response = await client.post("/api/chat", json=payload)
                response.raise_for_status()
            except httpx.HTTPError as e:
                span.set_attribute("error", True)
                raise self._request_error(e, request.model_id) from e

            llm_request_time.record((time.time() - start_time) * 1000, {"model": request.model_id})
            return self._parse_message(response.json())

    @staticmethod
    def configure(builder: "ApplicationBuilderBase") -> None:
        """Configure OllamaTransport in the service collection.

        Args:
            builder: The application builder
        """
        from agentic_chat.application.settings import Settings, app_settings

        settings: Optional[Settings] = next((d.singleton for d in builder.services if d.service_type is Settings), None)
        if settings is None:
            logger.info("Settings not found in DI services, using app_settings singleton")
            settings = app_settings

        logger.info(f"OllamaTransport configuring with: model='{settings.model_id}', url='{settings.ollama_url}'")

        transport = OllamaTransport(
            base_url=settings.ollama_url,
            timeout=settings.ollama_timeout,
            temperature=settings.ollama_temperature,
            top_p=settings.ollama_top_p,
            num_ctx=settings.ollama_num_ctx,
        )
        builder.services.add_singleton(OllamaTransport, singleton=transport)
