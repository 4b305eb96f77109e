"""Streaming request and response model.

The Transport receives a ``GenerateRequest`` and yields ``ResponseChunk`` objects.
ChatSession wraps each chunk into a ``ChunkEvent`` and signals discarded
attempts with a ``RetryEvent``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agentic_chat.domain.models.content import FunctionCallPart, Part, TextPart, ThoughtPart, Turn


class FinishReason(str, Enum):
    """Why the model stopped producing output."""

    STOP = "stop"
    MAX_TOKENS = "max_tokens"
    TOOL_CALLS = "tool_calls"
    SAFETY = "safety"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> "FinishReason | None":
        """Map a provider-specific finish reason onto the enum."""
        if not value:
            return None
        normalized = value.lower()
        if normalized in ("length", "max_tokens"):
            return cls.MAX_TOKENS
        try:
            return cls(normalized)
        except ValueError:
            return cls.OTHER


@dataclass
class UsageMetadata:
    """Token accounting reported by the model."""

    prompt_token_count: int = 0
    candidates_token_count: int = 0

    @property
    def total_token_count(self) -> int:
        return self.prompt_token_count + self.candidates_token_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_token_count": self.prompt_token_count,
            "candidates_token_count": self.candidates_token_count,
            "total_token_count": self.total_token_count,
        }


@dataclass
class ResponseChunk:
    """A single streamed piece of a model response.

    Attributes:
        parts: Content parts carried by this chunk (may be empty)
        finish_reason: Set on the chunk that terminates the response
        usage_metadata: Token usage, usually on the final chunk
    """

    parts: list[Part] = field(default_factory=list)
    finish_reason: FinishReason | None = None
    usage_metadata: UsageMetadata | None = None

    @property
    def text(self) -> str:
        """Visible (non-thought) text in this chunk."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def function_calls(self) -> list[FunctionCallPart]:
        return [p for p in self.parts if isinstance(p, FunctionCallPart)]

    @property
    def thoughts(self) -> list[ThoughtPart]:
        return [p for p in self.parts if isinstance(p, ThoughtPart)]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "parts": [p.to_dict() for p in self.parts],
            "finish_reason": self.finish_reason.value if self.finish_reason else None,
            "usage_metadata": self.usage_metadata.to_dict() if self.usage_metadata else None,
        }


@dataclass
class ToolDeclaration:
    """Definition of a tool the model may call.

    Attributes:
        name: Tool name
        description: What the tool does
        parameters: JSON Schema of the tool arguments
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_ollama_format(self) -> dict[str, Any]:
        """Convert to Ollama's function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class GenerationConfig:
    """Per-request generation parameters. Unset sampling values fall back to the transport defaults."""

    temperature: float | None = None
    top_p: float | None = None
    system_instruction: str | None = None
    tools: list[ToolDeclaration] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerateRequest:
    """A request sent to the Transport."""

    model_id: str
    contents: list[Turn]
    config: GenerationConfig = field(default_factory=GenerationConfig)
    prompt_id: str = ""


class StreamEventType(str, Enum):
    """Types of events yielded by ChatSession.send_stream."""

    CHUNK = "chunk"
    RETRY = "retry"


@dataclass
class ChunkEvent:
    """A response chunk from the current attempt."""

    value: ResponseChunk
    type: StreamEventType = field(default=StreamEventType.CHUNK, init=False)


@dataclass
class RetryEvent:
    """The previous attempt failed; discard everything it produced."""

    type: StreamEventType = field(default=StreamEventType.RETRY, init=False)


StreamEvent = ChunkEvent | RetryEvent
