"""Transport adapters for agentic-chat."""

from agentic_chat.infrastructure.adapters.ollama_transport import OllamaTransport

__all__ = [
    "OllamaTransport",
]
