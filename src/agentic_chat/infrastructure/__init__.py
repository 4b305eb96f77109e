"""Infrastructure layer for agentic-chat.

Contains:
- adapters/: Transport adapters (Ollama)
- tool_registry.py: Tool definitions and mutator classification
- tool_scheduler.py: In-process tool execution with approvals
- session_store.py: In-memory display history and titles
"""

from agentic_chat.infrastructure.adapters.ollama_transport import OllamaTransport
from agentic_chat.infrastructure.session_store import InMemorySessionStore, SessionData
from agentic_chat.infrastructure.tool_registry import Tool, ToolKind, ToolRegistry
from agentic_chat.infrastructure.tool_scheduler import InProcessToolScheduler

__all__ = [
    "OllamaTransport",
    "InMemorySessionStore",
    "SessionData",
    "Tool",
    "ToolKind",
    "ToolRegistry",
    "InProcessToolScheduler",
]
