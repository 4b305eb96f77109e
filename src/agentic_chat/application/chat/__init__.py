"""Chat session and history management."""

from agentic_chat.application.chat.chat_session import ChatSession, InvalidContentRetryOptions
from agentic_chat.application.chat.compression import ChatCompressionInfo, ChatCompressionService, CompressionStatus

__all__ = [
    "ChatSession",
    "InvalidContentRetryOptions",
    "ChatCompressionInfo",
    "ChatCompressionService",
    "CompressionStatus",
]
