"""Observability utilities and metrics for agentic-chat."""

from .metrics import (
    chat_history_rollbacks,
    chat_invalid_stream_retries,
    chat_mutator_truncations,
    chat_stream_attempts,
    compression_count,
    llm_request_count,
    llm_request_time,
    orchestrator_iterations,
    tool_execution_count,
    tool_execution_errors,
    tool_execution_time,
)

__all__ = [
    # Chat metrics
    "chat_stream_attempts",
    "chat_invalid_stream_retries",
    "chat_history_rollbacks",
    "chat_mutator_truncations",
    # LLM metrics
    "llm_request_count",
    "llm_request_time",
    # Tool metrics
    "tool_execution_count",
    "tool_execution_errors",
    "tool_execution_time",
    # Orchestrator metrics
    "orchestrator_iterations",
    "compression_count",
]
