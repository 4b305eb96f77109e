"""Domain exceptions for agentic-chat.

Local, retryable conditions (InvalidStreamError) are absorbed inside ChatSession.
Everything else propagates to the orchestrator.
"""

from enum import Enum
from typing import Any, Optional


class AgenticChatError(Exception):
    """Base exception for all agentic-chat errors.

    Attributes:
        message: Human-readable description of the error.
        code: Optional error code for programmatic handling.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class InvalidStreamErrorType(str, Enum):
    """Why a streamed response was rejected."""

    NO_FINISH_REASON = "NO_FINISH_REASON"
    NO_RESPONSE_TEXT = "NO_RESPONSE_TEXT"


class InvalidStreamError(AgenticChatError):
    """Raised when a completed stream does not form a usable model turn."""

    def __init__(self, message: str, error_type: InvalidStreamErrorType) -> None:
        super().__init__(message, code="INVALID_STREAM")
        self.type = error_type


class TransportError(AgenticChatError):
    """Raised when the model transport fails (network, quota, HTTP errors).

    Attributes:
        error_code: Categorized error code (connection_error, timeout, quota_exceeded, ...)
        is_retryable: Whether the backoff wrapper may retry the call
        status_code: HTTP status code, when there is one
        details: Additional error details for debugging
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        is_retryable: bool = False,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=error_code)
        self.error_code = error_code
        self.is_retryable = is_retryable
        self.status_code = status_code
        self.details = details or {}

    @property
    def is_quota_error(self) -> bool:
        return self.status_code == 429 or self.error_code == "quota_exceeded"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "is_retryable": self.is_retryable,
            "status_code": self.status_code,
            "details": self.details,
        }


class ToolExecutionError(AgenticChatError):
    """Raised by a tool when its execution fails. Scoped to a single call."""

    def __init__(self, message: str, tool_name: str, call_id: str | None = None) -> None:
        super().__init__(message, code="TOOL_EXECUTION_FAILED")
        self.tool_name = tool_name
        self.call_id = call_id


class OperationCancelledError(AgenticChatError):
    """Raised when a cooperative abort signal interrupts an operation."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message, code="CANCELLED")

