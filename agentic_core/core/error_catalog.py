"""
Error Catalog — error codes, categories and the exception hierarchy.

Every failure raised by the runtime maps to a unique code (E1xxx–E4xxx)
and a recovery hint. Tool-level failures are normally converted into
``ToolResult(is_error=True)`` before they reach the model; the exceptions
here are what crosses component boundaries.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from .models import RateLimitInfo


# ── Error categories ────────────────────────────────────────────────

class ErrorCategory(Enum):
    PROVIDER = "provider"      # E1xxx
    TOOL = "tool"              # E2xxx
    AGENT = "agent"            # E3xxx
    CONFIG = "config"          # E4xxx


# ── Error codes ─────────────────────────────────────────────────────

class ErrorCode(Enum):
    # Provider errors (E1xxx)
    PROVIDER_REQUEST_FAILED = "E1001"
    PROVIDER_RATE_LIMITED = "E1003"
    PROVIDER_INVALID_RESPONSE = "E1007"

    # Tool errors (E2xxx)
    TOOL_TRANSPORT_FAILED = "E2001"
    TOOL_TIMEOUT = "E2002"
    TOOL_NOT_FOUND = "E2003"
    TOOL_SERVER_NOT_FOUND = "E2006"

    # Agent errors (E3xxx)
    AGENT_MAX_ITERATIONS = "E3001"
    AGENT_MODEL_CALL_FAILED = "E3007"

    # Config errors (E4xxx)
    CONFIG_INVALID_VALUE = "E4002"
    CONFIG_FILE_NOT_FOUND = "E4003"

    @property
    def category(self) -> ErrorCategory:
        return _PREFIX_TO_CATEGORY[self.value[1]]

    @property
    def hint(self) -> str:
        return _HINTS.get(self, "No recovery hint available.")


_PREFIX_TO_CATEGORY: Dict[str, ErrorCategory] = {
    "1": ErrorCategory.PROVIDER,
    "2": ErrorCategory.TOOL,
    "3": ErrorCategory.AGENT,
    "4": ErrorCategory.CONFIG,
}

_HINTS: Dict[ErrorCode, str] = {
    ErrorCode.PROVIDER_REQUEST_FAILED: "Check that the backend is reachable and the endpoint is correct.",
    ErrorCode.PROVIDER_RATE_LIMITED: "Wait before retrying, or raise max_retries in the LLM profile.",
    ErrorCode.PROVIDER_INVALID_RESPONSE: "The backend returned an unexpected payload. Retry or check the model name.",
    ErrorCode.TOOL_TRANSPORT_FAILED: "The tool server process failed or closed its pipes. Check its command and logs.",
    ErrorCode.TOOL_TIMEOUT: "The tool did not answer in time. Check the tool server for hangs.",
    ErrorCode.TOOL_NOT_FOUND: "The model requested a tool that no connected server provides.",
    ErrorCode.TOOL_SERVER_NOT_FOUND: "The tool's owning server is no longer registered.",
    ErrorCode.AGENT_MAX_ITERATIONS: "Raise max_iterations or break the task into smaller steps.",
    ErrorCode.AGENT_MODEL_CALL_FAILED: "The model call failed. See the ModelError event for details.",
    ErrorCode.CONFIG_INVALID_VALUE: "Check the config file for invalid values.",
    ErrorCode.CONFIG_FILE_NOT_FOUND: "Verify the config file path or rely on the packaged defaults.",
}


# ── Exception hierarchy ─────────────────────────────────────────────

class AgenticError(Exception):
    """Base class for all runtime errors. Carries an ErrorCode."""

    code: ErrorCode = ErrorCode.AGENT_MODEL_CALL_FAILED

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    def full_message(self) -> str:
        return f"[{self.code.value}] {self.message}\nHint: {self.code.hint}"


class LLMError(AgenticError):
    """A model backend call failed (HTTP, API or payload error)."""
    code = ErrorCode.PROVIDER_REQUEST_FAILED


class RateLimitError(LLMError):
    """Rate limiting persisted past the configured retry budget."""
    code = ErrorCode.PROVIDER_RATE_LIMITED

    def __init__(self, info: "RateLimitInfo"):
        super().__init__(
            f"Rate limit exceeded for {info.provider} after {info.attempt_count} attempts"
        )
        self.info = info


class ModelCallError(AgenticError):
    """Raised by the loop when the model capability failed for a turn."""
    code = ErrorCode.AGENT_MODEL_CALL_FAILED


class MaxIterationsError(AgenticError):
    code = ErrorCode.AGENT_MAX_ITERATIONS


class TransportError(AgenticError):
    """Spawn, pipe I/O or framing failure on a tool server transport."""
    code = ErrorCode.TOOL_TRANSPORT_FAILED


class ToolNotFoundError(AgenticError):
    code = ErrorCode.TOOL_NOT_FOUND

    def __init__(self, tool_name: str):
        super().__init__(f"Tool {tool_name} not found")
        self.tool_name = tool_name


class ServerNotFoundError(AgenticError):
    code = ErrorCode.TOOL_SERVER_NOT_FOUND

    def __init__(self, server_name: str):
        super().__init__(f"Server {server_name} not found")
        self.server_name = server_name


class ConfigError(AgenticError):
    code = ErrorCode.CONFIG_INVALID_VALUE
