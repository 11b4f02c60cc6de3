"""
Universal data models for the agent runtime.
These are provider-agnostic — each backend adapter converts to/from its native format.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
import json
import time
import uuid


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"

    @property
    def label(self) -> str:
        """Capitalized name used when rendering transcripts."""
        return self.value.capitalize()


@dataclass
class Attachment:
    """A file attached to a message. Text files carry their content inline."""
    file_path: str
    file_name: str
    mime_type: str
    file_size: int = 0
    content: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "content": self.content,
        }


@dataclass
class ToolDefinition:
    """Tool definition as discovered from a tool server."""
    name: str
    description: str
    parameters: dict  # JSON Schema format

    @classmethod
    def from_mcp(cls, data: Any) -> "ToolDefinition":
        """
        Build from an MCP ``tools/list`` entry.

        Raises ValueError when the entry is not a well-formed tool.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Tool entry is not an object: {data!r}")
        name = data.get("name")
        description = data.get("description")
        schema = data.get("inputSchema")
        if not isinstance(name, str) or not name:
            raise ValueError(f"Tool entry has no valid name: {data!r}")
        if not isinstance(description, str):
            raise ValueError(f"Tool '{name}' has no valid description")
        if schema is None:
            raise ValueError(f"Tool '{name}' has no inputSchema")
        return cls(name=name, description=description, parameters=schema)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass
class ToolCall:
    """A single tool invocation requested by the model."""
    id: str
    name: str
    parameters: Any = field(default_factory=dict)

    @staticmethod
    def generate_id() -> str:
        return f"call_{uuid.uuid4().hex[:12]}"

    @property
    def params_json(self) -> str:
        return json.dumps(self.parameters, default=str)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "parameters": self.parameters}


@dataclass
class ToolResult:
    """Result from executing a tool."""
    content: str
    is_error: bool = False


@dataclass
class Message:
    """A single message in the conversation history."""
    role: Role
    content: str
    tool_call_id: Optional[str] = None          # set only on tool-role messages
    tool_calls: Optional[list[ToolCall]] = None  # set only on assistant messages
    attachments: Optional[list[Attachment]] = None
    is_prompt: bool = False
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str, is_error: bool = False) -> "Message":
        prefix = "Error: " if is_error else ""
        return cls(role=Role.TOOL, content=f"{prefix}{content}", tool_call_id=tool_call_id)

    @classmethod
    def with_tool_calls(cls, content: str, tool_calls: list[ToolCall]) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls))

    def to_dict(self) -> dict:
        data: dict = {"role": self.role.value, "content": self.content}
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.attachments:
            data["attachments"] = [a.to_dict() for a in self.attachments]
        return data


@dataclass
class ChatResponse:
    """Response from the model — final text, tool calls, or both."""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Optional[dict] = None  # {"input_tokens": N, "output_tokens": N}

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


@dataclass
class RateLimitInfo:
    """Rate-limit signals extracted from one failed HTTP call."""
    provider: str
    attempt_count: int
    retry_after_seconds: Optional[int] = None
    remaining_requests: Optional[int] = None
    reset_time: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "attempt_count": self.attempt_count,
            "retry_after_seconds": self.retry_after_seconds,
            "remaining_requests": self.remaining_requests,
            "reset_time": self.reset_time,
        }
