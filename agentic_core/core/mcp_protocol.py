"""
MCP Protocol — JSON-RPC 2.0 message shapes used on the stdio transport.

One JSON object per line. Requests carry an integer id; notifications
carry none and get no response.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "agentic-core", "version": "0.1.0"}
INTERNAL_ERROR = -32603


@dataclass
class MCPRequest:
    id: int
    method: str
    params: Optional[Any] = None

    def to_dict(self) -> dict:
        data = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data

    def to_line(self) -> bytes:
        return (json.dumps(self.to_dict()) + "\n").encode()


@dataclass
class MCPError:
    code: int
    message: str
    data: Optional[Any] = None

    @classmethod
    def from_dict(cls, data: Any) -> "MCPError":
        if not isinstance(data, dict):
            return cls(code=INTERNAL_ERROR, message=str(data))
        code = data.get("code")
        # bool is an int subclass but never a valid error code
        if not isinstance(code, int) or isinstance(code, bool):
            code = INTERNAL_ERROR
        return cls(
            code=code,
            message=str(data.get("message", "")),
            data=data.get("data"),
        )


@dataclass
class MCPResponse:
    id: Optional[int]
    result: Optional[Any] = None
    error: Optional[MCPError] = None
    method: Optional[str] = None  # set when the server sent a notification or request

    @property
    def is_notification(self) -> bool:
        return self.method is not None and self.id is None

    @property
    def is_server_message(self) -> bool:
        """True for anything the server initiated (notifications and requests such as ``ping``)."""
        return self.method is not None

    @classmethod
    def from_line(cls, line: bytes | str) -> "MCPResponse":
        """
        Parse one response line.

        Raises ValueError on invalid JSON or a payload that is not an object.
        """
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        payload = json.loads(line)
        if not isinstance(payload, dict):
            raise ValueError(f"JSON-RPC response is not an object: {line.strip()[:200]}")
        error = payload.get("error")
        return cls(
            id=payload.get("id"),
            result=payload.get("result"),
            error=MCPError.from_dict(error) if error is not None else None,
            method=payload.get("method"),
        )


def notification_line(method: str, params: Optional[Any] = None) -> bytes:
    data: dict = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        data["params"] = params
    return (json.dumps(data) + "\n").encode()


def initialize_params() -> dict:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {"tools": {}},
        "clientInfo": dict(CLIENT_INFO),
    }
