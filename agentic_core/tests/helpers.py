"""
Test helpers — scripted provider, in-memory transport, fake server launcher.

Shared by the loop, registry and transport tests so none of them needs a
real model backend or a real MCP server package.
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Any, Callable, Optional

from agentic_core.core.error_catalog import TransportError
from agentic_core.core.mcp_client import MCPTransport, StdioMCPClient
from agentic_core.core.models import ChatResponse, Message, Role, ToolCall, ToolDefinition, ToolResult
from agentic_core.core.providers.base import BaseLLMProvider

FAKE_SERVER = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fake_mcp_server.py")


def _run(coro):
    """Run an async function synchronously."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def fake_server_client(name: str = "fake", **env: str) -> StdioMCPClient:
    """StdioMCPClient that launches fake_mcp_server.py with the current interpreter."""
    return StdioMCPClient(sys.executable, [FAKE_SERVER], env=env, name=name)


def tool_call(name: str, call_id: str = "call_1", **parameters: Any) -> ToolCall:
    return ToolCall(id=call_id, name=name, parameters=parameters)


def tool_def(name: str) -> ToolDefinition:
    return ToolDefinition(name=name, description=f"{name} tool", parameters={"type": "object"})


# ── Scripted model provider ───────────────────────────────────────

class ScriptedProvider(BaseLLMProvider):
    """
    Returns queued ChatResponses in order; queued exceptions are raised.

    Every call is recorded in ``calls`` as a dict of its arguments.
    """

    backend_name = "scripted"

    def __init__(self, responses: Optional[list] = None):
        super().__init__(model="scripted")
        self.responses: list = list(responses or [])
        self.calls: list[dict] = []

    def enqueue_text(self, text: str) -> "ScriptedProvider":
        self.responses.append(ChatResponse(content=text))
        return self

    def enqueue_tool_calls(self, *calls: ToolCall, text: str = "") -> "ScriptedProvider":
        self.responses.append(ChatResponse(content=text, tool_calls=list(calls)))
        return self

    async def send_with_tools(self, messages, tools, temperature=None, max_tokens=None):
        self.calls.append({
            "messages": list(messages),
            "tools": list(tools),
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise AssertionError("ScriptedProvider ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


# ── In-memory transport ───────────────────────────────────────────

class FakeTransport(MCPTransport):
    """
    Transport double for registry and loop tests.

    ``behaviour`` maps tool name → callable(ToolCall) returning a ToolResult
    (or raising). Calls for unmapped tools echo ``"{server}:{tool}"``.
    """

    def __init__(
        self,
        name: str,
        tools: list[str],
        behaviour: Optional[dict[str, Callable[[ToolCall], Any]]] = None,
        fail_connect: bool = False,
        call_delay: float = 0.0,
    ):
        self.name = name
        self.tools = [tool_def(t) for t in tools]
        self.behaviour = behaviour or {}
        self.fail_connect = fail_connect
        self.call_delay = call_delay
        self.connected = False
        self.disconnects = 0
        self.calls: list[ToolCall] = []
        self.active = 0
        self.max_active = 0

    async def connect(self) -> None:
        if self.fail_connect:
            raise TransportError(f"cannot start {self.name}")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnects += 1

    async def discover_tools(self) -> list[ToolDefinition]:
        return list(self.tools)

    async def call_tool(self, tool_call: ToolCall) -> ToolResult:
        self.calls.append(tool_call)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.call_delay:
                await asyncio.sleep(self.call_delay)
            handler = self.behaviour.get(tool_call.name)
            if handler is None:
                return ToolResult(content=f"{self.name}:{tool_call.name}")
            result = handler(tool_call)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        finally:
            self.active -= 1


def factory_for(transports: dict[str, FakeTransport]):
    """transport_factory that hands out pre-built FakeTransports by server name."""
    def factory(name, command, args, env):
        return transports[name]
    return factory


def sequence(*outcomes):
    """Behaviour returning/raising each outcome in turn (the last one repeats)."""
    remaining = list(outcomes)

    def handler(tool_call):
        item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(item, BaseException):
            raise item
        return item
    return handler


def user(text: str) -> Message:
    return Message(role=Role.USER, content=text)
