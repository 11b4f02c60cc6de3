"""
MCP Client — stdio JSON-RPC transport to one external tool server.

Each StdioMCPClient owns one child process:
  1. connect(): spawn, send ``initialize``, then the
     ``notifications/initialized`` notification
  2. discover_tools(): ``tools/list`` → ToolDefinitions
  3. call_tool(): ``tools/call`` → ToolResult
  4. disconnect(): kill the child and drop the pipes

Framing is one JSON object per line. Only one request is in flight at a
time; callers serialize access (the ToolRegistry holds a lock per server).

Servers are configured Claude Desktop style:
  mcpServers:
    filesystem:
      command: "npx"
      args: ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
      env:
        DEBUG: "${env:MCP_DEBUG}"
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Optional

from .error_catalog import TransportError
from .mcp_protocol import MCPRequest, MCPResponse, initialize_params, notification_line
from .models import ToolCall, ToolDefinition, ToolResult

logger = logging.getLogger(__name__)


class MCPTransport(ABC):
    """Capability every tool server transport exposes to the registry."""

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def discover_tools(self) -> list[ToolDefinition]:
        pass

    @abstractmethod
    async def call_tool(self, tool_call: ToolCall) -> ToolResult:
        pass

    async def __aenter__(self) -> "MCPTransport":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()


class StdioMCPClient(MCPTransport):
    """Owns one tool server subprocess and speaks JSON-RPC over its stdio."""

    # Seconds to wait for the child to exit after kill()
    EXIT_WAIT_TIMEOUT = 5.0
    # Longest JSON-RPC line accepted from the server (asyncio's default is 64 KiB)
    STREAM_LIMIT = 16 * 1024 * 1024

    def __init__(
        self,
        command: str,
        args: Optional[list[str]] = None,
        env: Optional[dict[str, str]] = None,
        name: str = "",
    ):
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.name = name or command
        self.tools: list[ToolDefinition] = []
        self.request_id = 1
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"StdioMCPClient(name={self.name!r}, command={self.command!r}, args={self.args!r})"

    @property
    def is_connected(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def _next_id(self) -> int:
        request_id = self.request_id
        self.request_id += 1
        return request_id

    # ── Lifecycle ─────────────────────────────────────────────

    async def connect(self) -> None:
        logger.debug(f"Starting MCP server '{self.name}': {self.command} {self.args}")

        env = os.environ.copy()
        env.update(self.env)

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command, *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=self.STREAM_LIMIT,
            )
        except OSError as e:
            # FileNotFoundError / PermissionError for a bad command
            self._process = None
            raise TransportError(f"Failed to start MCP server '{self.name}': {e}") from e

        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process))

        try:
            response = await self.send_request("initialize", initialize_params())
            if response.error is not None:
                raise TransportError(
                    f"MCP server '{self.name}' rejected initialize: {response.error.message}"
                )
            logger.debug(f"Initialize response from '{self.name}': {response.result}")
            await self._write(notification_line("notifications/initialized"))
        except BaseException:
            await self.disconnect()
            raise

    async def disconnect(self) -> None:
        process, self._process = self._process, None
        if process is not None:
            try:
                process.kill()
            except ProcessLookupError:
                pass  # already exited
            except OSError as e:
                logger.debug(f"Could not kill MCP server '{self.name}': {e}")
            try:
                await asyncio.wait_for(process.wait(), timeout=self.EXIT_WAIT_TIMEOUT)
            except (asyncio.TimeoutError, OSError) as e:
                logger.debug(f"MCP server '{self.name}' did not exit cleanly: {e!r}")

        stderr_task, self._stderr_task = self._stderr_task, None
        if stderr_task is not None:
            stderr_task.cancel()
            await asyncio.gather(stderr_task, return_exceptions=True)

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        """Forward server stderr to debug logs so the pipe never fills up."""
        if process.stderr is None:
            return
        try:
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                logger.debug(f"[{self.name} stderr] {line.decode(errors='replace').rstrip()}")
        except OSError as e:
            logger.debug(f"Stopped reading stderr of '{self.name}': {e}")

    # ── Framing ───────────────────────────────────────────────

    async def _write(self, data: bytes) -> None:
        process = self._process
        if process is None or process.stdin is None:
            raise TransportError(f"MCP server '{self.name}' has no stdin")
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (OSError, RuntimeError) as e:
            # BrokenPipeError / ConnectionResetError, or writing to a closed transport
            raise TransportError(f"Failed to write to MCP server '{self.name}': {e}") from e

    async def _read_line(self) -> bytes:
        process = self._process
        if process is None or process.stdout is None:
            raise TransportError(f"MCP server '{self.name}' has no stdout")
        try:
            line = await process.stdout.readline()
        except (OSError, ValueError) as e:
            # ValueError: line exceeded the stream buffer limit
            raise TransportError(f"Failed to read response from '{self.name}': {e}") from e
        if not line:
            raise TransportError(f"MCP server '{self.name}' closed its stdout")
        return line

    async def send_request(self, method: str, params: Optional[Any] = None) -> MCPResponse:
        """
        Send one request and read lines until its response arrives.

        Connects first when no child is running; the id is taken after
        that, so ids reach the server in increasing order.

        Server-initiated messages (notifications, requests such as ``ping``)
        and stale responses (left behind by a request
        that timed out on the caller's side) are skipped.
        """
        if self._process is None:
            await self.connect()

        request = MCPRequest(self._next_id(), method, params)
        try:
            return await self._exchange(request)
        except TransportError:
            # Drop the broken child; the next request respawns it
            await self.disconnect()
            raise

    async def _exchange(self, request: MCPRequest) -> MCPResponse:
        await self._write(request.to_line())

        while True:
            line = await self._read_line()
            if not line.strip():
                continue
            logger.debug(f"MCP response from '{self.name}': {line.decode(errors='replace').rstrip()}")
            try:
                response = MCPResponse.from_line(line)
            except ValueError as e:
                raise TransportError(f"Malformed JSON-RPC line from '{self.name}': {e}") from e

            if response.is_server_message:
                logger.debug(f"Ignoring server message '{response.method}' from '{self.name}'")
                continue
            if response.id is not None and response.id != request.id:
                logger.warning(
                    f"Discarding stale response id={response.id} from '{self.name}' "
                    f"(waiting for id={request.id})"
                )
                continue
            return response

    # ── Tool operations ───────────────────────────────────────

    async def discover_tools(self) -> list[ToolDefinition]:
        response = await self.send_request("tools/list", {})
        if response.error is not None:
            logger.warning(f"tools/list failed on '{self.name}': {response.error.message}")
            return []

        result = response.result
        entries = result.get("tools") if isinstance(result, dict) else None
        if not isinstance(entries, list):
            return []

        tools = []
        for entry in entries:
            try:
                tools.append(ToolDefinition.from_mcp(entry))
            except ValueError as e:
                logger.debug(f"Skipping malformed tool from '{self.name}': {e}")
        self.tools = tools
        return tools

    async def call_tool(self, tool_call: ToolCall) -> ToolResult:
        response = await self.send_request(
            "tools/call", {"name": tool_call.name, "arguments": tool_call.parameters}
        )

        if response.error is not None:
            return ToolResult(content=response.error.message, is_error=True)

        result = response.result
        if result is None:
            return ToolResult(content="No result received", is_error=True)

        text = _first_text_block(result)
        if text is not None:
            return ToolResult(content=text, is_error=bool(result.get("isError", False)))

        if isinstance(result, str):
            return ToolResult(content=result)

        return ToolResult(
            content=f"Unexpected result format: {json.dumps(result, default=str)}",
            is_error=True,
        )


def _first_text_block(result: Any) -> Optional[str]:
    """Text of the first ``content`` block, when the result has that shape."""
    if not isinstance(result, dict):
        return None
    content = result.get("content")
    if not isinstance(content, list) or not content:
        return None
    first = content[0]
    if isinstance(first, dict) and isinstance(first.get("text"), str):
        return first["text"]
    return None
