"""
Tool Registry — aggregates N tool server transports into one tool catalog.

Handles server registration, name→server routing, per-tool enable/disable
and dispatch of tool calls to the owning server.

Locking:
  - catalog (tools, routing, enabled flags, server map): readers/writer lock.
    Listings share it; add/remove server and enable/disable take it alone.
  - each server has its own asyncio.Lock, so only one request is in flight
    per transport while calls to different servers run independently.

Duplicate tool names are first-wins: once a name is routed to a server,
the same name from a later server is skipped with a warning.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .error_catalog import ServerNotFoundError, ToolNotFoundError
from .mcp_client import MCPTransport, StdioMCPClient
from .models import ToolCall, ToolDefinition, ToolResult
from .rw_lock import ReadWriteLock
from .structured_logger import LogContext, StructuredLogger

logger = logging.getLogger(__name__)

# (name, command, args, env) -> transport
TransportFactory = Callable[[str, str, list, dict], MCPTransport]


def _stdio_transport(name: str, command: str, args: list, env: dict) -> MCPTransport:
    return StdioMCPClient(command, args, env, name=name)


class ToolRegistry:
    """Central catalog of tools discovered from connected tool servers."""

    def __init__(self, transport_factory: Optional[TransportFactory] = None):
        self.transport_factory = transport_factory or _stdio_transport
        self.servers: dict[str, MCPTransport] = {}
        self.all_tools: list[ToolDefinition] = []
        self.tool_to_server: dict[str, str] = {}
        self.enabled_tools: dict[str, bool] = {}
        self._server_locks: dict[str, asyncio.Lock] = {}
        self._catalog_lock = ReadWriteLock()

    async def __aenter__(self) -> "ToolRegistry":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    @property
    def server_names(self) -> list[str]:
        return list(self.servers.keys())

    # ── Registration ──────────────────────────────────────────

    async def initialize_from_config(self, server_configs: dict[str, dict]) -> list[str]:
        """
        Register every server in a ``name -> {command, args, env}`` mapping.

        Servers that fail to start are logged and skipped. Returns the
        names that registered successfully.
        """
        registered = []
        for name, server in server_configs.items():
            command = server.get("command")
            if not command:
                logger.warning(f"MCP server '{name}' has no command, skipping")
                continue
            ok = await self.add_server(
                name,
                command,
                list(server.get("args") or []),
                dict(server.get("env") or {}),
            )
            if ok:
                registered.append(name)
        logger.info(
            f"Registered {len(registered)}/{len(server_configs)} MCP servers, "
            f"{len(self.all_tools)} tools available"
        )
        return registered

    async def add_server(
        self,
        name: str,
        command: str,
        args: Optional[list[str]] = None,
        env: Optional[dict[str, str]] = None,
    ) -> bool:
        """Connect one server and merge its tools into the catalog. False on failure."""
        log = StructuredLogger(__name__, LogContext(server_name=name))
        if name in self.servers:
            log.warning(f"MCP server '{name}' already registered, replacing it")
            await self.remove_server(name)

        transport = self.transport_factory(name, command, list(args or []), dict(env or {}))
        try:
            await transport.connect()
            tools = await transport.discover_tools()
        except Exception as e:
            log.error(f"Failed to register MCP server '{name}': {e}")
            await transport.disconnect()
            return False

        async with self._catalog_lock.write():
            self.servers[name] = transport
            self._server_locks[name] = asyncio.Lock()
            added = 0
            for tool in tools:
                owner = self.tool_to_server.get(tool.name)
                if owner is not None:
                    log.warning(
                        f"Tool '{tool.name}' from server '{name}' is already provided by "
                        f"'{owner}', keeping the first registration"
                    )
                    continue
                self.tool_to_server[tool.name] = name
                self.enabled_tools[tool.name] = True
                self.all_tools.append(tool)
                added += 1

        log.info(f"Registered MCP server '{name}' with {added} tools")
        return True

    async def remove_server(self, name: str) -> None:
        """Disconnect a server and drop its tools from the catalog."""
        async with self._catalog_lock.write():
            transport = self.servers.pop(name, None)
            if transport is None:
                raise ServerNotFoundError(name)
            self._server_locks.pop(name, None)
            owned = {tool for tool, server in self.tool_to_server.items() if server == name}
            self.all_tools = [t for t in self.all_tools if t.name not in owned]
            for tool_name in owned:
                del self.tool_to_server[tool_name]
                self.enabled_tools.pop(tool_name, None)

        await transport.disconnect()
        StructuredLogger(__name__, LogContext(server_name=name)).info(f"Removed MCP server '{name}'")

    async def shutdown(self) -> None:
        """Disconnect every server and clear the catalog."""
        async with self._catalog_lock.write():
            transports = list(self.servers.items())
            self.servers.clear()
            self._server_locks.clear()
            self.all_tools = []
            self.tool_to_server.clear()
            self.enabled_tools.clear()

        for name, transport in transports:
            logger.debug(f"Disconnecting MCP server '{name}'")
            await transport.disconnect()

    # ── Catalog queries ───────────────────────────────────────

    async def get_available_tools(self) -> list[ToolDefinition]:
        async with self._catalog_lock.read():
            return list(self.all_tools)

    async def get_enabled_tools(self) -> list[ToolDefinition]:
        async with self._catalog_lock.read():
            return [t for t in self.all_tools if self.enabled_tools.get(t.name, True)]

    async def is_tool_enabled(self, name: str) -> bool:
        async with self._catalog_lock.read():
            return self.enabled_tools.get(name, True)

    async def get_tool_states(self) -> dict[str, bool]:
        async with self._catalog_lock.read():
            return dict(self.enabled_tools)

    async def get_server_for_tool(self, name: str) -> Optional[str]:
        async with self._catalog_lock.read():
            return self.tool_to_server.get(name)

    # ── Enable / disable ──────────────────────────────────────

    async def set_tool_enabled(self, name: str, enabled: bool) -> None:
        async with self._catalog_lock.write():
            if name not in self.tool_to_server:
                raise ToolNotFoundError(name)
            self.enabled_tools[name] = enabled

    async def enable_all(self) -> None:
        async with self._catalog_lock.write():
            for name in self.enabled_tools:
                self.enabled_tools[name] = True

    async def disable_all(self) -> None:
        async with self._catalog_lock.write():
            for name in self.enabled_tools:
                self.enabled_tools[name] = False

    # ── Dispatch ──────────────────────────────────────────────

    async def call_tool(self, tool_call: ToolCall) -> ToolResult:
        """
        Route a call to the server that owns the tool.

        Raises ToolNotFoundError for an unknown name. Transport failures
        (TransportError) propagate to the caller.
        """
        async with self._catalog_lock.read():
            server_name = self.tool_to_server.get(tool_call.name)
            if server_name is None:
                raise ToolNotFoundError(tool_call.name)
            transport = self.servers.get(server_name)
            server_lock = self._server_locks.get(server_name)
        if transport is None or server_lock is None:
            raise ServerNotFoundError(server_name)

        async with server_lock:
            StructuredLogger(__name__, LogContext(server_name=server_name)).debug(
                f"Calling tool '{tool_call.name}' on server '{server_name}'"
            )
            return await transport.call_tool(tool_call)
