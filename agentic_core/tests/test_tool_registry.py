"""
Tool Registry tests.

Covers: registration with partial failure, first-wins handling of
duplicate tool names, enable/disable filters, routing of call_tool,
per-server serialization, remove_server and shutdown. Most tests use the
in-memory FakeTransport; one end-to-end test runs two real fake servers.

Run: python -m pytest agentic_core/tests/test_tool_registry.py -v
"""

import asyncio
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from agentic_core.core.error_catalog import ServerNotFoundError, ToolNotFoundError, TransportError
from agentic_core.core.models import ToolResult
from agentic_core.core.tool_registry import ToolRegistry
from agentic_core.tests.helpers import (
    FAKE_SERVER, FakeTransport, _run, factory_for, tool_call,
)


def _registry(**transports):
    return ToolRegistry(transport_factory=factory_for(transports))


async def _add(registry, *names):
    for name in names:
        await registry.add_server(name, "unused")


class TestRegistration(unittest.TestCase):

    def test_add_server_indexes_tools_enabled(self):
        async def scenario():
            registry = _registry(fs=FakeTransport("fs", ["read", "write"]))
            ok = await registry.add_server("fs", "cmd")
            return ok, await registry.get_tool_states(), await registry.get_server_for_tool("read")

        ok, states, owner = _run(scenario())
        self.assertTrue(ok)
        self.assertEqual(states, {"read": True, "write": True})
        self.assertEqual(owner, "fs")

    def test_broken_server_does_not_block_others(self):
        async def scenario():
            broken = FakeTransport("broken", ["x"], fail_connect=True)
            registry = _registry(broken=broken, good=FakeTransport("good", ["ok"]))
            registered = await registry.initialize_from_config({
                "broken": {"command": "nope"},
                "good": {"command": "yes", "args": ["-v"], "env": {"A": "1"}},
            })
            tools = await registry.get_available_tools()
            return registered, [t.name for t in tools], registry.server_names, broken.disconnects

        registered, tools, servers, broken_disconnects = _run(scenario())
        self.assertEqual(registered, ["good"])
        self.assertEqual(tools, ["ok"])
        self.assertEqual(servers, ["good"])
        self.assertEqual(broken_disconnects, 1)

    def test_registration_logs_carry_server_name(self):
        async def scenario():
            registry = _registry(
                fs=FakeTransport("fs", ["read"]),
                broken=FakeTransport("broken", ["x"], fail_connect=True),
            )
            await _add(registry, "fs", "broken")

        with self.assertLogs("agentic_core.core.tool_registry", level="INFO") as captured:
            _run(scenario())

        registered = next(r for r in captured.records if r.getMessage().startswith("Registered MCP server 'fs'"))
        failed = next(r for r in captured.records if r.getMessage().startswith("Failed to register"))
        self.assertEqual(registered.server_name, "fs")
        self.assertEqual(failed.server_name, "broken")

    def test_server_without_command_is_skipped(self):
        async def scenario():
            registry = _registry()
            return await registry.initialize_from_config({"empty": {"args": []}})

        self.assertEqual(_run(scenario()), [])

    def test_duplicate_tool_name_first_registration_wins(self):
        async def scenario():
            first = FakeTransport("first", ["search", "a"])
            second = FakeTransport("second", ["search", "b"])
            registry = _registry(first=first, second=second)
            await _add(registry, "first", "second")
            owner = await registry.get_server_for_tool("search")
            names = [t.name for t in await registry.get_available_tools()]
            result = await registry.call_tool(tool_call("search"))
            return owner, names, result.content, len(second.calls)

        owner, names, content, second_calls = _run(scenario())
        self.assertEqual(owner, "first")
        self.assertEqual(names, ["search", "a", "b"])
        self.assertEqual(content, "first:search")
        self.assertEqual(second_calls, 0)

    def test_every_catalog_tool_has_exactly_one_route(self):
        async def scenario():
            registry = _registry(
                one=FakeTransport("one", ["t1", "t2"]),
                two=FakeTransport("two", ["t2", "t3"]),
            )
            await _add(registry, "one", "two")
            tools = await registry.get_available_tools()
            return [t.name for t in tools], registry.tool_to_server

        names, routes = _run(scenario())
        self.assertEqual(sorted(names), sorted(routes.keys()))
        self.assertEqual(len(names), len(set(names)))

    def test_readding_server_replaces_it(self):
        async def scenario():
            old = FakeTransport("svc", ["old_tool"])
            registry = _registry(svc=old)
            await registry.add_server("svc", "cmd")
            new = FakeTransport("svc", ["new_tool"])
            registry.transport_factory = factory_for({"svc": new})
            await registry.add_server("svc", "cmd")
            return [t.name for t in await registry.get_available_tools()], old.disconnects

        names, old_disconnects = _run(scenario())
        self.assertEqual(names, ["new_tool"])
        self.assertEqual(old_disconnects, 1)


class TestEnableDisable(unittest.TestCase):

    def test_filters(self):
        async def scenario():
            registry = _registry(s=FakeTransport("s", ["a", "b", "c"]))
            await _add(registry, "s")
            await registry.set_tool_enabled("b", False)
            enabled = [t.name for t in await registry.get_enabled_tools()]
            available = [t.name for t in await registry.get_available_tools()]
            b_enabled = await registry.is_tool_enabled("b")
            await registry.disable_all()
            none_enabled = await registry.get_enabled_tools()
            await registry.enable_all()
            all_enabled = [t.name for t in await registry.get_enabled_tools()]
            return enabled, available, b_enabled, none_enabled, all_enabled

        enabled, available, b_enabled, none_enabled, all_enabled = _run(scenario())
        self.assertEqual(enabled, ["a", "c"])
        self.assertEqual(available, ["a", "b", "c"])
        self.assertFalse(b_enabled)
        self.assertEqual(none_enabled, [])
        self.assertEqual(all_enabled, ["a", "b", "c"])

    def test_set_unknown_tool_raises(self):
        async def scenario():
            registry = _registry()
            await registry.set_tool_enabled("ghost", True)

        with self.assertRaises(ToolNotFoundError):
            _run(scenario())


class TestCallTool(unittest.TestCase):

    def test_routes_to_owner(self):
        async def scenario():
            registry = _registry(
                alpha=FakeTransport("alpha", ["a"]),
                beta=FakeTransport("beta", ["b"]),
            )
            await _add(registry, "alpha", "beta")
            return (await registry.call_tool(tool_call("a"))).content, (await registry.call_tool(tool_call("b"))).content

        self.assertEqual(_run(scenario()), ("alpha:a", "beta:b"))

    def test_unknown_tool(self):
        async def scenario():
            registry = _registry(alpha=FakeTransport("alpha", ["a"]))
            await _add(registry, "alpha")
            await registry.call_tool(tool_call("missing"))

        with self.assertRaises(ToolNotFoundError) as ctx:
            _run(scenario())
        self.assertEqual(str(ctx.exception), "Tool missing not found")

    def test_transport_error_propagates(self):
        def boom(call):
            raise TransportError("pipe closed")

        async def scenario():
            registry = _registry(s=FakeTransport("s", ["t"], behaviour={"t": boom}))
            await _add(registry, "s")
            await registry.call_tool(tool_call("t"))

        with self.assertRaises(TransportError):
            _run(scenario())

    def test_calls_to_same_server_are_serialized(self):
        async def scenario():
            transport = FakeTransport("s", ["t"], call_delay=0.02)
            registry = _registry(s=transport)
            await _add(registry, "s")
            await asyncio.gather(*(registry.call_tool(tool_call("t", f"c{i}")) for i in range(5)))
            return transport.max_active, len(transport.calls)

        self.assertEqual(_run(scenario()), (1, 5))

    def test_calls_to_different_servers_overlap(self):
        async def scenario():
            one = FakeTransport("one", ["a"], call_delay=0.05)
            two = FakeTransport("two", ["b"], call_delay=0.05)
            registry = _registry(one=one, two=two)
            await _add(registry, "one", "two")

            started = asyncio.Event()

            async def watch():
                while not (one.active and two.active):
                    await asyncio.sleep(0.001)
                started.set()

            watcher = asyncio.create_task(watch())
            await asyncio.gather(registry.call_tool(tool_call("a")), registry.call_tool(tool_call("b")))
            await asyncio.wait_for(watcher, timeout=1)
            return started.is_set()

        self.assertTrue(_run(scenario()))


class TestRemoveAndShutdown(unittest.TestCase):

    def test_remove_server_drops_its_tools(self):
        async def scenario():
            keep = FakeTransport("keep", ["k"])
            drop = FakeTransport("drop", ["d1", "d2"])
            registry = _registry(keep=keep, drop=drop)
            await _add(registry, "keep", "drop")
            await registry.remove_server("drop")
            return (
                [t.name for t in await registry.get_available_tools()],
                await registry.get_tool_states(),
                registry.server_names,
                drop.connected,
            )

        names, states, servers, drop_connected = _run(scenario())
        self.assertEqual(names, ["k"])
        self.assertEqual(states, {"k": True})
        self.assertEqual(servers, ["keep"])
        self.assertFalse(drop_connected)

    def test_remove_unknown_server(self):
        with self.assertRaises(ServerNotFoundError):
            _run(_registry().remove_server("nope"))

    def test_async_with_shuts_everything_down(self):
        async def scenario():
            a = FakeTransport("a", ["x"])
            b = FakeTransport("b", ["y"])
            async with _registry(a=a, b=b) as registry:
                await _add(registry, "a", "b")
            return a.connected, b.connected, registry.server_names, await registry.get_available_tools()

        a_connected, b_connected, servers, tools = _run(scenario())
        self.assertFalse(a_connected)
        self.assertFalse(b_connected)
        self.assertEqual(servers, [])
        self.assertEqual(tools, [])


class TestRegistryWithRealServers(unittest.TestCase):

    def test_two_stdio_servers_with_overlapping_tools(self):
        async def scenario():
            async with ToolRegistry() as registry:
                registered = await registry.initialize_from_config({
                    "first": {
                        "command": sys.executable,
                        "args": [FAKE_SERVER],
                        "env": {"FAKE_MCP_TOOLS": "echo,add", "FAKE_MCP_TAG": "first:"},
                    },
                    "second": {
                        "command": sys.executable,
                        "args": [FAKE_SERVER],
                        "env": {"FAKE_MCP_TOOLS": "echo,raw", "FAKE_MCP_TAG": "second:"},
                    },
                    "missing": {"command": "/nonexistent/mcp-server"},
                })
                names = sorted(t.name for t in await registry.get_enabled_tools())
                echoed = await registry.call_tool(tool_call("echo", text="hi"))
                raw = await registry.call_tool(tool_call("raw"))
                return registered, names, echoed, raw

        registered, names, echoed, raw = _run(scenario())
        self.assertEqual(registered, ["first", "second"])
        self.assertEqual(names, ["add", "echo", "raw"])
        self.assertEqual(echoed, ToolResult(content="first:hi"))
        self.assertEqual(raw.content, "plain string result")


if __name__ == "__main__":
    unittest.main()
