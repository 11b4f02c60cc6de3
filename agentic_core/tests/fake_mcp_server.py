"""
Fake MCP tool server for transport and registry tests.

Speaks newline-delimited JSON-RPC 2.0 on stdin/stdout like a real server.
Behaviour is controlled through environment variables:

  FAKE_MCP_TOOLS        comma-separated tool names to expose (default: all)
  FAKE_MCP_TAG          text prefixed to echo results, to tell servers apart
  FAKE_MCP_NOTIFY       "1": send a notification before every response
  FAKE_MCP_SERVER_REQUEST "1": send a ``ping`` request reusing the
                        in-flight id before every response
  FAKE_MCP_INIT_ERROR   "1": reject ``initialize`` with an RPC error
  FAKE_MCP_CRASH_MARKER path; the ``crash`` tool exits the process the
                        first time (creating the marker), then answers

Tools:
  echo   returns arguments["text"]
  add    returns a + b
  fail   RPC error object
  flaky  content result flagged isError
  raw    result is a bare JSON string
  weird  result of an unexpected shape
  empty  response with neither result nor error
  slow   sleeps arguments["seconds"] then answers "slow done"
  crash  see FAKE_MCP_CRASH_MARKER
  nullcode RPC error object whose code is null
"""

import json
import os
import sys
import time

ALL_TOOLS = ["echo", "add", "fail", "flaky", "raw", "weird", "empty", "slow", "crash", "nullcode"]


def send(payload):
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def text_result(text, is_error=False):
    result = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def tool_entries(names):
    entries = [
        {
            "name": name,
            "description": f"Fake {name} tool",
            "inputSchema": {"type": "object", "properties": {}},
        }
        for name in names
    ]
    # Malformed entry: clients must skip it
    entries.append({"description": "entry without a name"})
    return entries


def handle_call(request_id, name, arguments):
    tag = os.environ.get("FAKE_MCP_TAG", "")

    if name == "echo":
        send({"jsonrpc": "2.0", "id": request_id, "result": text_result(tag + str(arguments.get("text", "")))})
    elif name == "add":
        send({"jsonrpc": "2.0", "id": request_id, "result": text_result(str(arguments["a"] + arguments["b"]))})
    elif name == "fail":
        send({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32000, "message": "tool exploded"}})
    elif name == "flaky":
        send({"jsonrpc": "2.0", "id": request_id, "result": text_result("partial failure", is_error=True)})
    elif name == "raw":
        send({"jsonrpc": "2.0", "id": request_id, "result": "plain string result"})
    elif name == "weird":
        send({"jsonrpc": "2.0", "id": request_id, "result": {"unexpected": 1}})
    elif name == "empty":
        send({"jsonrpc": "2.0", "id": request_id})
    elif name == "slow":
        time.sleep(float(arguments.get("seconds", 0.5)))
        send({"jsonrpc": "2.0", "id": request_id, "result": text_result("slow done")})
    elif name == "crash":
        marker = os.environ.get("FAKE_MCP_CRASH_MARKER", "")
        if marker and not os.path.exists(marker):
            with open(marker, "w") as f:
                f.write("crashed")
            sys.exit(1)
        send({"jsonrpc": "2.0", "id": request_id, "result": text_result("recovered")})
    elif name == "nullcode":
        send({"jsonrpc": "2.0", "id": request_id, "error": {"code": None, "message": "tool exploded"}})
    else:
        send({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32601, "message": f"Unknown tool {name}"}})


def main():
    exposed = os.environ.get("FAKE_MCP_TOOLS")
    names = [n for n in exposed.split(",") if n] if exposed else list(ALL_TOOLS)
    notify = os.environ.get("FAKE_MCP_NOTIFY") == "1"
    server_request = os.environ.get("FAKE_MCP_SERVER_REQUEST") == "1"

    sys.stderr.write("fake mcp server started\n")
    sys.stderr.flush()

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        message = json.loads(line)
        request_id = message.get("id")
        method = message.get("method")

        if request_id is None:
            continue  # notification

        if notify:
            send({"jsonrpc": "2.0", "method": "notifications/message", "params": {"level": "info"}})
        if server_request:
            send({"jsonrpc": "2.0", "id": request_id, "method": "ping"})

        if method == "initialize":
            if os.environ.get("FAKE_MCP_INIT_ERROR") == "1":
                send({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32602, "message": "bad protocol"}})
            else:
                send({"jsonrpc": "2.0", "id": request_id, "result": {
                    "protocolVersion": message["params"]["protocolVersion"],
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": "fake", "version": "1.0"},
                }})
        elif method == "tools/list":
            send({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tool_entries(names)}})
        elif method == "tools/call":
            params = message.get("params") or {}
            handle_call(request_id, params.get("name"), params.get("arguments") or {})
        else:
            send({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32601, "message": "Method not found"}})


if __name__ == "__main__":
    main()
