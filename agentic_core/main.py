"""
agentic-core — run one tool-augmented conversation from the command line.

    agentic-core -c config.yaml --mcp-config mcp.json "List the files in /tmp"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from .config.settings import Config, get_profile, load_config, load_mcp_config
from .core.agent import AgenticLoop
from .core.context_manager import ContextManager
from .core.error_catalog import AgenticError
from .core.event_channel import EventChannel
from .core.models import Message, Role
from .core.providers import ProviderFactory
from .core.stream_events import (
    AgentUpdate, AssistantComplete, ContextSummarized, ModelError, ToolError,
    ToolResultEvent, ToolStarted, event_to_dict,
)
from .core.structured_logger import StructuredLogger, setup_structured_logging
from .core.tool_logger import ToolLogger
from .core.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agentic-core",
        description="Tool-augmented agent: drives a model and MCP tool servers until a final answer.",
    )
    parser.add_argument("prompt", help="User message to start the conversation with")
    parser.add_argument("-c", "--config", help="Path to a YAML config overlaying the defaults")
    parser.add_argument("--mcp-config", help="Path to a Claude Desktop style MCP server JSON")
    parser.add_argument("-p", "--profile", help="LLM profile name (default: the config's 'default')")
    parser.add_argument("--system", help="Optional system prompt")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: logging.level from config)",
    )
    parser.add_argument(
        "--json-events",
        action="store_true",
        help="Print every event as a JSON line instead of a readable summary",
    )
    return parser.parse_args(argv)


def render_event(event: AgentUpdate) -> Optional[str]:
    """One readable line per interesting event; None for the rest."""
    if isinstance(event, ToolStarted):
        return f"  → {event.name} {event.params_json}"
    if isinstance(event, ToolError):
        retry = " (retrying)" if event.retryable else ""
        return f"  ✗ {event.name}: {event.error}{retry}"
    if isinstance(event, ToolResultEvent):
        preview = event.result_json if len(event.result_json) <= 200 else event.result_json[:200] + "…"
        marker = "✗" if event.is_error else "✓"
        return f"  {marker} {event.name}: {preview}"
    if isinstance(event, AssistantComplete) and event.full_text.strip():
        return f"assistant: {event.full_text}"
    if isinstance(event, ContextSummarized):
        return f"  [context summarized: {event.old_count} → {event.new_count} messages]"
    if isinstance(event, ModelError):
        return f"  [model error] {event.error}"
    return None


async def _print_events(channel: EventChannel, json_events: bool) -> None:
    async for event in channel:
        if json_events:
            print(json.dumps(event_to_dict(event), default=str), flush=True)
        else:
            line = render_event(event)
            if line:
                print(line, flush=True)


async def run(args: argparse.Namespace, config: Config) -> str:
    profile = get_profile(config, args.profile)
    provider = ProviderFactory.create(profile)
    logger.info(f"Using {provider!r}")

    tool_log = config.get("agent.tool_log")
    tool_logger = ToolLogger(tool_log) if tool_log else None

    channel = EventChannel()
    printer = asyncio.create_task(_print_events(channel, args.json_events))

    messages = []
    if args.system:
        messages.append(Message(role=Role.SYSTEM, content=args.system))
    messages.append(Message(role=Role.USER, content=args.prompt))

    try:
        async with ToolRegistry() as registry:
            servers = load_mcp_config(args.mcp_config or config.get("mcp.config_path"))
            await registry.initialize_from_config(servers)

            loop = AgenticLoop.from_profile(
                registry,
                provider,
                profile,
                context_manager=ContextManager(keep_recent_pairs=config.get("agent.keep_recent_pairs", 5)),
                tool_timeout=float(config.get("agent.tool_timeout", 20)),
                max_tool_retries=int(config.get("agent.max_tool_retries", 2)),
                tool_logger=tool_logger,
                max_iterations=config.get("agent.max_iterations"),
            )
            return await loop.process(
                messages,
                channel,
                conversation_id=StructuredLogger.generate_conversation_id(),
            )
    finally:
        channel.close()
        await printer
        if tool_logger:
            tool_logger.close()


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except AgenticError as e:
        print(e.full_message(), file=sys.stderr)
        sys.exit(2)

    setup_structured_logging(level=args.log_level or config.get("logging.level", "WARNING"))

    try:
        final_text = asyncio.run(run(args, config))
    except AgenticError as e:
        print(e.full_message(), file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)

    if not args.json_events:
        print()
        print(final_text)


if __name__ == "__main__":
    main()
