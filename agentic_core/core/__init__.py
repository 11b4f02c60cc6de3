"""Agentic loop, tool registry, MCP transport, context and rate-limit handling."""
