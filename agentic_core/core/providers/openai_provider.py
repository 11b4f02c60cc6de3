"""
OpenAI-compatible LLM Provider.

Speaks the Chat Completions wire format over httpx, so it also covers
OpenAI-compatible gateways (OpenRouter, vLLM, LM Studio, ...). Tool calls
use the native ``tools`` / ``tool_calls`` fields.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Optional

from .base import BaseLLMProvider, ProviderFactory, render_content
from ..error_catalog import ErrorCode, LLMError
from ..models import ChatResponse, Message, Role, ToolCall, ToolDefinition

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """Chat Completions adapter with native function calling."""

    backend_name = "openai"
    default_endpoint = "https://api.openai.com/v1/chat/completions"

    async def send_with_tools(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        payload = self._build_payload(messages, tools, temperature, max_tokens)
        data = await self._post_json(payload)
        return self._parse_response(data)

    async def send_stream(
        self,
        messages: list[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Yield content deltas from the server-sent event stream."""
        payload = self._build_payload(messages, [], temperature, max_tokens)
        payload["stream"] = True

        async for line in self._stream_lines(payload):
            if not line.startswith("data: "):
                continue
            data = line[len("data: "):].strip()
            if data == "[DONE]":
                break
            try:
                chunk = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"Skipping unparseable stream chunk: {data[:200]}")
                continue
            for choice in chunk.get("choices") or []:
                text = (choice.get("delta") or {}).get("content")
                if text:
                    yield text

    # ── Request shaping ────────────────────────────────────────

    def _build_payload(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict:
        payload = {
            "model": self.model,
            "messages": [self._convert_message(m) for m in messages],
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
        return payload

    @staticmethod
    def _convert_message(message: Message) -> dict:
        converted: dict = {"role": message.role.value, "content": render_content(message)}
        if message.role == Role.TOOL:
            converted["tool_call_id"] = message.tool_call_id
        if message.tool_calls:
            converted["content"] = converted["content"] or None
            converted["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.params_json},
                }
                for tc in message.tool_calls
            ]
        return converted

    # ── Response parsing ───────────────────────────────────────

    def _parse_response(self, data: dict) -> ChatResponse:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise LLMError(
                f"No response from {self.provider_name}",
                code=ErrorCode.PROVIDER_INVALID_RESPONSE,
            )

        message = choices[0].get("message") or {}
        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            tool_calls.append(ToolCall(
                id=tc.get("id") or ToolCall.generate_id(),
                name=function.get("name", ""),
                parameters=_parse_arguments(function.get("arguments")),
            ))

        usage = None
        if isinstance(data.get("usage"), dict):
            usage = {
                "input_tokens": data["usage"].get("prompt_tokens", 0),
                "output_tokens": data["usage"].get("completion_tokens", 0),
            }

        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            usage=usage,
        )


def _parse_arguments(arguments) -> dict:
    """Tool arguments arrive as a JSON string; fall back to {} when garbled."""
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except (TypeError, json.JSONDecodeError):
        logger.warning(f"Could not parse tool call arguments: {str(arguments)[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


ProviderFactory.register("openai", OpenAIProvider)
