"""
Ollama LLM Provider.

Uses Ollama's native ``/api/chat`` endpoint with its ``tools`` field.
Tool call arguments come back as objects and carry no ids, so ids are
generated locally. Streaming responses are newline-delimited JSON.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Optional

from .base import BaseLLMProvider, ProviderFactory, render_content
from ..error_catalog import ErrorCode, LLMError
from ..models import ChatResponse, Message, ToolCall, ToolDefinition

logger = logging.getLogger(__name__)


class OllamaProvider(BaseLLMProvider):
    """Ollama provider with native tool calling."""

    backend_name = "ollama"
    default_endpoint = "http://localhost:11434/api/chat"

    async def send_with_tools(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        payload = self._build_payload(messages, tools, temperature, max_tokens, stream=False)
        data = await self._post_json(payload)

        if not isinstance(data, dict) or "message" not in data:
            raise LLMError("No response from Ollama", code=ErrorCode.PROVIDER_INVALID_RESPONSE)

        message = data.get("message") or {}
        content = message.get("content") or ""
        logger.debug(f"Ollama response length: {len(content)} chars, done_reason={data.get('done_reason')}")

        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            arguments = function.get("arguments") or {}
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError:
                    logger.warning(f"Could not parse Ollama tool arguments: {arguments[:200]}")
                    arguments = {}
            tool_calls.append(ToolCall(
                id=tc.get("id") or ToolCall.generate_id(),
                name=function.get("name", ""),
                parameters=arguments,
            ))

        usage = None
        if "prompt_eval_count" in data or "eval_count" in data:
            usage = {
                "input_tokens": data.get("prompt_eval_count", 0),
                "output_tokens": data.get("eval_count", 0),
            }
        return ChatResponse(content=content, tool_calls=tool_calls, usage=usage)

    async def send_stream(
        self,
        messages: list[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        payload = self._build_payload(messages, [], temperature, max_tokens, stream=True)
        async for line in self._stream_lines(payload):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            chunk = (data.get("message") or {}).get("content", "")
            if chunk:
                yield chunk
            if data.get("done", False):
                break

    def _build_payload(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        temperature: Optional[float],
        max_tokens: Optional[int],
        stream: bool,
    ) -> dict:
        payload = {
            "model": self.model,
            "messages": [self._convert_message(m) for m in messages],
            "stream": stream,
            "options": {
                "temperature": self.temperature if temperature is None else temperature,
                "num_predict": self.max_tokens if max_tokens is None else max_tokens,
            },
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
        if message.tool_calls:
            converted["tool_calls"] = [
                {"function": {"name": tc.name, "arguments": tc.parameters}}
                for tc in message.tool_calls
            ]
        return converted


ProviderFactory.register("ollama", OllamaProvider)
