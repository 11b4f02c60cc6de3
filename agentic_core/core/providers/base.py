"""
Abstract base class for LLM providers.

Every backend adapter implements ``send_with_tools`` (and optionally a real
``send_stream``). HTTP calls go through ``_post_json`` / ``_stream_lines``,
which apply the shared RateLimitHandler: 429s (or error bodies that read
like a rate limit) are slept on and retried until the retry budget is spent.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

import httpx

from ..error_catalog import ConfigError, ErrorCode, LLMError
from ..models import ChatResponse, Message, ToolDefinition
from ..rate_limiter import RateLimitHandler

logger = logging.getLogger(__name__)


def render_content(message: Message) -> str:
    """Message content with attachments folded in as text."""
    content = message.content
    for attachment in message.attachments or []:
        if attachment.mime_type.startswith("image/"):
            content += f"\n[Image: {attachment.file_name} - {attachment.file_size} bytes]"
        elif attachment.mime_type.startswith("text/"):
            if attachment.content is not None:
                content += f"\n\nFile: {attachment.file_name}\nContent:\n{attachment.content}"
        else:
            content += f"\nFile attached: {attachment.file_name} ({attachment.file_size} bytes)"
    return content


class BaseLLMProvider(ABC):
    """Abstract LLM provider interface."""

    backend_name = "openai"
    default_endpoint = ""

    def __init__(
        self,
        model: str,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout: float = 300,
        rate_limiter: Optional[RateLimitHandler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.endpoint = endpoint or self.default_endpoint
        # Kept private and masked in repr so it never lands in logs
        self._api_key = api_key or ""
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimitHandler(provider=self.backend_name)
        self._transport = transport

    @property
    def api_key(self) -> str:
        return self._api_key

    def __repr__(self) -> str:
        masked = f"***{self._api_key[-4:]}" if len(self._api_key) > 4 else "***"
        return (
            f"{self.__class__.__name__}(model={self.model!r}, "
            f"endpoint={self.endpoint!r}, api_key={masked!r})"
        )

    @property
    def provider_name(self) -> str:
        return self.backend_name

    @abstractmethod
    async def send_with_tools(
        self,
        messages: list[Message],
        tools: list[ToolDefinition],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        """
        Send the conversation plus the tool catalog and return the reply.

        Raises LLMError (RateLimitError once retries are exhausted).
        """

    async def send_stream(
        self,
        messages: list[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """
        Stream response text chunks.

        Default implementation: falls back to one non-streaming call and
        yields the full text. Override in subclasses for true streaming.
        """
        response = await self.send_with_tools(messages, [], temperature, max_tokens)
        if response.content:
            yield response.content

    # ── HTTP helpers ───────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _is_rate_limited(self, status: int, body: str) -> bool:
        if RateLimitHandler.is_rate_limit(status):
            return True
        return status >= 400 and self.rate_limiter.is_rate_limit_message(body)

    async def _post_json(self, payload: dict) -> Any:
        """POST ``payload`` to the endpoint, retrying on rate limits."""
        attempt = 0
        async with self._client() as client:
            while True:
                try:
                    response = await client.post(self.endpoint, json=payload, headers=self._headers())
                except httpx.HTTPError as e:
                    raise LLMError(f"{self.provider_name} request failed: {e}") from e

                if self._is_rate_limited(response.status_code, response.text):
                    info = self.rate_limiter.extract_rate_limit_info(response.headers, attempt)
                    await self.rate_limiter.handle_rate_limit(info)
                    attempt += 1
                    continue

                if response.is_error:
                    raise LLMError(
                        f"{self.provider_name} API error ({response.status_code}): {response.text}"
                    )
                try:
                    return response.json()
                except ValueError as e:
                    raise LLMError(
                        f"{self.provider_name} returned invalid JSON: {e}",
                        code=ErrorCode.PROVIDER_INVALID_RESPONSE,
                    ) from e

    async def _stream_lines(self, payload: dict) -> AsyncIterator[str]:
        """Streaming POST; yields raw response lines, retrying on rate limits."""
        attempt = 0
        async with self._client() as client:
            while True:
                try:
                    async with client.stream(
                        "POST", self.endpoint, json=payload, headers=self._headers()
                    ) as response:
                        if not response.is_error:
                            async for line in response.aiter_lines():
                                yield line
                            return
                        body = (await response.aread()).decode(errors="replace")
                        headers = response.headers
                        status = response.status_code
                except httpx.HTTPError as e:
                    raise LLMError(f"{self.provider_name} stream failed: {e}") from e

                if not self._is_rate_limited(status, body):
                    raise LLMError(f"{self.provider_name} API error ({status}): {body}")
                info = self.rate_limiter.extract_rate_limit_info(headers, attempt)
                await self.rate_limiter.handle_rate_limit(info)
                attempt += 1


class ProviderFactory:
    """Select the adapter for a backend name."""

    _providers: dict[str, type[BaseLLMProvider]] = {}

    @classmethod
    def register(cls, name: str, provider_class: type[BaseLLMProvider]) -> None:
        cls._providers[name] = provider_class

    @classmethod
    def available(cls) -> list[str]:
        return sorted(cls._providers)

    @classmethod
    def create(cls, profile, **kwargs) -> BaseLLMProvider:
        """
        Create a provider from an LLMProfile.

        The profile's ``backend`` picks the adapter; retry settings feed the
        adapter's RateLimitHandler. Extra kwargs (e.g. ``transport``) are
        passed to the adapter.
        """
        provider_class = cls._providers.get(profile.backend)
        if provider_class is None:
            raise ConfigError(
                f"Unknown LLM backend: {profile.backend}. Available: {cls.available()}"
            )
        kwargs.setdefault("rate_limiter", RateLimitHandler.from_profile(profile))
        return provider_class(
            model=profile.model,
            endpoint=profile.endpoint or None,
            api_key=profile.api_key,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
            **kwargs,
        )
