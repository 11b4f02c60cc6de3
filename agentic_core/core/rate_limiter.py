"""
Rate Limit Handler — retry/backoff decisions for model backend HTTP calls.

Shared by every provider adapter. On a 429 (or a provider error body that
reads like one) the adapter builds a RateLimitInfo and hands it to
``handle_rate_limit``, which either sleeps and lets the adapter retry or
raises RateLimitError once the retry budget is spent.

Usage::

    handler = RateLimitHandler(provider="openai", max_retries=3)
    attempt = 0
    while True:
        response = await client.post(...)
        if RateLimitHandler.is_rate_limit(response.status_code):
            info = handler.extract_rate_limit_info(response.headers, attempt)
            await handler.handle_rate_limit(info)   # raises when exhausted
            attempt += 1
            continue
        break
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

from .error_catalog import RateLimitError
from .models import RateLimitInfo

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 60
JITTER_RATIO = 0.25

# Substrings that identify a rate-limit error body, per backend
_RATE_LIMIT_MARKERS: dict[str, tuple[str, ...]] = {
    "openai": ("rate_limit_error", "rate limit", "quota_exceeded"),
    "anthropic": ("rate_limit_error", "rate limit", "too_many_requests"),
    "gemini": ("RESOURCE_EXHAUSTED", "quota", "rate limit"),
    "ollama": ("rate limit", "too many requests"),
}
_DEFAULT_MARKERS = ("rate limit", "too many requests", "429")


class RateLimitHandler:
    """Computes backoff delays and enforces the retry budget for one backend."""

    def __init__(
        self,
        provider: str = "openai",
        max_retries: int = 3,
        backoff_base: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._sleep = sleep

    @classmethod
    def from_profile(cls, profile, **kwargs) -> "RateLimitHandler":
        return cls(
            provider=profile.backend,
            max_retries=profile.max_retries,
            backoff_base=profile.retry_backoff_base,
            **kwargs,
        )

    # ── Decisions ──────────────────────────────────────────────

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def calculate_backoff_delay(self, attempt: int) -> int:
        """Exponential backoff in whole seconds with ±25% jitter, capped at 60."""
        if attempt == 0:
            return 1

        delay = int(self.backoff_base ** attempt)
        jitter_range = int(delay * JITTER_RATIO)
        jittered = delay - jitter_range + random.randint(0, jitter_range * 2)
        return min(jittered, MAX_BACKOFF_SECONDS)

    @staticmethod
    def is_rate_limit(status: int) -> bool:
        return status == 429

    def is_rate_limit_message(self, error_text: str) -> bool:
        markers = _RATE_LIMIT_MARKERS.get(self.provider, _DEFAULT_MARKERS)
        return any(marker in error_text for marker in markers)

    # ── Header parsing ─────────────────────────────────────────

    @staticmethod
    def parse_retry_after(value: Optional[str]) -> Optional[int]:
        """
        Parse a Retry-After header.

        Accepts integer seconds or an RFC 7231 HTTP-date. A date in the past
        (or anything unparseable) yields None.
        """
        if value is None:
            return None
        value = value.strip()
        if value.isdigit():
            return int(value)

        try:
            retry_at = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
        if retry_at is None:
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)

        remaining = (retry_at - datetime.now(timezone.utc)).total_seconds()
        if remaining <= 0:
            return None
        return int(remaining)

    def extract_rate_limit_info(self, headers: Mapping[str, str], attempt: int) -> RateLimitInfo:
        """Build RateLimitInfo from response headers (lookup is case-insensitive)."""
        lowered = {k.lower(): v for k, v in headers.items()}
        return RateLimitInfo(
            provider=self.provider,
            attempt_count=attempt,
            retry_after_seconds=self.parse_retry_after(lowered.get("retry-after")),
            remaining_requests=_parse_int(lowered.get("x-ratelimit-remaining")),
            reset_time=_parse_int(lowered.get("x-ratelimit-reset")),
        )

    # ── Handling ───────────────────────────────────────────────

    async def handle_rate_limit(self, info: RateLimitInfo) -> None:
        """Sleep before the next attempt, or raise RateLimitError when exhausted."""
        if not self.should_retry(info.attempt_count):
            raise RateLimitError(info)

        if info.retry_after_seconds is not None:
            delay = info.retry_after_seconds
        else:
            delay = self.calculate_backoff_delay(info.attempt_count)

        logger.warning(
            f"Rate limit reached for {self.provider} provider. Retrying in {delay} seconds "
            f"(attempt {info.attempt_count + 1}/{self.max_retries})."
        )
        await self._sleep(delay)


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None
