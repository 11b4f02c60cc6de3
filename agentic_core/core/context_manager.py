"""
Context Manager — keeps conversation history inside the model's context window.

Strategy:
  1. Estimate token usage (~4 chars per token, see token_estimator)
  2. When usage / window >= threshold, split history into:
       - the leading system message (if any), always kept
       - the last ``keep_recent_pairs`` exchanges (2 messages each), kept
       - everything in between, summarized by the model
  3. Replace the middle with one synthetic assistant message holding
     the summary, inserted right after the system message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import Message, Role
from .token_estimator import estimate_messages_tokens

if TYPE_CHECKING:
    from .providers.base import BaseLLMProvider

logger = logging.getLogger(__name__)


SUMMARY_SYSTEM_PROMPT = "You are a helpful assistant that summarizes conversations concisely."

SUMMARY_INSTRUCTION = (
    "Please provide a concise summary of the following conversation history. "
    "Focus on key topics, decisions, and important information. "
    "Keep it under 200 words:\n\n"
)

SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_TOKENS = 200


@dataclass
class ContextStats:
    """Snapshot of context usage for display."""
    total_tokens: int
    window_size: int
    usage_ratio: float
    message_count: int

    @property
    def level(self) -> str:
        """Coarse usage band: ok / elevated / high / critical."""
        if self.usage_ratio < 0.5:
            return "ok"
        if self.usage_ratio < 0.7:
            return "elevated"
        if self.usage_ratio < 0.9:
            return "high"
        return "critical"


class ContextManager:
    """Decides when history must be summarized and rewrites the message list."""

    def __init__(self, keep_recent_pairs: int = 5):
        """
        Args:
            keep_recent_pairs: Number of recent user/assistant exchanges kept
                verbatim when summarizing (5 pairs = 10 messages).
        """
        self.keep_recent_pairs = keep_recent_pairs

    @property
    def keep_count(self) -> int:
        return self.keep_recent_pairs * 2

    # ── Trigger ──────────────────────────────────────────────

    def should_summarize(self, current_tokens: int, window_size: int, threshold: float) -> bool:
        """True when current_tokens / window_size reaches the threshold."""
        if window_size <= 0:
            return False
        return current_tokens / window_size >= threshold

    # ── Partition ────────────────────────────────────────────

    def build_summarization_messages(self, messages: list[Message]) -> list[Message]:
        """Messages between the leading system message and the retained tail."""
        if len(messages) <= self.keep_count:
            return []

        start = 1 if messages and messages[0].role == Role.SYSTEM else 0
        end = len(messages) - self.keep_count
        if start >= end:
            return []
        return list(messages[start:end])

    def get_messages_to_keep(self, messages: list[Message]) -> list[Message]:
        """The leading system message (if present) plus the last 2·K messages."""
        if len(messages) <= self.keep_count:
            return list(messages)

        kept: list[Message] = []
        if messages and messages[0].role == Role.SYSTEM:
            kept.append(messages[0])
        kept.extend(messages[len(messages) - self.keep_count:])
        return kept

    # ── Summarization ────────────────────────────────────────

    @staticmethod
    def render_transcript(messages: list[Message]) -> str:
        return "".join(f"{m.role.label}: {m.content}\n\n" for m in messages)

    async def summarize(self, provider: "BaseLLMProvider", to_summarize: list[Message]) -> str:
        """
        Ask the model for a short summary of ``to_summarize``.

        Errors from the provider propagate; the caller decides whether
        summarization failure is fatal.
        """
        if not to_summarize:
            return ""

        request = [
            Message(role=Role.SYSTEM, content=SUMMARY_SYSTEM_PROMPT),
            Message(role=Role.USER, content=SUMMARY_INSTRUCTION + self.render_transcript(to_summarize)),
        ]
        response = await provider.send_with_tools(
            request,
            [],
            temperature=SUMMARY_TEMPERATURE,
            max_tokens=SUMMARY_MAX_TOKENS,
        )
        return response.content

    def build_summarized_history(self, messages: list[Message], summary: str) -> list[Message]:
        """Kept messages with the summary inserted after the system message."""
        kept = self.get_messages_to_keep(messages)
        summary_message = Message(
            role=Role.ASSISTANT,
            content=f"[Previous conversation summarized: {summary}]",
        )
        insert_at = 1 if kept and kept[0].role == Role.SYSTEM else 0
        kept.insert(insert_at, summary_message)
        return kept

    # ── Fallback truncation ──────────────────────────────────

    def truncate_context(
        self,
        messages: list[Message],
        max_tokens: int,
        system_prompt_tokens: int = 0,
    ) -> list[Message]:
        """
        Sliding-window truncation without a model call.

        Keeps the system message plus recent messages, then drops the oldest
        non-system messages until the estimate fits ``max_tokens``.
        """
        available = max(0, max_tokens - system_prompt_tokens)
        result = self.get_messages_to_keep(messages)
        if estimate_messages_tokens(result) <= available:
            return result
        head = [result.pop(0)] if result and result[0].role == Role.SYSTEM else []
        while estimate_messages_tokens(result) > available and len(result) > 1:
            result.pop(0)
        logger.info(f"Truncated context to {len(head) + len(result)} messages")
        return head + result

    def get_context_stats(self, messages: list[Message], window_size: int) -> ContextStats:
        total = estimate_messages_tokens(messages)
        ratio = total / window_size if window_size > 0 else 0.0
        return ContextStats(
            total_tokens=total,
            window_size=window_size,
            usage_ratio=ratio,
            message_count=len(messages),
        )
