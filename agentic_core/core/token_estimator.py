"""
Token Estimator — character-based token approximation.

Uses ~4 characters per token. This feeds only the summarization trigger,
so it is deliberately provider-agnostic rather than exact.
"""

from __future__ import annotations

import json
import math
from typing import Iterable, Optional

from .models import Attachment, Message

CHARS_PER_TOKEN = 4.0


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate token count for a string (ceiling of chars / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_attachment_tokens(attachments: Iterable[Attachment]) -> int:
    total = 0
    for attachment in attachments:
        total += estimate_tokens(attachment.file_path)
        total += estimate_tokens(attachment.file_name)
        total += estimate_tokens(attachment.mime_type)
        if attachment.content:
            total += estimate_tokens(attachment.content)
    return total


def estimate_message_tokens(message: Message) -> int:
    """
    Estimate tokens for one message.

    Counts the content, each tool call's id, name and serialized
    parameters, and any attachments.
    """
    total = estimate_tokens(message.content)
    if message.tool_calls:
        for call in message.tool_calls:
            total += estimate_tokens(call.id)
            total += estimate_tokens(call.name)
            total += estimate_tokens(json.dumps(call.parameters, default=str))
    if message.attachments:
        total += estimate_attachment_tokens(message.attachments)
    return total


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)


def estimate_context_tokens(messages: Iterable[Message], system_prompt: Optional[str] = None) -> int:
    """Total context size including an out-of-band system prompt."""
    return estimate_tokens(system_prompt) + estimate_messages_tokens(messages)
