"""
Stream Events — typed lifecycle protocol emitted by the agentic loop.

One dataclass per lifecycle point. Every field is a plain value (ids,
strings, counts) so events serialize cleanly for cross-process observers
such as a UI or a JSON-lines log sink.
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Union


@dataclass
class PlannedTool:
    """One entry of a ToolPlanned announcement."""
    name: str
    params_json: str

    def to_dict(self) -> dict:
        return {"name": self.name, "params_json": self.params_json}


# ── Event types ──────────────────────────────────────────────────

@dataclass
class BeginTurn:
    event_type: ClassVar[str] = "BeginTurn"
    turn_id: str
    iteration: int
    conversation_id: Optional[str] = None
    plan_summary: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class AssistantDelta:
    """A chunk of streamed assistant text."""
    event_type: ClassVar[str] = "AssistantDelta"
    turn_id: str
    text_chunk: str
    seq: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class AssistantComplete:
    event_type: ClassVar[str] = "AssistantComplete"
    turn_id: str
    full_text: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ToolPlanned:
    event_type: ClassVar[str] = "ToolPlanned"
    turn_id: str
    plan_items: list[PlannedTool]
    timestamp: float = field(default_factory=time.time)


@dataclass
class ToolStarted:
    event_type: ClassVar[str] = "ToolStarted"
    turn_id: str
    tool_call_id: str
    name: str
    params_json: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ToolResultEvent:
    """A tool call finished; ``is_error`` is set for synthesized failures."""
    event_type: ClassVar[str] = "ToolResult"
    turn_id: str
    tool_call_id: str
    name: str
    result_json: str
    is_error: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class ToolError:
    """One attempt of a tool call failed or timed out."""
    event_type: ClassVar[str] = "ToolError"
    turn_id: str
    tool_call_id: str
    name: str
    error: str
    retryable: bool
    timestamp: float = field(default_factory=time.time)


@dataclass
class EndTurn:
    event_type: ClassVar[str] = "EndTurn"
    turn_id: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class EndConversation:
    event_type: ClassVar[str] = "EndConversation"
    final_text: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ModelError:
    event_type: ClassVar[str] = "ModelError"
    turn_id: str
    error: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ContextSummarized:
    event_type: ClassVar[str] = "ContextSummarized"
    turn_id: str
    old_count: int
    new_count: int
    tokens_saved: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class Heartbeat:
    """Liveness tick; carries no payload besides timing."""
    event_type: ClassVar[str] = "Heartbeat"
    turn_id: str
    ts_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    timestamp: float = field(default_factory=time.time)


# ── Union type ───────────────────────────────────────────────────

AgentUpdate = Union[
    BeginTurn, AssistantDelta, AssistantComplete, ToolPlanned, ToolStarted,
    ToolResultEvent, ToolError, EndTurn, EndConversation, ModelError,
    ContextSummarized, Heartbeat,
]

EVENT_TYPES: dict[str, type] = {
    cls.event_type: cls
    for cls in (
        BeginTurn, AssistantDelta, AssistantComplete, ToolPlanned, ToolStarted,
        ToolResultEvent, ToolError, EndTurn, EndConversation, ModelError,
        ContextSummarized, Heartbeat,
    )
}


# ── Serialization helpers ────────────────────────────────────────

def event_to_dict(event: AgentUpdate) -> dict:
    """Serialize an event to a JSON-compatible dict tagged with ``type``."""
    data = {"type": event.event_type}
    for f in dataclasses.fields(event):
        value = getattr(event, f.name)
        if f.name == "plan_items":
            value = [item.to_dict() for item in value]
        data[f.name] = value
    return data


def event_from_dict(data: dict) -> AgentUpdate:
    """
    Deserialize a dict produced by ``event_to_dict``.

    Requires a "type" key matching one of the event names. Unknown keys
    are ignored so newer producers stay readable by older consumers.
    """
    event_type = data.get("type", "")
    cls = EVENT_TYPES.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type}")

    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.name == "plan_items":
            value = [PlannedTool(name=p.get("name", ""), params_json=p.get("params_json", ""))
                     for p in value]
        kwargs[f.name] = value
    return cls(**kwargs)


# ── Type guards ──────────────────────────────────────────────────

def is_terminal(event: AgentUpdate) -> bool:
    """True for events after which the loop emits nothing more."""
    return isinstance(event, (EndConversation, ModelError))

def is_tool_event(event: AgentUpdate) -> bool:
    return isinstance(event, (ToolPlanned, ToolStarted, ToolResultEvent, ToolError))

def is_heartbeat(event: AgentUpdate) -> bool:
    return isinstance(event, Heartbeat)
