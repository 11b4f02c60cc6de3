"""
Turn records — a consumer-side view of the event stream.

A Turn is opened by BeginTurn, mutated by assistant and tool events and
sealed by EndTurn. The loop itself never reads these; they exist for
observers (UI, transcripts) that want a per-iteration summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .stream_events import (
    AgentUpdate, AssistantComplete, AssistantDelta, BeginTurn, EndTurn,
    ToolError, ToolResultEvent, ToolStarted,
)

logger = logging.getLogger(__name__)


class ToolCallStatus(Enum):
    STARTED = "started"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ToolCallRecord:
    tool_call_id: str
    name: str
    params_json: str = ""
    status: ToolCallStatus = ToolCallStatus.STARTED
    result: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 1


@dataclass
class Turn:
    id: str
    iteration: int
    text: str = ""
    complete: bool = False
    tool_calls: list[ToolCallRecord] = field(default_factory=list)

    def find_call(self, tool_call_id: str) -> Optional[ToolCallRecord]:
        for record in self.tool_calls:
            if record.tool_call_id == tool_call_id:
                return record
        return None


class TurnTracker:
    """Folds AgentUpdate events into an ordered list of Turns."""

    def __init__(self):
        self.turns: list[Turn] = []
        self._by_id: dict[str, Turn] = {}

    def __call__(self, event: AgentUpdate) -> None:
        self.apply(event)

    @property
    def current(self) -> Optional[Turn]:
        return self.turns[-1] if self.turns else None

    def apply(self, event: AgentUpdate) -> None:
        if isinstance(event, BeginTurn):
            turn = Turn(id=event.turn_id, iteration=event.iteration)
            self.turns.append(turn)
            self._by_id[turn.id] = turn
            return

        turn_id = getattr(event, "turn_id", None)
        turn = self._by_id.get(turn_id) if turn_id else None
        if turn is None:
            return
        if turn.complete:
            logger.debug(f"Event {event.event_type} arrived for sealed turn {turn.id}")
            return

        if isinstance(event, AssistantDelta):
            turn.text += event.text_chunk
        elif isinstance(event, AssistantComplete):
            turn.text = event.full_text
        elif isinstance(event, ToolStarted):
            if turn.find_call(event.tool_call_id) is None:
                turn.tool_calls.append(ToolCallRecord(
                    tool_call_id=event.tool_call_id,
                    name=event.name,
                    params_json=event.params_json,
                ))
        elif isinstance(event, ToolError):
            record = self._record_for(turn, event.tool_call_id, event.name)
            record.status = ToolCallStatus.ERROR
            record.error = event.error
            if event.retryable:
                record.attempts += 1
        elif isinstance(event, ToolResultEvent):
            record = self._record_for(turn, event.tool_call_id, event.name)
            record.result = event.result_json
            record.status = ToolCallStatus.ERROR if event.is_error else ToolCallStatus.COMPLETED
        elif isinstance(event, EndTurn):
            turn.complete = True

    @staticmethod
    def _record_for(turn: Turn, tool_call_id: str, name: str) -> ToolCallRecord:
        record = turn.find_call(tool_call_id)
        if record is None:
            record = ToolCallRecord(tool_call_id=tool_call_id, name=name)
            turn.tool_calls.append(record)
        return record
