"""
Agentic Loop — the core orchestrator.

Drives one conversation between the model and the tool servers:

  BeginTurn → summarize history if it nears the context window
  → call the model with the enabled tool catalog
  → no tool calls: AssistantComplete, EndTurn, EndConversation, return text
  → tool calls: ToolPlanned, execute each in order (timeout + retries),
    append the assistant message and one tool message per call, EndTurn,
    loop

Tool calls within a turn run sequentially, in the order the model listed
them. Each attempt is bounded by ``tool_timeout``; after the retry budget
is spent the loop feeds a synthesized error result back to the model
instead of aborting. A failed model call is fatal: ModelError is emitted
and ModelCallError raised.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Callable, Optional, Union

from .context_manager import ContextManager
from .error_catalog import MaxIterationsError, ModelCallError
from .event_channel import EventChannel
from .models import Message, Role, ToolCall, ToolResult
from .providers.base import BaseLLMProvider
from .stream_events import (
    AgentUpdate, AssistantComplete, BeginTurn, ContextSummarized, EndConversation,
    EndTurn, ModelError, PlannedTool, ToolError, ToolPlanned, ToolResultEvent,
    ToolStarted,
)
from .structured_logger import LogContext, StructuredLogger
from .token_estimator import estimate_messages_tokens
from .tool_logger import ToolLogger
from .tool_registry import ToolRegistry

EventSinkLike = Union[Callable[[AgentUpdate], None], EventChannel, None]


def _make_emitter(event_sink: EventSinkLike) -> Callable[[AgentUpdate], None]:
    if event_sink is None:
        return lambda event: None
    if isinstance(event_sink, EventChannel):
        return event_sink.send
    return event_sink


class AgenticLoop:
    """
    Main agent loop.

    Flow:
      messages → [summarize?] → call model with tools
      → if tool_calls: execute sequentially → append results → loop
      → if no tool_calls: return final text
    """

    def __init__(
        self,
        registry: ToolRegistry,
        provider: BaseLLMProvider,
        context_manager: Optional[ContextManager] = None,
        context_window_size: int = 128000,
        summarize_threshold: float = 0.7,
        tool_timeout: float = 20.0,
        max_tool_retries: int = 2,
        tool_logger: Optional[ToolLogger] = None,
        max_iterations: Optional[int] = None,
    ):
        self.registry = registry
        self.provider = provider
        self.context_manager = context_manager or ContextManager()
        self.context_window_size = context_window_size
        self.summarize_threshold = summarize_threshold
        self.tool_timeout = tool_timeout
        self.max_tool_retries = max_tool_retries
        self.tool_logger = tool_logger
        self.max_iterations = max_iterations  # None = run until a final answer

        # History as it stood when the last process() call ended
        self.last_messages: list[Message] = []

    def with_context_config(self, window_size: int, threshold: float) -> "AgenticLoop":
        self.context_window_size = window_size
        self.summarize_threshold = threshold
        return self

    @classmethod
    def from_profile(cls, registry: ToolRegistry, provider: BaseLLMProvider, profile, **kwargs) -> "AgenticLoop":
        """Build a loop whose context settings come from an LLMProfile."""
        return cls(
            registry,
            provider,
            context_window_size=profile.get_context_window_size(),
            summarize_threshold=profile.summarize_threshold,
            **kwargs,
        )

    # ── Main entry point ──────────────────────────────────────

    async def process(
        self,
        messages: list[Message],
        event_sink: EventSinkLike = None,
        conversation_id: Optional[str] = None,
    ) -> str:
        """
        Run the loop until the model gives a final answer and return its text.

        ``messages`` is copied; the caller's list is never mutated. The
        resulting history is left in ``last_messages``.

        Raises:
            ModelCallError: the model capability failed (after a ModelError event).
            MaxIterationsError: ``max_iterations`` was set and reached.
        """
        emit = _make_emitter(event_sink)
        log = StructuredLogger(__name__, LogContext(
            conversation_id=conversation_id or "",
            provider_name=self.provider.provider_name,
        ))
        history = list(messages)
        iteration = 0

        while True:
            if self.max_iterations is not None and iteration >= self.max_iterations:
                self.last_messages = history
                raise MaxIterationsError(f"Stopped after {iteration} iterations without a final answer")

            iteration += 1
            turn_id = str(uuid.uuid4())
            turn_log = log.with_context(turn_id=turn_id)
            turn_log.debug(f"Agent iteration {iteration}")
            emit(BeginTurn(turn_id=turn_id, iteration=iteration, conversation_id=conversation_id))
            if self.tool_logger:
                self.tool_logger.log_iteration_start(iteration)
                self.tool_logger.log_begin_turn(iteration)

            history = await self._maybe_summarize(history, turn_id, emit, turn_log)

            tools = await self.registry.get_enabled_tools()
            turn_log.debug(f"Enabled tools count: {len(tools)}")

            try:
                response = await self.provider.send_with_tools(history, tools)
            except Exception as e:
                turn_log.error(f"LLM call failed: {e}")
                emit(ModelError(turn_id=turn_id, error=f"Model communication failed: {e}"))
                self.last_messages = history
                raise ModelCallError(f"LLM call failed: {e}") from e

            # ── Final answer ──
            if not response.has_tool_calls:
                if self.tool_logger:
                    self.tool_logger.log_final_response(response.content, iteration)
                    self.tool_logger.log_end_turn(iteration)
                emit(AssistantComplete(turn_id=turn_id, full_text=response.content))
                emit(EndTurn(turn_id=turn_id))
                emit(EndConversation(final_text=response.content))
                history.append(Message(role=Role.ASSISTANT, content=response.content))
                self.last_messages = history
                turn_log.info(f"Conversation finished after {iteration} iterations")
                return response.content

            # ── Tool calls ──
            if response.content.strip():
                emit(AssistantComplete(turn_id=turn_id, full_text=response.content))
            emit(ToolPlanned(
                turn_id=turn_id,
                plan_items=[PlannedTool(name=tc.name, params_json=tc.params_json) for tc in response.tool_calls],
            ))

            started_ids: set[str] = set()
            tool_messages: list[Message] = []
            for tool_call in response.tool_calls:
                if self.tool_logger:
                    self.tool_logger.log_tool_call(tool_call, iteration)
                if tool_call.id not in started_ids:
                    started_ids.add(tool_call.id)
                    emit(ToolStarted(
                        turn_id=turn_id,
                        tool_call_id=tool_call.id,
                        name=tool_call.name,
                        params_json=tool_call.params_json,
                    ))

                result = await self._execute_with_retries(tool_call, turn_id, emit, turn_log)

                if self.tool_logger:
                    self.tool_logger.log_tool_result(tool_call, result.content, result.is_error, iteration)
                emit(ToolResultEvent(
                    turn_id=turn_id,
                    tool_call_id=tool_call.id,
                    name=tool_call.name,
                    result_json=result.content,
                    is_error=result.is_error,
                ))
                tool_messages.append(Message.tool_result(tool_call.id, result.content, result.is_error))

            history.append(Message.with_tool_calls(response.content, response.tool_calls))
            history.extend(tool_messages)

            emit(EndTurn(turn_id=turn_id))
            if self.tool_logger:
                self.tool_logger.log_end_turn(iteration)

    # ── Helpers ───────────────────────────────────────────────

    async def _maybe_summarize(
        self,
        history: list[Message],
        turn_id: str,
        emit: Callable[[AgentUpdate], None],
        log: StructuredLogger,
    ) -> list[Message]:
        """Summarized history when usage crosses the threshold; unchanged otherwise."""
        current_tokens = estimate_messages_tokens(history)
        if not self.context_manager.should_summarize(
            current_tokens, self.context_window_size, self.summarize_threshold
        ):
            return history

        to_summarize = self.context_manager.build_summarization_messages(history)
        if not to_summarize:
            return history

        log.info(f"Context size {current_tokens} tokens exceeds threshold, summarizing")
        try:
            summary = await self.context_manager.summarize(self.provider, to_summarize)
        except Exception as e:
            log.warning(f"Failed to summarize context: {e}")
            return history

        new_history = self.context_manager.build_summarized_history(history, summary)
        tokens_saved = max(0, current_tokens - estimate_messages_tokens(new_history))
        emit(ContextSummarized(
            turn_id=turn_id,
            old_count=len(history),
            new_count=len(new_history),
            tokens_saved=tokens_saved,
        ))
        log.info(
            f"Context summarized: {len(history)} -> {len(new_history)} messages, "
            f"{tokens_saved} tokens saved"
        )
        return new_history

    async def _execute_with_retries(
        self,
        tool_call: ToolCall,
        turn_id: str,
        emit: Callable[[AgentUpdate], None],
        log: StructuredLogger,
    ) -> ToolResult:
        """
        Call a tool with up to ``max_tool_retries`` immediate retries.

        Errors raised by the registry and timeouts count as failed attempts.
        A ToolResult with ``is_error`` set is a completed call, not retried.
        """
        attempt = 0
        while True:
            attempt += 1
            retryable = attempt <= self.max_tool_retries
            try:
                return await asyncio.wait_for(
                    self.registry.call_tool(tool_call), timeout=self.tool_timeout
                )
            except asyncio.TimeoutError:
                error = f"Timeout after {self.tool_timeout:g}s"
                log.warning(f"Tool '{tool_call.name}' attempt {attempt}: {error}")
                emit(ToolError(turn_id=turn_id, tool_call_id=tool_call.id, name=tool_call.name,
                               error=error, retryable=retryable))
                if not retryable:
                    return ToolResult(content="Timeout", is_error=True)
            except Exception as e:
                log.warning(f"Tool '{tool_call.name}' attempt {attempt} failed: {e}")
                emit(ToolError(turn_id=turn_id, tool_call_id=tool_call.id, name=tool_call.name,
                               error=str(e), retryable=retryable))
                if not retryable:
                    return ToolResult(content=str(e), is_error=True)
