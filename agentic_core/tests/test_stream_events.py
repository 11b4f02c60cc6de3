"""
Stream event tests: serialization, type guards, the event channel and the
turn tracker.

Run: python -m pytest agentic_core/tests/test_stream_events.py -v
"""

import asyncio
import json
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from agentic_core.core.event_channel import EventChannel
from agentic_core.core.stream_events import (
    AssistantComplete, AssistantDelta, BeginTurn, ContextSummarized, EndConversation,
    EndTurn, Heartbeat, ModelError, PlannedTool, ToolError, ToolPlanned,
    ToolResultEvent, ToolStarted, event_from_dict, event_to_dict, is_heartbeat,
    is_terminal, is_tool_event,
)
from agentic_core.core.turn import ToolCallStatus, TurnTracker
from agentic_core.tests.helpers import _run


class TestSerialization(unittest.TestCase):

    def test_tagged_with_type(self):
        data = event_to_dict(ToolResultEvent(turn_id="t1", tool_call_id="c1", name="echo", result_json="hi"))
        self.assertEqual(data["type"], "ToolResult")
        self.assertEqual(data["tool_call_id"], "c1")
        self.assertFalse(data["is_error"])
        json.dumps(data)

    def test_plan_items_survive_a_json_trip(self):
        event = ToolPlanned(turn_id="t1", plan_items=[PlannedTool("read", '{"p": 1}'), PlannedTool("write", "{}")])
        restored = event_from_dict(json.loads(json.dumps(event_to_dict(event))))
        self.assertIsInstance(restored, ToolPlanned)
        self.assertEqual(restored.plan_items, event.plan_items)
        self.assertEqual(restored.timestamp, event.timestamp)

    def test_unknown_keys_ignored(self):
        restored = event_from_dict({"type": "EndTurn", "turn_id": "t9", "extra": True})
        self.assertEqual(restored.turn_id, "t9")

    def test_unknown_type(self):
        with self.assertRaises(ValueError):
            event_from_dict({"type": "Nope"})
        with self.assertRaises(ValueError):
            event_from_dict({})


class TestGuards(unittest.TestCase):

    def test_terminal(self):
        self.assertTrue(is_terminal(EndConversation(final_text="x")))
        self.assertTrue(is_terminal(ModelError(turn_id="t", error="x")))
        self.assertFalse(is_terminal(EndTurn(turn_id="t")))

    def test_tool_events(self):
        self.assertTrue(is_tool_event(ToolStarted(turn_id="t", tool_call_id="c", name="n", params_json="{}")))
        self.assertTrue(is_tool_event(ToolError(turn_id="t", tool_call_id="c", name="n", error="e", retryable=False)))
        self.assertFalse(is_tool_event(ContextSummarized(turn_id="t", old_count=3, new_count=2, tokens_saved=9)))

    def test_heartbeat(self):
        beat = Heartbeat(turn_id="t")
        self.assertTrue(is_heartbeat(beat))
        self.assertGreater(beat.ts_ms, 0)
        self.assertFalse(is_heartbeat(EndTurn(turn_id="t")))


class TestEventChannel(unittest.TestCase):

    def test_iterates_until_closed(self):
        async def scenario():
            channel = EventChannel()
            channel.send(BeginTurn(turn_id="t", iteration=1))
            channel(EndTurn(turn_id="t"))
            channel.close()
            return [e.event_type async for e in channel], await channel.receive()

        types, after = _run(scenario())
        self.assertEqual(types, ["BeginTurn", "EndTurn"])
        self.assertIsNone(after)

    def test_heartbeats_dropped_when_backed_up(self):
        async def scenario():
            channel = EventChannel(heartbeat_capacity=2)
            for _ in range(5):
                channel.heartbeat("t")
            lifecycle_ok = channel.send(EndTurn(turn_id="t"))
            return channel.pending(), channel.dropped_heartbeats, lifecycle_ok

        self.assertEqual(_run(scenario()), (3, 3, True))

    def test_send_after_close_is_dropped(self):
        async def scenario():
            channel = EventChannel()
            channel.close()
            accepted = channel.send(EndTurn(turn_id="t"))
            return accepted, channel.closed, channel.drain()

        self.assertEqual(_run(scenario()), (False, True, []))

    def test_consumer_sees_events_in_order_while_producer_runs(self):
        async def scenario():
            channel = EventChannel()

            async def produce():
                for i in range(5):
                    channel.send(AssistantDelta(turn_id="t", text_chunk=str(i), seq=i))
                    await asyncio.sleep(0)
                channel.close()

            producer = asyncio.create_task(produce())
            seen = [e.seq async for e in channel]
            await producer
            return seen

        self.assertEqual(_run(scenario()), [0, 1, 2, 3, 4])

    def test_receive_timeout(self):
        async def scenario():
            await EventChannel().receive(timeout=0.01)

        with self.assertRaises(asyncio.TimeoutError):
            _run(scenario())


class TestTurnTracker(unittest.TestCase):

    def test_folds_events_into_turns(self):
        tracker = TurnTracker()
        events = [
            BeginTurn(turn_id="t1", iteration=1),
            AssistantDelta(turn_id="t1", text_chunk="Let ", seq=0),
            AssistantDelta(turn_id="t1", text_chunk="me check", seq=1),
            ToolStarted(turn_id="t1", tool_call_id="c1", name="read", params_json="{}"),
            ToolError(turn_id="t1", tool_call_id="c1", name="read", error="boom", retryable=True),
            ToolResultEvent(turn_id="t1", tool_call_id="c1", name="read", result_json="data"),
            EndTurn(turn_id="t1"),
            ToolStarted(turn_id="t1", tool_call_id="late", name="x", params_json="{}"),
            BeginTurn(turn_id="t2", iteration=2),
            AssistantComplete(turn_id="t2", full_text="Done"),
        ]
        for event in events:
            tracker(event)

        first, second = tracker.turns
        self.assertEqual(first.text, "Let me check")
        self.assertTrue(first.complete)
        self.assertEqual(len(first.tool_calls), 1)
        record = first.find_call("c1")
        self.assertEqual(record.status, ToolCallStatus.COMPLETED)
        self.assertEqual(record.attempts, 2)
        self.assertEqual(record.result, "data")
        self.assertIs(tracker.current, second)
        self.assertEqual(second.text, "Done")
        self.assertFalse(second.complete)

    def test_error_result(self):
        tracker = TurnTracker()
        tracker(BeginTurn(turn_id="t", iteration=1))
        tracker(ToolResultEvent(turn_id="t", tool_call_id="c", name="n", result_json="Timeout", is_error=True))
        self.assertEqual(tracker.current.find_call("c").status, ToolCallStatus.ERROR)


if __name__ == "__main__":
    unittest.main()
