"""
Tool Logger — append-only, human-readable log of every loop iteration.

Writes to its own file (``agentic_tool_calls.log`` by default) through a
private logging.Logger, separate from the application log:

    === ITERATION 1 ===
    --- Begin Turn 1 ---
    Tool Call #1: read_file
       ID: call_1
       Parameters: {"path": "/tmp/x"}
    SUCCESS Tool Result #1: read_file
       Result: ...
    --- End Turn 1 ---
"""

from __future__ import annotations

import logging
import os

from .models import ToolCall

DEFAULT_TOOL_LOG = "agentic_tool_calls.log"


class ToolLogger:

    def __init__(self, path: str = DEFAULT_TOOL_LOG):
        self.path = path
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

        # Not registered with logging's manager, so instances never share handlers
        self._log = logging.Logger(f"agentic_core.tool_calls[{path}]", level=logging.INFO)
        self._handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self._log.addHandler(self._handler)

    def log_iteration_start(self, iteration: int) -> None:
        self._log.info(f"\n=== ITERATION {iteration} ===")

    def log_begin_turn(self, iteration: int) -> None:
        self._log.info(f"--- Begin Turn {iteration} ---")

    def log_tool_call(self, tool_call: ToolCall, iteration: int) -> None:
        self._log.info(
            f"Tool Call #{iteration}: {tool_call.name}\n"
            f"   ID: {tool_call.id}\n"
            f"   Parameters: {tool_call.params_json}"
        )

    def log_tool_result(self, tool_call: ToolCall, result: str, is_error: bool, iteration: int) -> None:
        status = "ERROR" if is_error else "SUCCESS"
        self._log.info(
            f"{status} Tool Result #{iteration}: {tool_call.name}\n"
            f"   Result: {result}"
        )

    def log_final_response(self, response: str, iteration: int) -> None:
        self._log.info(f"Final Response (after {iteration} iterations): {response}")

    def log_end_turn(self, iteration: int) -> None:
        self._log.info(f"--- End Turn {iteration} ---")

    def close(self) -> None:
        self._log.removeHandler(self._handler)
        self._handler.close()
