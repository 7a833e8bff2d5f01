"""
Metrics middleware: per-run tool, nudge and retry counters.
"""

import time
from typing import Any, Dict, Optional

from pilotcode import hooks


class MetricsCollector:
    """Collects counters over one agent run (one instruction)."""

    def __init__(self):
        self.turns: int = 0
        self.tool_calls_total: int = 0
        self.tool_errors_total: int = 0
        self.tool_call_counts: Dict[str, int] = {}
        self.tool_error_counts: Dict[str, int] = {}
        self.nudges: int = 0
        self.api_retries: int = 0
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def reset(self) -> None:
        self.turns = 0
        self.tool_calls_total = 0
        self.tool_errors_total = 0
        self.tool_call_counts.clear()
        self.tool_error_counts.clear()
        self.nudges = 0
        self.api_retries = 0
        self.start_time = None
        self.end_time = None

    def on_agent_start(self, data: Dict[str, Any]) -> None:
        self.reset()
        self.start_time = time.time()

    def on_turn_start(self, data: Dict[str, Any]) -> None:
        self.turns += 1

    def on_api_response(self, data: Dict[str, Any]) -> None:
        self.api_retries += int(data.get("retries") or 0)

    def on_nudge(self, data: Dict[str, Any]) -> None:
        self.nudges += 1

    def on_tool_after(self, data: Dict[str, Any]) -> None:
        tool_name = data.get("tool_name", "unknown")
        self.tool_calls_total += 1
        self.tool_call_counts[tool_name] = self.tool_call_counts.get(tool_name, 0) + 1
        if data.get("exit_code"):
            self.tool_errors_total += 1
            self.tool_error_counts[tool_name] = self.tool_error_counts.get(tool_name, 0) + 1

    def on_agent_end(self, data: Dict[str, Any]) -> None:
        self.end_time = time.time()

    def summary(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "turns": self.turns,
            "tool_calls_total": self.tool_calls_total,
            "tool_errors_total": self.tool_errors_total,
            "tool_call_counts": dict(self.tool_call_counts),
            "tool_error_counts": dict(self.tool_error_counts),
            "nudges": self.nudges,
            "api_retries": self.api_retries,
        }
        if self.start_time and self.end_time:
            result["duration_seconds"] = round(self.end_time - self.start_time, 2)
        return result


def install() -> MetricsCollector:
    """Register metrics hooks and return the collector instance."""
    collector = MetricsCollector()
    hooks.register("agent_start", collector.on_agent_start)
    hooks.register("turn_start", collector.on_turn_start)
    hooks.register("api_response", collector.on_api_response)
    hooks.register("nudge", collector.on_nudge)
    hooks.register("tool_after", collector.on_tool_after)
    hooks.register("agent_end", collector.on_agent_end)
    return collector
