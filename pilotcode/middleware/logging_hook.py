"""
Logging middleware: one JSONL record per lifecycle event.

Nothing is written until init_logging() (or install(log_path=...)) has set a
log path, so library use and tests stay silent.
"""

import json
import os
import time
from typing import Any, Dict, Optional

from pilotcode import hooks

# Module state
_log_path: Optional[str] = None
_run_context: Dict[str, Any] = {}

_ALL_EVENTS = [
    "agent_start", "agent_end",
    "turn_start",
    "api_response",
    "nudge",
    "tool_before", "tool_after",
    "instruction_injected",
]

# Keys never copied from hook data into a log record.
_SKIP_KEYS = ("messages", "request", "response", "state")


def get_log_path() -> Optional[str]:
    return _log_path


def _write_event(event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
    if not _log_path:
        return
    rec: Dict[str, Any] = {"ts": time.strftime("%Y-%m-%dT%H:%M:%S"), "event": event_type}
    for key in ("run_id", "model", "flavor"):
        val = _run_context.get(key)
        if val:
            rec[key] = val
    if payload:
        rec.update(payload)
    directory = os.path.dirname(_log_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(_log_path, "a", encoding="utf-8") as f:
        f.write(json.dumps(rec, ensure_ascii=False, default=str) + "\n")


def _on_event(event_name: str):
    def callback(data: Dict[str, Any]) -> None:
        payload = {k: v for k, v in data.items() if k not in _SKIP_KEYS}
        _write_event(event_name, payload)
    return callback


def log_event(event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
    """Write an event directly, for code paths that do not go through hooks."""
    _write_event(event_type, payload)


def init_logging(log_dir: str) -> str:
    global _log_path
    if _log_path:
        return _log_path
    os.makedirs(log_dir, exist_ok=True)
    timestamp = time.strftime("%Y-%m-%d_%H-%M-%S")
    _log_path = os.path.join(log_dir, f"pilotcode_{timestamp}.jsonl")
    return _log_path


def update_run_context(context: Dict[str, Any]) -> None:
    _run_context.update(context)


def install(log_path: Optional[str] = None, run_context: Optional[Dict[str, Any]] = None) -> None:
    global _log_path
    if log_path:
        _log_path = log_path
    if run_context:
        _run_context.update(run_context)

    for event in _ALL_EVENTS:
        hooks.register(event, _on_event(event))
