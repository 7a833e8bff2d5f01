"""
Hook registry for pilotcode lifecycle events.

The agent loop emits events at fixed points (agent_start, turn_start,
api_response, nudge, tool_before, tool_after, agent_end, ...). Middleware
registers callbacks; a callback may return a dict to replace the event data
seen by later callbacks.

Usage:
    from pilotcode import hooks

    def on_tool(data):
        print(data["tool_name"], data["exit_code"])

    hooks.register("tool_after", on_tool)
"""

from typing import Any, Callable, Dict, List

HookCallback = Callable[[Dict[str, Any]], Any]

_hooks: Dict[str, List[HookCallback]] = {}


def register(event: str, callback: HookCallback) -> None:
    """Register a callback for a named event."""
    _hooks.setdefault(event, []).append(callback)


def unregister(event: str, callback: HookCallback) -> bool:
    """Remove one registration; returns False when it was not registered."""
    callbacks = _hooks.get(event, [])
    if callback not in callbacks:
        return False
    callbacks.remove(callback)
    return True


def emit(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    for cb in list(_hooks.get(event, [])):
        result = cb(data)
        if isinstance(result, dict):
            data = result
    return data


def clear() -> None:
    _hooks.clear()


def registered_events() -> List[str]:
    return [ev for ev, cbs in _hooks.items() if cbs]
