"""
Checklist tool handler: todo().
"""

import os
from typing import Any

from pilotcode.checklist import Checklist, ChecklistError
from pilotcode.messages import ProcessResult
from pilotcode.tool_handlers._state import (
    EXIT_BAD_ARGS,
    EXIT_FAILURE,
    ToolContext,
    _require_args_dict,
    error_result,
)
from pilotcode.tool_handlers.search_handlers import resolve_path

TODO_ACTIONS = ("read", "write", "add", "complete", "update")


def _todo_path(ctx: ToolContext) -> str:
    configured = getattr(ctx.settings, "todo_path", None) or "todo.md"
    return resolve_path(configured, ctx)


def todo(args: Any, ctx: ToolContext) -> ProcessResult:
    args, err = _require_args_dict(args, "todo")
    if err:
        return err
    action = args.get("action")
    if action not in TODO_ACTIONS:
        return error_result(f"action must be one of: {', '.join(TODO_ACTIONS)}", EXIT_BAD_ARGS)
    content = args.get("content")
    if action != "read" and not isinstance(content, str):
        return error_result(f"content is required for action '{action}'", EXIT_BAD_ARGS)

    path = _todo_path(ctx)

    if action == "read":
        if not os.path.exists(path):
            return error_result(f"todo file does not exist: {os.path.basename(path)}")
        with open(path, "r", encoding="utf-8") as f:
            return ProcessResult(f.read(), "", 0)

    if action == "write":
        checklist = Checklist.parse(content)
        checklist.save(path)
        return ProcessResult(f"ok: wrote {len(checklist.items())} item(s) to {os.path.basename(path)}\n", "", 0)

    checklist = Checklist.load(path)
    try:
        if action == "add":
            item = checklist.add(content)
            verb = "added"
        elif action == "complete":
            item = checklist.complete(content)
            verb = "completed"
        else:
            item = checklist.update(content)
            verb = "updated"
    except ChecklistError as exc:
        return error_result(str(exc), EXIT_FAILURE)

    checklist.save(path)
    return ProcessResult(f"ok: {verb} {item.render()}\n", "", 0)
