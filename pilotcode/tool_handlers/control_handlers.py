"""
Conversation-control tool handlers: ask_user() and finished().
"""

from typing import Any

from pilotcode.interaction import BOLD, RESET
from pilotcode.messages import ProcessResult
from pilotcode.tool_handlers._state import (
    EXIT_BAD_ARGS,
    EXIT_FAILURE,
    ToolContext,
    _require_args_dict,
    error_result,
)

FINISHED_TOOL = "finished"


def ask_user(args: Any, ctx: ToolContext) -> ProcessResult:
    args, err = _require_args_dict(args, "ask_user")
    if err:
        return err
    question = args.get("question")
    if not question or not isinstance(question, str):
        return error_result("question is required", EXIT_BAD_ARGS)
    if ctx.operator is None:
        return error_result("no operator available to answer questions", EXIT_FAILURE)
    answer = (ctx.operator(f"{BOLD}Agent asks:{RESET} {question}\n> ") or "").strip()
    if not answer:
        return ProcessResult("", "operator gave no answer", EXIT_FAILURE)
    return ProcessResult(answer, "", 0)


def finished(args: Any, ctx: ToolContext) -> ProcessResult:
    """Sentinel; the agent loop stops before this is ever dispatched."""
    return ProcessResult("finished", "", 0)
