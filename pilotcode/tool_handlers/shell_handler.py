"""
Shell command tool handler: shell() behind the permission gate.
"""

import os
from typing import Any

from pilotcode.messages import ProcessResult
from pilotcode.tool_handlers._process import run_process
from pilotcode.tool_handlers._state import (
    EXIT_BAD_ARGS,
    EXIT_FAILURE,
    ToolContext,
    _require_args_dict,
    clamp_timeout,
    error_result,
)
from pilotcode.tool_handlers.permission import PermissionGate


def shell(args: Any, ctx: ToolContext) -> ProcessResult:
    args, err = _require_args_dict(args, "shell")
    if err:
        return err

    command = args.get("command")
    if not command or not isinstance(command, str) or not command.strip():
        return error_result("command is required and must be a non-empty string", EXIT_BAD_ARGS)

    workdir = os.path.abspath(os.path.expanduser(ctx.workdir or "."))
    if not os.path.isdir(workdir):
        return error_result(f"workdir does not exist: {workdir}")

    timeout = clamp_timeout(args.get("timeout_seconds"), ctx.timeout)

    gate = ctx.gate if ctx.gate is not None else PermissionGate(ctx.operator)
    decision = gate.check(command)
    if decision.instruction is not None:
        ctx.inject_instruction(decision.instruction)
        return ProcessResult(decision.message, "", 0)
    if not decision.allowed:
        return ProcessResult("", decision.message, EXIT_FAILURE)

    result = run_process(command, timeout=timeout, cwd=workdir)
    if result.exit_code != 0 and not result.stderr:
        return ProcessResult(result.stdout, f"Command failed with exit code {result.exit_code}", result.exit_code)
    return result
