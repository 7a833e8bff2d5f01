"""
File-mutating tool handlers: sed(), comby(), format_fn().

sed goes through the mutation guard; comby and the formatter are thin
wrappers over their binaries.
"""

import os
from typing import Any, Dict, List, Optional

from pilotcode.messages import ProcessResult
from pilotcode.tool_handlers._process import run_process
from pilotcode.tool_handlers._state import (
    EXIT_BAD_ARGS,
    ToolContext,
    _require_args_dict,
    error_result,
)
from pilotcode.tool_handlers.mutation_guard import MutationGuard
from pilotcode.tool_handlers.search_handlers import resolve_path


def sed(args: Any, ctx: ToolContext) -> ProcessResult:
    args, err = _require_args_dict(args, "sed")
    if err:
        return err
    file_path = args.get("file_path")
    search = args.get("search_pattern")
    replace = args.get("replace_pattern")
    if not file_path or not isinstance(file_path, str):
        return error_result("file_path is required", EXIT_BAD_ARGS)
    if not isinstance(search, str) or not search:
        return error_result("search_pattern is required", EXIT_BAD_ARGS)
    if not isinstance(replace, str):
        return error_result("replace_pattern is required", EXIT_BAD_ARGS)

    guard = ctx.guard
    if guard is None:
        # Without an owned guard nothing can ever be applied; previews still work.
        guard = MutationGuard()

    target = resolve_path(file_path, ctx)
    if args.get("dry_run", True):
        return guard.preview(target, search, replace)
    return guard.apply(target, search, replace)


# ---------------------------
# comby
# ---------------------------

def comby(args: Any, ctx: ToolContext) -> ProcessResult:
    args, err = _require_args_dict(args, "comby")
    if err:
        return err
    match = args.get("match_template")
    rewrite = args.get("rewrite_template")
    if not isinstance(match, str) or not match:
        return error_result("match_template is required", EXIT_BAD_ARGS)
    if not isinstance(rewrite, str):
        return error_result("rewrite_template is required", EXIT_BAD_ARGS)

    target = resolve_path(args.get("path") or ".", ctx)
    if not os.path.exists(target):
        return error_result(f"path does not exist: {args.get('path')}", EXIT_BAD_ARGS)

    cmd: List[str] = ["comby", match, rewrite]
    if os.path.isdir(target):
        cmd.extend(["-directory", target])
    else:
        cmd.append(target)
    language = args.get("language")
    if language:
        lang = str(language)
        cmd.extend(["-matcher", lang if lang.startswith(".") else f".{lang}"])
    rule = args.get("rule")
    if rule:
        cmd.extend(["-rule", str(rule)])
    if args.get("match_only"):
        cmd.append("-match-only")
    elif args.get("in_place"):
        cmd.append("-in-place")
    elif args.get("diff"):
        cmd.append("-diff")
    return run_process(cmd, timeout=ctx.timeout, cwd=ctx.workdir)


# ---------------------------
# source formatter
# ---------------------------

# flag -> argv fragment; "default" is used when no mode flag is set.
FORMATTERS: Dict[str, Dict[str, Any]] = {
    "black": {
        "argv": ["black", "--quiet"],
        "list": ["--check"],
        "diff": ["--diff"],
        "write": [],
        "default": ["--diff"],
    },
    "gofmt": {
        "argv": ["gofmt"],
        "list": ["-l"],
        "diff": ["-d"],
        "write": ["-w"],
        "default": [],
    },
}


def _formatter_name(ctx: ToolContext) -> str:
    name: Optional[str] = getattr(ctx.settings, "formatter", None)
    return name or "black"


def format_fn(args: Any, ctx: ToolContext) -> ProcessResult:
    args, err = _require_args_dict(args, "format")
    if err:
        return err
    path = args.get("path")
    if not path or not isinstance(path, str):
        return error_result("path is required", EXIT_BAD_ARGS)
    target = resolve_path(path, ctx)
    if not os.path.exists(target):
        return error_result(f"path does not exist: {path}", EXIT_BAD_ARGS)

    name = _formatter_name(ctx)
    spec = FORMATTERS.get(name)
    if spec is None:
        return error_result(f"unknown formatter '{name}'; available: {', '.join(sorted(FORMATTERS))}")

    cmd: List[str] = list(spec["argv"])
    modes = [m for m in ("list", "diff", "write") if args.get(m)]
    if not modes:
        cmd.extend(spec["default"])
    for mode in modes:
        cmd.extend(spec[mode])
    cmd.append(target)
    return run_process(cmd, timeout=ctx.timeout, cwd=ctx.workdir)
