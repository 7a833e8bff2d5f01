"""
Text search tool handler: search() via ripgrep, with a Python fallback.

Exit codes follow ripgrep: 0 = matches, 1 = no matches, 2 = error.
"""

import os
import re
import shutil
import time
from typing import Any, List

from pilotcode.messages import ProcessResult
from pilotcode.tool_handlers._process import run_process
from pilotcode.tool_handlers._state import (
    DEFAULT_IGNORE_DIRS,
    EXIT_BAD_ARGS,
    EXIT_FAILURE,
    MAX_FILE_SIZE,
    MAX_SEARCH_RESULTS,
    ToolContext,
    _require_args_dict,
    error_result,
)


def resolve_path(path: str, ctx: ToolContext) -> str:
    path = os.path.expanduser(path or ".")
    if os.path.isabs(path):
        return path
    return os.path.join(ctx.workdir or ".", path)


def _iter_files(root: str):
    if os.path.isfile(root):
        yield root
        return
    for dirpath, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in DEFAULT_IGNORE_DIRS)
        for name in sorted(files):
            yield os.path.join(dirpath, name)


def _python_search(
    pattern: str,
    root: str,
    ignore_case: bool,
    line_numbers: bool,
    files_only: bool,
    timeout: float,
) -> ProcessResult:
    try:
        rx = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as e:
        return error_result(f"invalid regex: {e}", EXIT_BAD_ARGS)

    hits: List[str] = []
    deadline = time.monotonic() + timeout
    for fp in _iter_files(root):
        if time.monotonic() >= deadline:
            partial = "\n".join(hits) + "\n" if hits else ""
            return error_result(f"search timed out after {timeout:g} seconds", EXIT_FAILURE, stdout=partial)
        try:
            if os.path.getsize(fp) > MAX_FILE_SIZE:
                continue
            with open(fp, "r", encoding="utf-8", errors="ignore") as f:
                for ln_no, ln in enumerate(f, 1):
                    if not rx.search(ln):
                        continue
                    if files_only:
                        hits.append(fp)
                        break
                    prefix = f"{fp}:{ln_no}:" if line_numbers else f"{fp}:"
                    hits.append(prefix + ln.rstrip("\n"))
                    if len(hits) >= MAX_SEARCH_RESULTS:
                        break
        except OSError:
            continue
        if len(hits) >= MAX_SEARCH_RESULTS:
            break

    if not hits:
        return ProcessResult("", "", 1)
    return ProcessResult("\n".join(hits) + "\n", "", 0)


def search(args: Any, ctx: ToolContext) -> ProcessResult:
    args, err = _require_args_dict(args, "search")
    if err:
        return err
    pattern = args.get("pattern")
    if not pattern or not isinstance(pattern, str):
        return error_result("pattern is required", EXIT_BAD_ARGS)
    root = resolve_path(args.get("path") or ".", ctx)
    if not os.path.exists(root):
        return error_result(f"path does not exist: {args.get('path')}", EXIT_BAD_ARGS)

    ignore_case = bool(args.get("ignore_case", False))
    line_numbers = bool(args.get("line_numbers", False))
    files_only = bool(args.get("files_with_matches", False))

    if not shutil.which("rg"):
        return _python_search(pattern, root, ignore_case, line_numbers, files_only, ctx.timeout)

    cmd = ["rg", "--no-heading", "--color", "never"]
    if ignore_case:
        cmd.append("--ignore-case")
    if line_numbers:
        cmd.append("--line-number")
    if files_only:
        cmd.append("--files-with-matches")
    cmd.extend(["--max-count", str(MAX_SEARCH_RESULTS), "--", pattern, root])
    return run_process(cmd, timeout=ctx.timeout, cwd=ctx.workdir)
