"""
Documentation lookup tool handler: doc().
"""

import re
import sys
from typing import Any, Dict, List

from pilotcode.messages import ProcessResult
from pilotcode.tool_handlers._process import run_process
from pilotcode.tool_handlers._state import (
    EXIT_BAD_ARGS,
    ToolContext,
    _require_args_dict,
    error_result,
)

DOC_COMMANDS: Dict[str, List[str]] = {
    "pydoc": [sys.executable, "-m", "pydoc"],
    "go": ["go", "doc"],
}

# Package paths, dotted symbols and method selectors; no shell metacharacters.
_SYMBOL_RE = re.compile(r"^[A-Za-z0-9_./-]+$")


def doc(args: Any, ctx: ToolContext) -> ProcessResult:
    args, err = _require_args_dict(args, "doc")
    if err:
        return err
    symbol = args.get("symbol")
    if not symbol or not isinstance(symbol, str):
        return error_result("symbol is required", EXIT_BAD_ARGS)
    symbol = symbol.strip()
    if not _SYMBOL_RE.match(symbol) or symbol.startswith("-"):
        return error_result(f"invalid symbol: {symbol!r}", EXIT_BAD_ARGS)

    name = getattr(ctx.settings, "doc_command", None) or "pydoc"
    base = DOC_COMMANDS.get(name)
    if base is None:
        return error_result(f"unknown doc command '{name}'; available: {', '.join(sorted(DOC_COMMANDS))}")

    result = run_process(base + [symbol], timeout=ctx.timeout, cwd=ctx.workdir)
    # pydoc exits 0 even when nothing is found
    if result.exit_code == 0 and result.stdout.startswith("No Python documentation found"):
        return ProcessResult("", result.stdout.strip(), 1)
    return result
