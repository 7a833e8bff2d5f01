"""
Shared constants and small utilities for tool handlers.

Handlers receive all mutable state through ToolContext; nothing in this
module changes at runtime.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from pilotcode.messages import ProcessResult


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TOOL_TIMEOUT = 10.0
MAX_TOOL_TIMEOUT = 10 * 60.0
MAX_OUTPUT_CHARS = 30000
MAX_FILE_SIZE = 2 * 1024 * 1024  # 2MB
MAX_SEARCH_RESULTS = 200
DEFAULT_IGNORE_DIRS = {".git", "node_modules", ".pilotcode", "__pycache__", ".venv"}

# Exit codes used for locally produced failures.
EXIT_FAILURE = 1
EXIT_BAD_ARGS = 2


# ---------------------------------------------------------------------------
# Per-invocation context
# ---------------------------------------------------------------------------

@dataclass
class ToolContext:
    """Everything a handler may touch besides its own arguments."""

    timeout: float = DEFAULT_TOOL_TIMEOUT
    workdir: str = "."
    guard: Any = None
    gate: Any = None
    operator: Optional[Callable[[str], str]] = None
    settings: Any = None
    # User messages the operator supplied while this batch was dispatched.
    pending_instructions: List[str] = field(default_factory=list)

    def inject_instruction(self, text: str) -> None:
        self.pending_instructions.append(text)


# ---------------------------------------------------------------------------
# Utility functions
# ---------------------------------------------------------------------------

def normalize_args(args: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(args, dict):
        return None
    return dict(args)


def _require_args_dict(args: Any, tool_name: str) -> Tuple[Optional[Dict[str, Any]], Optional[ProcessResult]]:
    normalized = normalize_args(args)
    if normalized is None:
        return None, error_result(f"invalid arguments for tool '{tool_name}': expected object", EXIT_BAD_ARGS)
    return normalized, None


def error_result(message: str, exit_code: int = EXIT_FAILURE, stdout: str = "") -> ProcessResult:
    if not message.startswith("error:"):
        message = f"error: {message}"
    return ProcessResult(stdout=stdout, stderr=message, exit_code=exit_code)


def truncate_output(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    head_len = limit // 2
    tail_len = limit - head_len
    removed = len(text) - limit
    return f"{text[:head_len]}\n...[truncated {removed} chars]...\n{text[-tail_len:]}"


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def clamp_timeout(value: Any, default: float) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return default
    if seconds <= 0:
        return default
    return min(seconds, MAX_TOOL_TIMEOUT)
