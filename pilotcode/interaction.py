"""
Operator interaction: the only place that blocks on a human.

An operator is any callable taking a prompt string and returning the
operator's raw response. The permission gate and the ask_user tool receive
one by injection, so tests and unattended runs swap in ScriptedOperator.
"""

import sys
from typing import Callable, Iterable, List, Optional

Operator = Callable[[str], str]

# ANSI colors
RESET, BOLD, DIM = "\033[0m", "\033[1m", "\033[2m"
CYAN, GREEN, RED, YELLOW = "\033[36m", "\033[32m", "\033[31m", "\033[33m"


class ConsoleOperator:
    """Reads responses from stdin; end of input counts as an empty response."""

    def __init__(self, input_fn: Optional[Callable[[str], str]] = None) -> None:
        self._input = input_fn or input

    def __call__(self, prompt: str) -> str:
        try:
            return self._input(prompt)
        except EOFError:
            print(file=sys.stderr)
            return ""


class ScriptedOperator:
    """Replays canned responses in order and records every prompt it saw."""

    def __init__(self, responses: Iterable[str] = (), default: str = "") -> None:
        self._responses: List[str] = list(responses)
        self.default = default
        self.prompts: List[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._responses:
            return self._responses.pop(0)
        return self.default

    @property
    def remaining(self) -> int:
        return len(self._responses)
