"""
Permission gate for arbitrary shell commands.

Stdlib only. The gate decides; it never runs anything. The decision for a
command depends on its leading binary: allow-listed binaries pass silently,
everything else is put to the operator.
"""

import os
import re
import shlex
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from pilotcode.interaction import BOLD, DIM, RESET, YELLOW
from pilotcode.middleware import logging_hook


# Destructive command patterns. A match is shown to the operator as a warning
# and bypasses the always-allow list.
DANGEROUS_PATTERNS = [
    r"rm\s+(-[rf]+\s+)*(/|~|\$HOME|/\*)(\s|$)",
    r"rm\s+.*\s+(/etc|/usr|/bin|/lib|/boot|/var|/sys|/proc)",
    r"(mv|cp)\s+.*\s+(/etc|/usr|/bin|/lib|/boot)/",
    r"dd\s+.*of=/dev/",
    r"mkfs\.",
    r"chmod\s+(-R\s+)?(777|666)\s+/",
    r":\(\)\s*\{",
    r"(curl|wget).*\|\s*(ba)?sh",
    r"(?:\d\s*)?>{1,2}\s*/(?:etc|usr|bin|lib|boot|var|sys|proc)/",
]
_DANGEROUS_COMMAND_RES = [re.compile(p, re.IGNORECASE) for p in DANGEROUS_PATTERNS]

_ENV_VAR_ASSIGN_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*=')

ALLOW_ONCE = ("y", "yes")
DENY = ("n", "no")
ALWAYS = ("a", "always")
INSTRUCT = ("i", "instruct")

INSTRUCTION_SUPPLIED = "Command cancelled: user provided alternative instructions"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    message: str = ""
    instruction: Optional[str] = None


def _check_dangerous_command(command: str) -> Optional[str]:
    for pattern_re in _DANGEROUS_COMMAND_RES:
        if pattern_re.search(command):
            return pattern_re.pattern
    return None


def leading_binary(command: str) -> str:
    """Basename of the first real token, skipping VAR=value prefixes."""
    try:
        tokens = shlex.split(command)
    except ValueError:
        # Malformed quoting: fall back to whitespace splitting
        tokens = command.split()
    idx = 0
    while idx < len(tokens) and _ENV_VAR_ASSIGN_RE.match(tokens[idx]):
        idx += 1
    if idx >= len(tokens):
        return ""
    return os.path.basename(tokens[idx])


class PermissionGate:
    """Interactive allow/deny gate with a per-process always-allow list."""

    def __init__(
        self,
        operator: Optional[Callable[[str], str]] = None,
        interactive: bool = True,
        allow_list: Optional[Dict[str, bool]] = None,
    ) -> None:
        self.operator = operator
        self.interactive = interactive
        self.allow_list: Dict[str, bool] = dict(allow_list or {})

    def is_always_allowed(self, binary: str) -> bool:
        return bool(self.allow_list.get(binary))

    def _ask(self, prompt: str) -> str:
        if self.operator is None:
            return ""
        return (self.operator(prompt) or "").strip()

    def check(self, command: str) -> GateDecision:
        binary = leading_binary(command)
        if not binary:
            return GateDecision(False, "Permission denied - empty command")
        if not self.interactive:
            return GateDecision(True, "non-interactive mode")

        dangerous = _check_dangerous_command(command)
        if self.is_always_allowed(binary) and not dangerous:
            return GateDecision(True, f"'{binary}' is always allowed")

        warning = f"{YELLOW}warning: matches destructive pattern {dangerous}{RESET}\n" if dangerous else ""
        prompt = (
            f"{warning}{BOLD}Agent wants to execute:{RESET} {command}\n"
            f"Allow this command? (y)es, (n)o, (a)lways allow '{binary}', (i)nstruct: "
        )
        response = self._ask(prompt).lower()
        decision = self._decide(response, binary)
        logging_hook.log_event("permission_decision", {
            "binary": binary,
            "response": response,
            "allowed": decision.allowed,
            "instruction": decision.instruction is not None,
            "dangerous": bool(dangerous),
        })
        return decision

    def _decide(self, response: str, binary: str) -> GateDecision:
        if response in ALLOW_ONCE:
            return GateDecision(True, "allowed once")
        if response in DENY:
            return GateDecision(False, "Permission denied by user")
        if response in ALWAYS:
            self.allow_list[binary] = True
            print(f"{DIM}Command '{binary}' will always be allowed{RESET}")
            return GateDecision(True, f"'{binary}' added to allow-list")
        if response in INSTRUCT:
            instruction = self._ask("Enter alternative instructions for the agent: ")
            if instruction:
                return GateDecision(False, INSTRUCTION_SUPPLIED, instruction=instruction)
            return GateDecision(False, "Permission denied - no alternative instructions provided")
        return GateDecision(False, "Permission denied - invalid response")
