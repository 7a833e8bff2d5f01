"""Checklist file management for the todo tool.

File shape: a heading line, then items written as `- [ ] text` (pending) or
`- [x] text` (done). Any other lines are preserved verbatim. Items are
addressed by plain substring match on their text.
"""

import os
import re
from dataclasses import dataclass
from typing import List, Optional, Union

from pilotcode.middleware import logging_hook

DEFAULT_HEADING = "# TODO"
RENAME_SEPARATOR = " -> "

_ITEM_RE = re.compile(r"^- \[( |x|X)\] (.*)$")


@dataclass
class ChecklistItem:
    text: str
    done: bool = False

    def render(self) -> str:
        return f"- [{'x' if self.done else ' '}] {self.text}"


class ChecklistError(ValueError):
    pass


class Checklist:
    def __init__(self, lines: Optional[List[Union[str, ChecklistItem]]] = None) -> None:
        self._lines: List[Union[str, ChecklistItem]] = list(lines or [])

    @classmethod
    def parse(cls, text: str) -> "Checklist":
        lines: List[Union[str, ChecklistItem]] = []
        for raw in text.splitlines():
            m = _ITEM_RE.match(raw)
            if m:
                lines.append(ChecklistItem(text=m.group(2), done=m.group(1) != " "))
            else:
                lines.append(raw)
        return cls(lines)

    @classmethod
    def load(cls, path: str) -> "Checklist":
        if not os.path.exists(path):
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            return cls.parse(f.read())

    def save(self, path: str) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.render())

    def is_empty(self) -> bool:
        return not any(isinstance(ln, ChecklistItem) or ln.strip() for ln in self._lines)

    def items(self) -> List[ChecklistItem]:
        return [ln for ln in self._lines if isinstance(ln, ChecklistItem)]

    def render(self) -> str:
        if not self._lines:
            return ""
        out = [ln.render() if isinstance(ln, ChecklistItem) else ln for ln in self._lines]
        return "\n".join(out) + "\n"

    def add(self, text: str) -> ChecklistItem:
        text = (text or "").strip()
        if not text:
            raise ChecklistError("item text is required")
        if self.is_empty():
            self._lines = [DEFAULT_HEADING, ""]
        item = ChecklistItem(text=text)
        self._lines.append(item)
        logging_hook.log_event("todo_add", {"text_len": len(text)})
        return item

    def complete(self, needle: str) -> ChecklistItem:
        """Mark the first pending item containing needle as done."""
        if not needle:
            raise ChecklistError("item text is required")
        for item in self.items():
            if not item.done and needle in item.text:
                item.done = True
                logging_hook.log_event("todo_complete", {"text_len": len(item.text)})
                return item
        raise ChecklistError(f"no pending item matching '{needle}'")

    def update(self, spec: str) -> ChecklistItem:
        """Rename the first item containing OLD, given 'OLD -> NEW'; keeps its marker."""
        if not spec or RENAME_SEPARATOR not in spec:
            raise ChecklistError(f"update requires the form 'old{RENAME_SEPARATOR}new'")
        old, new = spec.split(RENAME_SEPARATOR, 1)
        old, new = old.strip(), new.strip()
        if not old or not new:
            raise ChecklistError(f"update requires the form 'old{RENAME_SEPARATOR}new'")
        for item in self.items():
            if old in item.text:
                item.text = new
                logging_hook.log_event("todo_update", {"done": item.done})
                return item
        raise ChecklistError(f"no item matching '{old}'")
