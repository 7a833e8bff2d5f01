"""
Mutation guard: no in-place substitution without an identical preview.

preview() records the OperationKey of (target, search, replace) after a
successful dry run; apply() refuses to touch the file unless that exact key
is present and consumes it on success. The key covers the parameters only,
not the file content, so any change to any of the three strings (whitespace
included) requires a fresh preview.

One guard belongs to one conversation. Sharing an instance across
conversations would let one conversation's preview authorize another's apply.
"""

import difflib
import os
import re
import shutil
import tempfile
from typing import Dict, Optional, Tuple

from pilotcode.messages import ProcessResult
from pilotcode.tool_handlers._state import (
    EXIT_FAILURE,
    MAX_FILE_SIZE,
    _sha256,
    error_result,
    truncate_output,
)
from pilotcode.middleware import logging_hook

PREVIEW_REQUIRED = (
    "error: preview required. Must perform dry-run first with identical "
    "file_path, search_pattern and replace_pattern before applying."
)


def operation_key(target: str, search: str, replace: str) -> str:
    """Deterministic fingerprint of a substitution request."""
    buf = bytearray()
    for part in (target, search, replace):
        data = part.encode("utf-8")
        # Length prefix keeps ("a|b", "c") and ("a", "b|c") apart.
        buf += len(data).to_bytes(8, "big")
        buf += data
    return _sha256(bytes(buf))


def _read_target(target: str) -> Tuple[Optional[str], Optional[ProcessResult]]:
    if not target:
        return None, error_result("file_path is required")
    if not os.path.exists(target):
        return None, error_result(f"file not found: {target}")
    if not os.path.isfile(target):
        return None, error_result(f"not a regular file: {target}")
    if os.path.getsize(target) > MAX_FILE_SIZE:
        return None, error_result(f"file too large: {target}")
    try:
        with open(target, "r", encoding="utf-8", newline="") as f:
            return f.read(), None
    except UnicodeDecodeError:
        return None, error_result(f"file is not valid UTF-8 text: {target}")
    except OSError as exc:
        return None, error_result(f"cannot read {target}: {exc}")


def _substitute(text: str, search: str, replace: str) -> Tuple[Optional[str], int, Optional[ProcessResult]]:
    try:
        rx = re.compile(search, re.MULTILINE)
    except re.error as exc:
        return None, 0, error_result(f"invalid search pattern: {exc}")
    try:
        updated, count = rx.subn(replace, text)
    except (re.error, IndexError) as exc:
        return None, 0, error_result(f"invalid replace pattern: {exc}")
    return updated, count, None


def _unified_diff(target: str, before: str, after: str) -> str:
    diff = difflib.unified_diff(
        before.splitlines(keepends=True),
        after.splitlines(keepends=True),
        fromfile=f"a/{target}",
        tofile=f"b/{target}",
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in diff)


def _atomic_write(target: str, text: str) -> None:
    directory = os.path.dirname(os.path.abspath(target))
    fd, tmp_path = tempfile.mkstemp(prefix=".pilotcode-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        shutil.copymode(target, tmp_path)
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class MutationGuard:
    """Preview-before-apply cache: OperationKey -> approved."""

    def __init__(self) -> None:
        self._approved: Dict[str, bool] = {}

    def __len__(self) -> int:
        return len(self._approved)

    def is_approved(self, target: str, search: str, replace: str) -> bool:
        return self._approved.get(operation_key(target, search, replace), False)

    def preview(self, target: str, search: str, replace: str) -> ProcessResult:
        """Dry run: report the would-be diff and approve the matching apply."""
        text, err = _read_target(target)
        if err:
            return err
        updated, count, err = _substitute(text, search, replace)
        if err:
            return err

        key = operation_key(target, search, replace)
        self._approved[key] = True
        logging_hook.log_event("guard_preview", {"key": key[:16], "path": target, "matches": count})

        if count == 0 or updated == text:
            return ProcessResult(f"no changes: pattern matched {count} time(s) in {target}\n", "", 0)
        diff = _unified_diff(target, text, updated)
        header = f"dry-run: {count} replacement(s) in {target}; run again with dry_run=false to apply\n"
        return ProcessResult(truncate_output(header + diff), "", 0)

    def apply(self, target: str, search: str, replace: str) -> ProcessResult:
        key = operation_key(target, search, replace)
        if not self._approved.get(key):
            logging_hook.log_event("guard_apply_blocked", {"key": key[:16], "path": target})
            return ProcessResult("", PREVIEW_REQUIRED, EXIT_FAILURE)

        text, err = _read_target(target)
        if err:
            return err
        updated, count, err = _substitute(text, search, replace)
        if err:
            return err
        if updated != text:
            try:
                _atomic_write(target, updated)
            except OSError as exc:
                return error_result(f"cannot write {target}: {exc}")

        del self._approved[key]
        logging_hook.log_event("guard_apply", {"key": key[:16], "path": target, "matches": count})
        return ProcessResult(f"ok: applied {count} replacement(s) to {target}\n", "", 0)
