"""
Process executor: run one external command under a deadline.

Every OS-utility tool goes through run_process(). On timeout the whole
process group is killed so that `bash -c` grandchildren do not linger.
"""

import os
import signal
import subprocess
import time
from typing import Dict, List, Optional, Sequence, Union

from pilotcode.messages import ProcessResult
from pilotcode.tool_handlers._state import (
    DEFAULT_TOOL_TIMEOUT,
    EXIT_FAILURE,
    truncate_output,
)
from pilotcode.middleware import logging_hook


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        proc.kill()


def run_process(
    cmd: Union[str, Sequence[str]],
    timeout: float = DEFAULT_TOOL_TIMEOUT,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    input_text: Optional[str] = None,
) -> ProcessResult:
    """Run cmd (argv list, or a string for `bash -c`) and capture its output.

    Never raises for process-level failures: a missing binary, a permission
    problem or an elapsed deadline all come back as a non-zero ProcessResult.
    """
    if isinstance(cmd, str):
        argv: List[str] = ["bash", "-c", cmd]
    else:
        argv = [str(part) for part in cmd]
    if not argv:
        return ProcessResult("", "error: empty command", EXIT_FAILURE)

    start = time.time()
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            cwd=cwd,
            env=env,
            start_new_session=True,
        )
    except FileNotFoundError:
        return ProcessResult("", f"error: command not found: {argv[0]}", 127)
    except PermissionError:
        return ProcessResult("", f"error: permission denied while executing {argv[0]}", 126)
    except OSError as exc:
        return ProcessResult("", f"error: failed to execute {argv[0]}: {exc}", EXIT_FAILURE)

    try:
        stdout, stderr = proc.communicate(input=input_text, timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(proc)
        stdout, stderr = proc.communicate()
        duration = round(time.time() - start, 2)
        logging_hook.log_event("process_timeout", {"argv0": argv[0], "timeout": timeout, "duration_seconds": duration})
        message = f"error: command timed out after {timeout:g} seconds"
        if stderr:
            message = f"{message}\n{stderr}"
        return ProcessResult(truncate_output(stdout or ""), truncate_output(message), EXIT_FAILURE)

    return ProcessResult(
        truncate_output(stdout or ""),
        truncate_output(stderr or ""),
        int(proc.returncode),
    )
