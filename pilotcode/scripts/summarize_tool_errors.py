#!/usr/bin/env python3
"""Summarize tool calls and errors per pilotcode run.

A REPL session writes several runs into one log file, so every run_end
record becomes its own row.
"""

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

HEADERS = [
    "file",
    "ts",
    "status",
    "turns",
    "tool_calls_total",
    "tool_errors_total",
    "nudges",
    "api_retries",
    "tool_error_counts",
    "tool_call_counts",
]


def _format_counts(counts: Optional[Dict[str, Any]]) -> str:
    if not counts:
        return "-"
    return ", ".join(f"{key}:{counts[key]}" for key in sorted(counts))


def load_runs(path: Path) -> List[Dict[str, Any]]:
    runs = []
    pending_end = None
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        event = obj.get("event")
        if event == "agent_end":
            pending_end = obj
        elif event == "run_end":
            runs.append(obj)
            pending_end = None
    # A run that crashed before run_end still left its agent_end record.
    if pending_end is not None:
        pending_end["_partial"] = True
        runs.append(pending_end)
    return runs


def collect_rows(log_dir: Path, pattern: str) -> List[Tuple[Path, Dict[str, Any]]]:
    rows = []
    for path in sorted(log_dir.glob(pattern)):
        for run in load_runs(path):
            rows.append((path, run))
    return rows


def format_table(rows: List[Tuple[Path, Dict[str, Any]]]) -> List[str]:
    table = []
    for path, run in rows:
        table.append({
            "file": path.name,
            "ts": run.get("ts", ""),
            "status": run.get("status", "") + (" (partial)" if run.get("_partial") else ""),
            "turns": run.get("turns", ""),
            "tool_calls_total": run.get("tool_calls_total", ""),
            "tool_errors_total": run.get("tool_errors_total", ""),
            "nudges": run.get("nudges", ""),
            "api_retries": run.get("api_retries", ""),
            "tool_error_counts": _format_counts(run.get("tool_error_counts")),
            "tool_call_counts": _format_counts(run.get("tool_call_counts")),
        })

    widths = {h: len(h) for h in HEADERS}
    for row in table:
        for h in HEADERS:
            widths[h] = max(widths[h], len(str(row.get(h, ""))))

    lines = [
        " | ".join(h.ljust(widths[h]) for h in HEADERS),
        "-+-".join("-" * widths[h] for h in HEADERS),
    ]
    for row in table:
        lines.append(" | ".join(str(row.get(h, "")).ljust(widths[h]) for h in HEADERS))
    return lines


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Summarize tool errors per run.")
    parser.add_argument(
        "--logs-dir",
        default=str(Path(".pilotcode") / "logs"),
        help="Path to pilotcode logs directory.",
    )
    parser.add_argument(
        "--pattern",
        default="pilotcode_*.jsonl",
        help="Glob pattern for log files.",
    )
    parser.add_argument(
        "--sort",
        choices=["mtime", "name"],
        default="mtime",
        help="Sort order for logs.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=0,
        help="Limit number of rows (0 = no limit).",
    )
    args = parser.parse_args(argv)

    rows = collect_rows(Path(args.logs_dir), args.pattern)
    if args.sort == "mtime":
        rows.sort(key=lambda item: item[0].stat().st_mtime, reverse=True)
    else:
        rows.sort(key=lambda item: item[0].name)
    if args.limit and args.limit > 0:
        rows = rows[: args.limit]

    if not rows:
        print("No run summaries found.")
        return 1

    for line in format_table(rows):
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
