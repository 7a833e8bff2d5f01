"""
pilotcode command line: one-shot instruction or REPL.

Exit status: 0 when the agent finished, 1 for a missing instruction, a
configuration error or an unrecoverable loop error.
"""

import argparse
import os
import sys
import time
import uuid
from typing import Any, Dict, List, Optional

from pilotcode.agent import AgentState, create_state, run_agent
from pilotcode.config import ConfigError, Settings, load_settings, split_cli_overrides
from pilotcode.interaction import BOLD, CYAN, DIM, GREEN, RED, RESET, ConsoleOperator
from pilotcode.middleware import install_defaults, logging_hook
from pilotcode.middleware.metrics_hook import MetricsCollector

DEFAULT_LOG_DIR = os.path.join(".pilotcode", "logs")
QUIT_WORDS = ("quit", "exit", "/q")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pilotcode",
        description="pilotcode - coding agent with native tool calls",
        epilog="Any other --key value pair overrides the setting of the same name.",
    )
    parser.add_argument("instruction", nargs="?", help="Instruction to run (one-shot mode)")
    parser.add_argument("--repl", action="store_true", help="Read instructions interactively")
    parser.add_argument("--config", help="JSON settings file")
    parser.add_argument("--model", "-m", help="Model name")
    parser.add_argument("--url", help="API base URL")
    parser.add_argument("--flavor", choices=["content_blocks", "tool_calls"], help="Wire format")
    parser.add_argument("--temperature", type=float, help="Temperature")
    parser.add_argument("--max_tokens", type=int, help="Max tokens per reply")
    parser.add_argument("--non-interactive", dest="non_interactive", action="store_true",
                        help="Run shell commands without asking for permission")
    parser.add_argument("--log-dir", dest="log_dir", help="Directory for JSONL logs")
    return parser


def _cli_values(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "model": args.model,
        "base_url": args.url,
        "flavor": args.flavor,
        "temperature": args.temperature,
        "max_tokens": args.max_tokens,
        "interactive": False if args.non_interactive else None,
        "log_dir": args.log_dir,
    }


def run_once(instruction: str, state: AgentState, metrics: Optional[MetricsCollector] = None) -> int:
    settings = state.settings
    print(f"{BOLD}pilotcode{RESET} | {DIM}{settings.model} | {state.wire_format.name} | {os.path.abspath(settings.workdir)}{RESET}\n")
    logging_hook.log_event("run_start", {
        "instruction_len": len(instruction),
        "instruction_preview": instruction[:200],
    })

    outcome = run_agent(instruction, state)

    summary: Dict[str, Any] = metrics.summary() if metrics else {}
    logging_hook.log_event("run_end", {
        "status": outcome.status,
        "error": outcome.error,
        **summary,
    })
    if outcome.ok:
        print(f"\n{GREEN}✓{RESET} finished after {outcome.turns} turn(s)")
        return 0
    print(f"\n{RED}✗{RESET} {outcome.error}", file=sys.stderr)
    return 1


def repl(state: AgentState, metrics: Optional[MetricsCollector] = None, input_fn=None) -> int:
    """Each instruction starts a fresh conversation; guard and allow-list persist."""
    read_line = input_fn or input
    print(f"{CYAN}pilotcode{RESET} {DIM}type an instruction, or 'quit' to leave{RESET}\n")
    while True:
        try:
            line = read_line(f"{BOLD}❯{RESET} ").strip()
        except (KeyboardInterrupt, EOFError):
            print()
            break
        if not line:
            continue
        if line.lower() in QUIT_WORDS:
            break
        run_once(line, state, metrics)
    return 0


def run(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    try:
        filtered, extra = split_cli_overrides(argv)
        args = parser.parse_args(filtered)
        if not args.instruction and not args.repl:
            print(f"{RED}error:{RESET} an instruction is required (or use --repl)", file=sys.stderr)
            parser.print_usage(sys.stderr)
            return 1
        settings: Settings = load_settings(args.config, cli_values=_cli_values(args), extra_args=extra)
    except ConfigError as exc:
        print(f"{RED}error:{RESET} {exc}", file=sys.stderr)
        return 1

    run_id = f"{time.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"
    installed = install_defaults(run_context={
        "run_id": run_id,
        "model": settings.model,
        "flavor": settings.flavor,
    })
    log_path = logging_hook.init_logging(settings.log_dir or os.path.join(settings.workdir, DEFAULT_LOG_DIR))
    logging_hook.log_event("session_start", {
        "cwd": os.getcwd(),
        "log_path": log_path,
        "interactive": settings.interactive,
        "max_turns": settings.max_turns,
    })

    state = create_state(settings, operator=ConsoleOperator(), echo=True)
    metrics = installed.get("metrics")
    if args.repl:
        return repl(state, metrics)
    return run_once(args.instruction, state, metrics)


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
