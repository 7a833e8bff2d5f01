"""
Agent loop: drives one instruction from the first request to `finished`.

States: AWAITING_MODEL -> NUDGE -> AWAITING_MODEL when the reply has no tool
invocations, AWAITING_MODEL -> DISPATCH -> AWAITING_MODEL otherwise, and
TERMINATED on `finished` or a fatal error. All collaborators live on
AgentState and are injected, so tests drive the loop with a fake transport
and a scripted operator.
"""

import dataclasses
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pilotcode import hooks
from pilotcode.config import Settings
from pilotcode.interaction import CYAN, DIM, GREEN, RED, RESET, Operator
from pilotcode.messages import ConversationMessage, summarize_messages, system_message, user_message
from pilotcode.middleware import logging_hook
from pilotcode.model_calls import ApiError, TransportError, call_with_retry, make_transport
from pilotcode.protocol import ProtocolError, WireFormat, get_wire_format, usage_from_response, validate_tool_results
from pilotcode.tool_handlers import (
    DEFAULT_TOOL_TIMEOUT,
    DEFAULT_TOOLS,
    FINISHED_TOOL,
    MutationGuard,
    PermissionGate,
    ToolContext,
    ToolRegistry,
    ToolSchema,
    build_registry,
    dispatch,
)

NUDGE = (
    "You must use either the 'shell' tool (or another tool) to make progress, "
    "or the 'finished' tool to signal that the task is complete. "
    "Respond with a tool call."
)


Transport = Callable[[str, Dict[str, Any], Dict[str, str]], Dict[str, Any]]


@dataclass
class AgentOutcome:
    status: str  # "finished" or "error"
    turns: int = 0
    error: Optional[str] = None
    messages: List[ConversationMessage] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "finished"


@dataclass
class AgentState:
    settings: Settings
    registry: ToolRegistry
    wire_format: WireFormat
    transport: Transport
    guard: MutationGuard
    gate: PermissionGate
    operator: Optional[Operator] = None
    sleep: Callable[[float], None] = time.sleep
    echo: bool = False
    messages: List[ConversationMessage] = field(default_factory=list)


def create_state(
    settings: Settings,
    operator: Optional[Operator] = None,
    transport: Optional[Transport] = None,
    sleep: Callable[[float], None] = time.sleep,
    echo: bool = False,
    handlers: Optional[Dict[str, Callable[..., Any]]] = None,
    tools: Optional[List[ToolSchema]] = None,
) -> AgentState:
    # settings.tool_timeout only replaces the default; a tool's own timeout wins
    schemas = [
        dataclasses.replace(s, timeout=settings.tool_timeout) if s.timeout == DEFAULT_TOOL_TIMEOUT else s
        for s in (DEFAULT_TOOLS if tools is None else tools)
    ]
    return AgentState(
        settings=settings,
        registry=build_registry(schemas, handlers),
        wire_format=get_wire_format(settings.flavor),
        transport=transport or make_transport(settings.request_timeout),
        guard=MutationGuard(),
        gate=PermissionGate(
            operator=operator,
            interactive=settings.interactive,
            allow_list={b: True for b in settings.allow_list},
        ),
        operator=operator,
        sleep=sleep,
        echo=echo,
    )


def _echo_tool(state: AgentState, name: str, args: Dict[str, Any], exit_code: int, stdout: str, stderr: str) -> None:
    if not state.echo:
        return
    arg_preview = str(next(iter(args.values())))[:50] if args else ""
    print(f"\n{GREEN}⏺ tool {name}{RESET}({DIM}{arg_preview}{RESET})")
    text = stdout if exit_code == 0 else (stderr or stdout)
    first_line = (text.splitlines()[0] if text else f"exit {exit_code}")[:60]
    color = DIM if exit_code == 0 else RED
    print(f"  {color}⎿  {first_line}{RESET}")


def _request_once(state: AgentState, tools: List[Dict[str, Any]], turn: int) -> ConversationMessage:
    settings = state.settings
    fmt = state.wire_format
    validate_tool_results(state.messages)
    request = fmt.build_request(
        settings.model,
        state.messages,
        tools,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
    url = fmt.endpoint(settings.url)
    headers = fmt.headers(settings.api_key)
    retries = []

    def on_retry(attempt: int, delay: float, exc: BaseException) -> None:
        retries.append(delay)
        if state.echo:
            print(f"{DIM}[retry {attempt + 1} in {delay:.0f}s: {exc}]{RESET}")

    started = time.time()
    payload = call_with_retry(
        lambda: state.transport(url, request, headers),
        max_retries=settings.max_retries,
        base_delay=settings.base_delay,
        sleep=state.sleep,
        on_retry=on_retry,
    )
    assistant = fmt.parse_response(payload)
    prompt_tokens, completion_tokens = usage_from_response(payload)
    hooks.emit("api_response", {
        "turn": turn,
        "retries": len(retries),
        "duration_ms": int((time.time() - started) * 1000),
        "invocation_count": len(assistant.invocations),
        "text_chars": len(assistant.text),
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
    })
    return assistant


def run_agent(instruction: str, state: AgentState) -> AgentOutcome:
    settings = state.settings
    state.messages = [system_message(settings.system_prompt), user_message(instruction)]
    tools = state.wire_format.render_tools([entry.schema for entry in state.registry.values()])

    hooks.emit("agent_start", {
        "instruction_chars": len(instruction),
        "model": settings.model,
        "flavor": state.wire_format.name,
    })

    turns = 0
    outcome: Optional[AgentOutcome] = None
    try:
        while outcome is None:
            if settings.max_turns and turns >= settings.max_turns:
                outcome = AgentOutcome("error", turns, "max turns reached")
                break
            turns += 1
            hooks.emit("turn_start", dict(summarize_messages(state.messages), turn=turns))

            assistant = _request_once(state, tools, turns)
            invocations = assistant.invocations
            empty_reply = not invocations and not assistant.text.strip()
            # An assistant turn without content is never sent back.
            if not empty_reply:
                state.messages.append(assistant)
            if state.echo and assistant.text:
                print(f"\n{CYAN}⏺{RESET} {assistant.text}")

            if not invocations:
                state.messages.append(user_message(NUDGE))
                hooks.emit("nudge", {"turn": turns, "empty_reply": empty_reply})
                continue

            ctx = ToolContext(
                timeout=settings.tool_timeout,
                workdir=settings.workdir,
                guard=state.guard,
                gate=state.gate,
                operator=state.operator,
                settings=settings,
            )
            for inv in invocations:
                if inv.name == FINISHED_TOOL:
                    outcome = AgentOutcome("finished", turns)
                    break
                result = dispatch(state.registry, inv, ctx)
                state.messages.append(result.to_message())
                _echo_tool(state, inv.name, inv.arguments, result.exit_code, result.stdout, result.stderr)
            for text in ctx.pending_instructions:
                state.messages.append(user_message(text))
                hooks.emit("instruction_injected", {"turn": turns, "chars": len(text)})
    except (ApiError, TransportError, ProtocolError) as exc:
        logging_hook.log_event("agent_error", {
            "turn": turns,
            "error_type": type(exc).__name__,
            "error": str(exc)[:500],
        })
        outcome = AgentOutcome("error", turns, f"{type(exc).__name__}: {exc}")

    outcome.messages = list(state.messages)
    hooks.emit("agent_end", {
        "status": outcome.status,
        "turns": outcome.turns,
        "error": outcome.error,
    })
    return outcome
