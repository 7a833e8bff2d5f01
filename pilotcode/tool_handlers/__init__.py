"""
Tool handlers package: tool bodies, the mutation guard, the permission gate
and the registry/dispatcher that ties them together.

Re-exports the public names so callers can import from
`pilotcode.tool_handlers` directly.
"""

# _state: constants, per-call context, utilities
from pilotcode.tool_handlers._state import (
    DEFAULT_TOOL_TIMEOUT,
    EXIT_BAD_ARGS,
    EXIT_FAILURE,
    MAX_TOOL_TIMEOUT,
    ToolContext,
    error_result,
)

# _process: external command execution
from pilotcode.tool_handlers._process import run_process

# mutation_guard
from pilotcode.tool_handlers.mutation_guard import PREVIEW_REQUIRED, MutationGuard, operation_key

# permission
from pilotcode.tool_handlers.permission import GateDecision, PermissionGate, leading_binary

# handlers
from pilotcode.tool_handlers.control_handlers import FINISHED_TOOL, ask_user, finished
from pilotcode.tool_handlers.read_handlers import doc
from pilotcode.tool_handlers.search_handlers import search
from pilotcode.tool_handlers.shell_handler import shell
from pilotcode.tool_handlers.todo_handler import todo
from pilotcode.tool_handlers.write_handlers import comby, format_fn, sed

# schema
from pilotcode.tool_handlers.schema import (
    DEFAULT_TOOLS,
    ParamSpec,
    RegisteredTool,
    ToolRegistry,
    ToolSchema,
    build_registry,
    make_anthropic_tools,
    make_openai_tools,
)

# dispatch
from pilotcode.tool_handlers.dispatch import dispatch, prepare_arguments
