"""
Tool schema table and rendering: DEFAULT_TOOLS, build_registry(),
make_openai_tools(), make_anthropic_tools().
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pilotcode.tool_handlers._state import DEFAULT_TOOL_TIMEOUT

# JSON-schema base types accepted in ParamSpec.type
PARAM_TYPES = ("string", "integer", "number", "boolean", "array", "object")


@dataclass(frozen=True)
class ParamSpec:
    name: str
    type: str
    description: str = ""
    required: bool = True


@dataclass(frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: Tuple[ParamSpec, ...] = ()
    timeout: float = DEFAULT_TOOL_TIMEOUT

    def param(self, name: str) -> Optional[ParamSpec]:
        for p in self.parameters:
            if p.name == name:
                return p
        return None

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]


@dataclass(frozen=True)
class RegisteredTool:
    schema: ToolSchema
    handler: Callable[..., Any]


ToolRegistry = Dict[str, RegisteredTool]


def _p(name: str, type_: str, description: str, required: bool = True) -> ParamSpec:
    if type_ not in PARAM_TYPES:
        raise ValueError(f"invalid parameter type '{type_}' for '{name}'")
    return ParamSpec(name, type_, description, required)


DEFAULT_TOOLS: Tuple[ToolSchema, ...] = (
    ToolSchema(
        "shell",
        "Run a bash command in the working directory. The user may be asked to "
        "approve the command first. Returns stdout, stderr and exit_code.",
        (
            _p("command", "string", "The command line to run with bash -c."),
            _p("timeout_seconds", "number", "Timeout in seconds (default 10, max 600).", required=False),
        ),
    ),
    ToolSchema(
        "doc",
        "Show documentation for a module, package or symbol.",
        (_p("symbol", "string", "Dotted symbol or package path, e.g. json.dumps."),),
    ),
    ToolSchema(
        "search",
        "Search file contents for a regular expression (ripgrep syntax).",
        (
            _p("pattern", "string", "Regular expression to search for."),
            _p("path", "string", "File or directory to search (default: working directory).", required=False),
            _p("ignore_case", "boolean", "Case-insensitive search.", required=False),
            _p("line_numbers", "boolean", "Prefix matches with line numbers.", required=False),
            _p("files_with_matches", "boolean", "Only list the files that match.", required=False),
        ),
    ),
    ToolSchema(
        "sed",
        "Regex search and replace within one file. Always call with dry_run=true "
        "first to see the diff; applying (dry_run=false) is refused unless an "
        "identical dry run came first.",
        (
            _p("file_path", "string", "File to edit."),
            _p("search_pattern", "string", "Python regular expression to replace (all matches)."),
            _p("replace_pattern", "string", "Replacement text; \\1 and \\g<name> refer to groups."),
            _p("dry_run", "boolean", "Preview only (default true).", required=False),
        ),
    ),
    ToolSchema(
        "comby",
        "Structural search and rewrite with comby templates.",
        (
            _p("match_template", "string", "Template to match, e.g. 'foo(:[args])'."),
            _p("rewrite_template", "string", "Rewrite template, e.g. 'bar(:[args])'."),
            _p("path", "string", "File or directory (default: working directory).", required=False),
            _p("language", "string", "File extension selecting the matcher, e.g. .py.", required=False),
            _p("rule", "string", "Optional comby rule.", required=False),
            _p("match_only", "boolean", "Only report matches.", required=False),
            _p("in_place", "boolean", "Rewrite files in place.", required=False),
            _p("diff", "boolean", "Show a unified diff of the rewrite.", required=False),
        ),
    ),
    ToolSchema(
        "format",
        "Run the source formatter on a file or directory.",
        (
            _p("path", "string", "File or directory to format."),
            _p("list", "boolean", "List files whose formatting differs.", required=False),
            _p("diff", "boolean", "Show the formatting diff.", required=False),
            _p("write", "boolean", "Write the formatted result back.", required=False),
        ),
    ),
    ToolSchema(
        "todo",
        "Manage the task checklist. Actions: read, write (replace whole file), "
        "add (append a pending item), complete (mark the first pending item "
        "containing content as done), update (content 'old -> new').",
        (
            _p("action", "string", "One of read, write, add, complete, update."),
            _p("content", "string", "Item text, full file content or 'old -> new'.", required=False),
        ),
    ),
    ToolSchema(
        "ask_user",
        "Ask the user a clarifying question and wait for the answer.",
        (_p("question", "string", "The question to ask."),),
    ),
    ToolSchema(
        "finished",
        "Call when the task is complete. Ends the session.",
        (),
    ),
)


def default_handlers() -> Dict[str, Callable[..., Any]]:
    from pilotcode.tool_handlers.control_handlers import ask_user, finished
    from pilotcode.tool_handlers.read_handlers import doc
    from pilotcode.tool_handlers.search_handlers import search
    from pilotcode.tool_handlers.shell_handler import shell
    from pilotcode.tool_handlers.todo_handler import todo
    from pilotcode.tool_handlers.write_handlers import comby, format_fn, sed

    return {
        "shell": shell,
        "doc": doc,
        "search": search,
        "sed": sed,
        "comby": comby,
        "format": format_fn,
        "todo": todo,
        "ask_user": ask_user,
        "finished": finished,
    }


def build_registry(
    schemas: Iterable[ToolSchema] = DEFAULT_TOOLS,
    handlers: Optional[Dict[str, Callable[..., Any]]] = None,
) -> ToolRegistry:
    if handlers is None:
        handlers = default_handlers()
    registry: ToolRegistry = {}
    for schema in schemas:
        handler = handlers.get(schema.name)
        if handler is None:
            raise ValueError(f"Missing handler for tool '{schema.name}'")
        if schema.name in registry:
            raise ValueError(f"Duplicate tool definition: {schema.name}")
        registry[schema.name] = RegisteredTool(schema, handler)
    return registry


def json_schema(schema: ToolSchema) -> Dict[str, Any]:
    properties: Dict[str, Any] = {}
    for p in schema.parameters:
        prop: Dict[str, Any] = {"type": p.type}
        if p.type == "array":
            prop["items"] = {"type": "string"}
        if p.description:
            prop["description"] = p.description
        properties[p.name] = prop
    return {
        "type": "object",
        "properties": properties,
        "required": schema.required,
        "additionalProperties": False,
    }


def make_openai_tools(schemas: Iterable[ToolSchema]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": s.name,
                "description": s.description,
                "parameters": json_schema(s),
            },
        }
        for s in schemas
    ]


def make_anthropic_tools(schemas: Iterable[ToolSchema]) -> List[Dict[str, Any]]:
    return [
        {
            "name": s.name,
            "description": s.description,
            "input_schema": json_schema(s),
        }
        for s in schemas
    ]
