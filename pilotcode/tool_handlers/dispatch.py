"""
Tool dispatch: dispatch(), argument repair, alias remap and validation.
"""

import dataclasses
import json
import re
import time
from typing import Any, Dict, Optional, Tuple

from pilotcode import hooks
from pilotcode.messages import ProcessResult, ToolInvocation, ToolResult
from pilotcode.middleware import logging_hook
from pilotcode.protocol import UnknownToolError
from pilotcode.tool_handlers._state import (
    EXIT_BAD_ARGS,
    EXIT_FAILURE,
    ToolContext,
    error_result,
    truncate_output,
)
from pilotcode.tool_handlers.schema import ToolRegistry, ToolSchema


# ---------------------------
# Argument alias mapping
# ---------------------------
# Maps common alternative parameter names to the canonical names, so a model
# that writes "file" instead of "file_path" is not rejected outright.

_ARG_ALIASES: Dict[str, Dict[str, str]] = {
    "shell": {
        "cmd": "command", "script": "command",
        "timeout": "timeout_seconds", "secs": "timeout_seconds", "seconds": "timeout_seconds",
    },
    "doc": {
        "name": "symbol", "package": "symbol", "query": "symbol",
    },
    "search": {
        "query": "pattern", "text": "pattern", "regex": "pattern", "pat": "pattern",
        "file": "path", "dir": "path", "directory": "path",
        "case_insensitive": "ignore_case", "files_only": "files_with_matches",
    },
    "sed": {
        "file": "file_path", "path": "file_path", "filename": "file_path", "filepath": "file_path",
        "search": "search_pattern", "pattern": "search_pattern", "find": "search_pattern",
        "replace": "replace_pattern", "replacement": "replace_pattern",
        "dryrun": "dry_run", "preview": "dry_run",
    },
    "comby": {
        "match": "match_template", "rewrite": "rewrite_template",
        "file": "path", "dir": "path", "directory": "path",
        "matcher": "language",
    },
    "format": {
        "file": "path", "file_path": "path", "dir": "path",
    },
    "todo": {
        "text": "content", "item": "content", "task": "content", "op": "action",
    },
    "ask_user": {
        "prompt": "question", "text": "question", "message": "question",
    },
}

_TRUE_WORDS = {"true", "yes", "1", "on"}
_FALSE_WORDS = {"false", "no", "0", "off"}


def _normalize_arg_names(tool_name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Remap alternative argument names to canonical names for a given tool."""
    aliases = _ARG_ALIASES.get(tool_name)
    if not aliases:
        return args
    normalized: Dict[str, Any] = {}
    for key, value in args.items():
        canonical = aliases.get(key.lower(), key)
        # Don't overwrite if canonical key already present
        if canonical in normalized or (canonical != key and canonical in args):
            continue
        normalized[canonical] = value
    return normalized


# ---------------------------
# JSON repair for malformed tool arguments
# ---------------------------

def _repair_json(raw: str) -> str:
    """Try to fix common JSON errors: trailing commas, single quotes, unclosed braces."""
    if not raw or not raw.strip():
        return raw
    s = raw.strip()
    s = re.sub(r',\s*([}\]])', r'\1', s)
    if "'" in s and '"' not in s:
        s = s.replace("'", '"')
    opens = s.count('{') - s.count('}')
    if opens > 0:
        s += '}' * opens
    opens_bracket = s.count('[') - s.count(']')
    if opens_bracket > 0:
        s += ']' * opens_bracket
    return s


def _decode_raw_arguments(tool_name: str, raw: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    if not raw.strip():
        return {}, None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        repaired = _repair_json(raw)
        try:
            value = json.loads(repaired)
        except json.JSONDecodeError:
            return None, f"error: invalid JSON in tool arguments: {exc}. Raw: {raw[:100]}"
        logging_hook.log_event("format_repair", {"tool": tool_name, "reason": "json_repair"})
    if not isinstance(value, dict):
        return None, f"error: invalid arguments for tool '{tool_name}': expected object"
    return value, None


# ---------------------------
# Coercion and validation
# ---------------------------

def _coerce_args(schema: ToolSchema, args: Dict[str, Any]) -> None:
    """Convert boolean-like and numeric strings in place, per declared type."""
    for key, value in list(args.items()):
        spec = schema.param(key)
        if spec is None or not isinstance(value, str):
            continue
        text = value.strip().lower()
        if spec.type == "boolean":
            if text in _TRUE_WORDS:
                args[key] = True
            elif text in _FALSE_WORDS:
                args[key] = False
        elif spec.type == "number" and re.fullmatch(r"[-+]?\d+(\.\d+)?", text):
            args[key] = float(text)
        elif spec.type == "integer" and re.fullmatch(r"[-+]?\d+(\.0+)?", text):
            args[key] = int(float(text))


def _validate_tool_args(schema: ToolSchema, args: Dict[str, Any]) -> Optional[str]:
    tool_name = schema.name
    valid = [p.name for p in schema.parameters]

    unknown = sorted(set(args) - set(valid))
    if unknown:
        return (
            f"error: unknown parameter(s) for tool '{tool_name}': {', '.join(unknown)}. "
            f"Valid parameters: {', '.join(sorted(valid)) or '(none)'}"
        )

    missing = sorted(set(schema.required) - set(args))
    if missing:
        example_args = {p: "..." for p in schema.required}
        return (
            f"error: missing required parameter(s) for tool '{tool_name}': {', '.join(missing)}. "
            f"Example: {tool_name}({json.dumps(example_args)})"
        )

    for key, value in args.items():
        spec = schema.param(key)
        base_type = spec.type
        if value is None:
            if not spec.required:
                continue
            return f"error: invalid type for parameter '{key}' on tool '{tool_name}': expected {base_type}"
        if base_type == "string" and not isinstance(value, str):
            return f"error: invalid type for parameter '{key}' on tool '{tool_name}': expected string"
        if base_type == "number" and (isinstance(value, bool) or not isinstance(value, (int, float))):
            return f"error: invalid type for parameter '{key}' on tool '{tool_name}': expected number"
        if base_type == "integer" and (isinstance(value, bool) or not isinstance(value, int)):
            return f"error: invalid type for parameter '{key}' on tool '{tool_name}': expected integer"
        if base_type == "boolean" and not isinstance(value, bool):
            return f"error: invalid type for parameter '{key}' on tool '{tool_name}': expected boolean"
        if base_type == "array" and not isinstance(value, list):
            return f"error: invalid type for parameter '{key}' on tool '{tool_name}': expected array"
        if base_type == "object" and not isinstance(value, dict):
            return f"error: invalid type for parameter '{key}' on tool '{tool_name}': expected object"

    return None


# ---------------------------
# Dispatch
# ---------------------------

def prepare_arguments(schema: ToolSchema, invocation: ToolInvocation) -> Tuple[Dict[str, Any], Optional[str]]:
    """Decode, remap, coerce and validate; returns (args, error_text)."""
    if invocation.raw_arguments is not None:
        args, err = _decode_raw_arguments(schema.name, invocation.raw_arguments)
        if err:
            return {}, err
    else:
        args = dict(invocation.arguments or {})

    original_keys = set(args)
    args = _normalize_arg_names(schema.name, args)
    remapped = set(args) - original_keys
    if remapped:
        logging_hook.log_event("format_repair", {
            "tool": schema.name,
            "reason": "arg_alias_remap",
            "remapped": sorted(remapped),
        })
    _coerce_args(schema, args)
    return args, _validate_tool_args(schema, args)


def dispatch(registry: ToolRegistry, invocation: ToolInvocation, ctx: ToolContext) -> ToolResult:
    entry = registry.get(invocation.name)
    if entry is None:
        raise UnknownToolError(invocation.name, sorted(registry))

    args, validation_error = prepare_arguments(entry.schema, invocation)
    hooks.emit("tool_before", {
        "tool_name": invocation.name,
        "invocation_id": invocation.id,
        "args": args,
    })

    started = time.time()
    if validation_error:
        result = ProcessResult("", validation_error, EXIT_BAD_ARGS)
    else:
        call_ctx = dataclasses.replace(ctx, timeout=entry.schema.timeout)
        try:
            result = entry.handler(args, call_ctx)
        except Exception as err:
            logging_hook.log_event("tool_exception", {
                "tool": invocation.name,
                "error_type": type(err).__name__,
                "error": str(err)[:500],
            })
            result = error_result(f"{type(err).__name__}: {err}", EXIT_FAILURE)

    tool_result = ToolResult(
        invocation.id,
        truncate_output(result.stdout or ""),
        truncate_output(result.stderr or ""),
        int(result.exit_code),
    )
    hooks.emit("tool_after", {
        "tool_name": invocation.name,
        "invocation_id": invocation.id,
        "exit_code": tool_result.exit_code,
        "stdout_chars": len(tool_result.stdout),
        "stderr_chars": len(tool_result.stderr),
        "duration_ms": int((time.time() - started) * 1000),
    })
    return tool_result
