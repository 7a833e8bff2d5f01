"""
Protocol adapter between the internal message model and the two wire formats
of hosted chat-completion services.

- ContentBlockFormat ("content_blocks"): Anthropic Messages shape. Assistant
  content is a list of text / tool_use blocks, tool results travel as
  tool_result blocks inside a user message, and the system prompt is a
  top-level field.
- ToolCallsFormat ("tool_calls"): OpenAI chat-completions shape. Assistant
  text plus a sibling tool_calls array with JSON-string arguments, tool
  results as role "tool" messages keyed by tool_call_id.

encode_messages() returns the message-bearing fragment of a request body
({"messages": [...]} plus "system" where the format has one);
decode_messages() accepts the same fragment.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pilotcode.messages import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ROLE_USER,
    ContentItem,
    ConversationMessage,
    Text,
    ToolInvocation,
    parse_tool_content,
)

ANTHROPIC_VERSION = "2023-06-01"


class ProtocolError(Exception):
    """Malformed response or a conversation that violates the wire contract."""


class UnknownToolError(ProtocolError):
    def __init__(self, name: str, available: Iterable[str] = ()):
        self.name = name
        self.available = sorted(available)
        super().__init__(
            f"unknown tool '{name}'. Available tools: {', '.join(self.available) or '(none)'}"
        )


def validate_tool_results(messages: List[ConversationMessage]) -> None:
    """Every tool message must answer an invocation of the preceding assistant turn, once."""
    pending: Optional[set] = None
    answered: set = set()
    for idx, msg in enumerate(messages):
        if msg.role == ROLE_ASSISTANT:
            pending = {inv.id for inv in msg.invocations}
            answered = set()
        elif msg.role == ROLE_TOOL:
            cid = msg.correlation_id
            if pending is None or cid not in pending:
                raise ProtocolError(
                    f"tool result at index {idx} has no matching invocation: {cid!r}"
                )
            if cid in answered:
                raise ProtocolError(f"duplicate tool result for invocation {cid!r}")
            answered.add(cid)


def _require(cond: bool, message: str) -> None:
    if not cond:
        raise ProtocolError(message)


class WireFormat:
    """Stateless converter for one wire schema."""

    name = ""

    def encode_messages(self, messages: List[ConversationMessage]) -> Dict[str, Any]:
        raise NotImplementedError

    def decode_messages(self, fragment: Dict[str, Any]) -> List[ConversationMessage]:
        raise NotImplementedError

    def parse_response(self, payload: Any) -> ConversationMessage:
        raise NotImplementedError

    def render_tools(self, schemas) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def endpoint(self, base_url: str) -> str:
        raise NotImplementedError

    def headers(self, api_key: str) -> Dict[str, str]:
        raise NotImplementedError

    def build_request(
        self,
        model: str,
        messages: List[ConversationMessage],
        tools: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {"model": model}
        request.update(self.encode_messages(messages))
        if tools:
            request["tools"] = tools
        if temperature is not None:
            request["temperature"] = temperature
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        return request


# ---------------------------
# content_blocks
# ---------------------------

class ContentBlockFormat(WireFormat):
    name = "content_blocks"

    def endpoint(self, base_url: str) -> str:
        return base_url.rstrip("/") + "/messages"

    def headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def render_tools(self, schemas) -> List[Dict[str, Any]]:
        from pilotcode.tool_handlers.schema import make_anthropic_tools
        return make_anthropic_tools(schemas)

    def _assistant_blocks(self, msg: ConversationMessage) -> List[Dict[str, Any]]:
        if isinstance(msg.content, str):
            return [{"type": "text", "text": msg.content}] if msg.content else []
        blocks: List[Dict[str, Any]] = []
        for item in msg.content:
            if isinstance(item, Text):
                blocks.append({"type": "text", "text": item.value})
            else:
                blocks.append({
                    "type": "tool_use",
                    "id": item.id,
                    "name": item.name,
                    "input": self._tool_input(item),
                })
        return blocks

    @staticmethod
    def _tool_input(inv: ToolInvocation) -> Any:
        if inv.raw_arguments is None:
            return dict(inv.arguments)
        try:
            return json.loads(inv.raw_arguments)
        except json.JSONDecodeError:
            return inv.raw_arguments

    def encode_messages(self, messages: List[ConversationMessage]) -> Dict[str, Any]:
        system_parts: List[str] = []
        out: List[Dict[str, Any]] = []
        # A user message holding tool_result blocks stays open for the text
        # of user messages that follow it, so roles keep alternating.
        group: Optional[List[Dict[str, Any]]] = None
        for msg in messages:
            if msg.role == ROLE_SYSTEM:
                system_parts.append(msg.text)
            elif msg.role == ROLE_TOOL:
                if group is None:
                    group = []
                    out.append({"role": ROLE_USER, "content": group})
                block: Dict[str, Any] = {
                    "type": "tool_result",
                    "tool_use_id": msg.correlation_id,
                    "content": msg.text,
                }
                if parse_tool_content(msg.text).get("exit_code"):
                    block["is_error"] = True
                group.append(block)
            elif msg.role == ROLE_USER:
                if group is None and out and out[-1]["role"] == ROLE_USER:
                    # back-to-back user text (e.g. a nudge after an empty reply)
                    group = [{"type": "text", "text": out[-1]["content"]}]
                    out[-1]["content"] = group
                if group is not None:
                    group.append({"type": "text", "text": msg.text})
                else:
                    out.append({"role": ROLE_USER, "content": msg.text})
            elif msg.role == ROLE_ASSISTANT:
                group = None
                out.append({"role": ROLE_ASSISTANT, "content": self._assistant_blocks(msg)})
            else:
                raise ProtocolError(f"unsupported role: {msg.role!r}")
        fragment: Dict[str, Any] = {"messages": out}
        if system_parts:
            fragment["system"] = "\n\n".join(system_parts)
        return fragment

    def _decode_assistant(self, content: Any) -> List[ContentItem]:
        if isinstance(content, str):
            return [Text(content)] if content else []
        _require(isinstance(content, list), "assistant content must be a string or a list of blocks")
        items: List[ContentItem] = []
        for block in content:
            _require(isinstance(block, dict), "content block must be an object")
            btype = block.get("type")
            if btype == "text":
                items.append(Text(str(block.get("text", ""))))
            elif btype == "tool_use":
                _require(bool(block.get("id")) and bool(block.get("name")), "tool_use block requires id and name")
                args = block.get("input")
                if isinstance(args, dict):
                    items.append(ToolInvocation(block["id"], block["name"], args))
                else:
                    items.append(ToolInvocation(block["id"], block["name"], {}, raw_arguments=json.dumps(args)))
            # thinking and other block types carry nothing the loop uses
        return items

    @staticmethod
    def _tool_result_text(content: Any) -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(b.get("text", "") for b in content if isinstance(b, dict))
        return "" if content is None else str(content)

    def decode_messages(self, fragment: Dict[str, Any]) -> List[ConversationMessage]:
        out: List[ConversationMessage] = []
        system = fragment.get("system")
        if isinstance(system, list):
            system = "".join(b.get("text", "") for b in system if isinstance(b, dict))
        if system:
            out.append(ConversationMessage(ROLE_SYSTEM, system))
        for wire in fragment.get("messages") or []:
            role = wire.get("role")
            content = wire.get("content")
            if role == ROLE_ASSISTANT:
                out.append(ConversationMessage(ROLE_ASSISTANT, self._decode_assistant(content)))
            elif role == ROLE_USER and isinstance(content, list):
                for block in content:
                    btype = block.get("type")
                    if btype == "tool_result":
                        out.append(ConversationMessage(
                            ROLE_TOOL,
                            self._tool_result_text(block.get("content")),
                            correlation_id=block.get("tool_use_id"),
                        ))
                    elif btype == "text":
                        out.append(ConversationMessage(ROLE_USER, block.get("text", "")))
            elif role == ROLE_USER:
                out.append(ConversationMessage(ROLE_USER, content or ""))
            else:
                raise ProtocolError(f"unsupported role: {role!r}")
        return out

    def parse_response(self, payload: Any) -> ConversationMessage:
        _require(isinstance(payload, dict), "response is not a JSON object")
        if payload.get("type") == "error":
            err = payload.get("error") or {}
            raise ProtocolError(f"service error: {err.get('message') or err}")
        content = payload.get("content")
        _require(isinstance(content, list), "response has no content list")
        return ConversationMessage(ROLE_ASSISTANT, self._decode_assistant(content))


# ---------------------------
# tool_calls
# ---------------------------

class ToolCallsFormat(WireFormat):
    name = "tool_calls"

    def endpoint(self, base_url: str) -> str:
        return base_url.rstrip("/") + "/chat/completions"

    def headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    def render_tools(self, schemas) -> List[Dict[str, Any]]:
        from pilotcode.tool_handlers.schema import make_openai_tools
        return make_openai_tools(schemas)

    @staticmethod
    def _encode_call(inv: ToolInvocation) -> Dict[str, Any]:
        if inv.raw_arguments is not None:
            arguments = inv.raw_arguments
        else:
            arguments = json.dumps(inv.arguments, ensure_ascii=False)
        return {
            "id": inv.id,
            "type": "function",
            "function": {"name": inv.name, "arguments": arguments},
        }

    def encode_messages(self, messages: List[ConversationMessage]) -> Dict[str, Any]:
        out: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.role in (ROLE_SYSTEM, ROLE_USER):
                out.append({"role": msg.role, "content": msg.text})
            elif msg.role == ROLE_TOOL:
                out.append({"role": ROLE_TOOL, "tool_call_id": msg.correlation_id, "content": msg.text})
            elif msg.role == ROLE_ASSISTANT:
                wire: Dict[str, Any] = {"role": ROLE_ASSISTANT, "content": msg.text or None}
                calls = [self._encode_call(inv) for inv in msg.invocations]
                if calls:
                    wire["tool_calls"] = calls
                out.append(wire)
            else:
                raise ProtocolError(f"unsupported role: {msg.role!r}")
        return {"messages": out}

    @staticmethod
    def _decode_call(call: Any) -> ToolInvocation:
        _require(isinstance(call, dict), "tool call must be an object")
        func = call.get("function") or {}
        call_id = call.get("id")
        name = func.get("name")
        _require(bool(call_id) and bool(name), "tool call requires id and function.name")
        raw = func.get("arguments")
        if isinstance(raw, dict):
            return ToolInvocation(call_id, name, raw)
        if raw is None or raw == "":
            return ToolInvocation(call_id, name, {})
        try:
            args = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return ToolInvocation(call_id, name, {}, raw_arguments=str(raw))
        if not isinstance(args, dict):
            return ToolInvocation(call_id, name, {}, raw_arguments=str(raw))
        return ToolInvocation(call_id, name, args)

    def _decode_assistant(self, wire: Dict[str, Any]) -> List[ContentItem]:
        items: List[ContentItem] = []
        content = wire.get("content")
        if isinstance(content, list):
            content = "".join(p.get("text", "") for p in content if isinstance(p, dict))
        if content:
            items.append(Text(content))
        for call in wire.get("tool_calls") or []:
            items.append(self._decode_call(call))
        return items

    def decode_messages(self, fragment: Dict[str, Any]) -> List[ConversationMessage]:
        out: List[ConversationMessage] = []
        for wire in fragment.get("messages") or []:
            role = wire.get("role")
            if role in (ROLE_SYSTEM, ROLE_USER):
                out.append(ConversationMessage(role, wire.get("content") or ""))
            elif role == ROLE_TOOL:
                out.append(ConversationMessage(ROLE_TOOL, wire.get("content") or "", correlation_id=wire.get("tool_call_id")))
            elif role == ROLE_ASSISTANT:
                out.append(ConversationMessage(ROLE_ASSISTANT, self._decode_assistant(wire)))
            else:
                raise ProtocolError(f"unsupported role: {role!r}")
        return out

    def parse_response(self, payload: Any) -> ConversationMessage:
        _require(isinstance(payload, dict), "response is not a JSON object")
        if payload.get("error"):
            err = payload["error"]
            raise ProtocolError(f"service error: {err.get('message') if isinstance(err, dict) else err}")
        choices = payload.get("choices")
        _require(isinstance(choices, list) and bool(choices), "response has no choices")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        _require(isinstance(message, dict), "response choice has no message")
        return ConversationMessage(ROLE_ASSISTANT, self._decode_assistant(message))


WIRE_FORMATS: Dict[str, WireFormat] = {
    ContentBlockFormat.name: ContentBlockFormat(),
    ToolCallsFormat.name: ToolCallsFormat(),
}


def get_wire_format(name: str) -> WireFormat:
    fmt = WIRE_FORMATS.get((name or "").strip().lower())
    if fmt is None:
        raise ValueError(f"unknown wire format '{name}'; available: {', '.join(sorted(WIRE_FORMATS))}")
    return fmt


def usage_from_response(payload: Any) -> Tuple[Optional[int], Optional[int]]:
    """(input/prompt tokens, output/completion tokens) when the service reports them."""
    usage = payload.get("usage") if isinstance(payload, dict) else None
    if not isinstance(usage, dict):
        return None, None
    prompt = usage.get("input_tokens", usage.get("prompt_tokens"))
    completion = usage.get("output_tokens", usage.get("completion_tokens"))
    return prompt, completion
