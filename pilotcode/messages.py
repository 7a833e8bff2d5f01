"""
Conversation data model shared by the agent loop, protocol adapter and tools.

The loop only ever works on these types; wire-specific dicts live in
pilotcode.protocol.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class ToolInvocation:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    # Set when the wire arguments could not be decoded as a JSON object.
    raw_arguments: Optional[str] = None


ContentItem = Union[Text, ToolInvocation]


@dataclass
class ConversationMessage:
    role: str
    content: Union[str, List[ContentItem]]
    correlation_id: Optional[str] = None

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(item.value for item in self.content if isinstance(item, Text))

    @property
    def invocations(self) -> List[ToolInvocation]:
        if isinstance(self.content, str):
            return []
        return [item for item in self.content if isinstance(item, ToolInvocation)]


@dataclass(frozen=True)
class ProcessResult:
    """Raw (stdout, stderr, exit_code) triple returned by every tool handler."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ToolResult:
    invocation_id: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @classmethod
    def from_process(cls, invocation_id: str, result: ProcessResult) -> "ToolResult":
        return cls(invocation_id, result.stdout, result.stderr, result.exit_code)

    def render(self) -> str:
        return json.dumps(
            {"stdout": self.stdout, "stderr": self.stderr, "exit_code": self.exit_code},
            ensure_ascii=False,
        )

    def to_message(self) -> ConversationMessage:
        return ConversationMessage(ROLE_TOOL, self.render(), correlation_id=self.invocation_id)


def system_message(text: str) -> ConversationMessage:
    return ConversationMessage(ROLE_SYSTEM, text)


def user_message(text: str) -> ConversationMessage:
    return ConversationMessage(ROLE_USER, text)


def assistant_message(text: str = "", invocations: Optional[List[ToolInvocation]] = None) -> ConversationMessage:
    items: List[ContentItem] = []
    if text:
        items.append(Text(text))
    items.extend(invocations or [])
    return ConversationMessage(ROLE_ASSISTANT, items)


def parse_tool_content(content: str) -> Dict[str, Any]:
    """Inverse of ToolResult.render(); tolerant of foreign tool content."""
    try:
        payload = json.loads(content)
    except (TypeError, json.JSONDecodeError):
        return {"stdout": content or "", "stderr": "", "exit_code": 0}
    if not isinstance(payload, dict):
        return {"stdout": content, "stderr": "", "exit_code": 0}
    return payload


def summarize_messages(messages: List[ConversationMessage]) -> Dict[str, Any]:
    return {
        "message_count": len(messages),
        "tool_message_count": sum(1 for m in messages if m.role == ROLE_TOOL),
        "invocation_count": sum(len(m.invocations) for m in messages),
        "total_chars": sum(len(m.text) for m in messages),
    }
