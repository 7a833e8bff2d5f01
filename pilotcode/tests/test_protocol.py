"""Tests for the wire-format adapters and tool-result validation."""

import json

import pytest

from pilotcode.messages import (
    ConversationMessage,
    Text,
    ToolInvocation,
    ToolResult,
    assistant_message,
    system_message,
    user_message,
)
from pilotcode.protocol import (
    ContentBlockFormat,
    ProtocolError,
    ToolCallsFormat,
    get_wire_format,
    validate_tool_results,
)
from pilotcode.tool_handlers.schema import DEFAULT_TOOLS


def _conversation():
    call_a = ToolInvocation("call_1", "shell", {"command": "ls"})
    call_b = ToolInvocation("call_2", "todo", {"action": "read"})
    return [
        system_message("be helpful"),
        user_message("list files"),
        assistant_message("Looking around.", [call_a, call_b]),
        ToolResult("call_1", "a.py\n", "", 0).to_message(),
        ToolResult("call_2", "", "error: missing", 1).to_message(),
        user_message("use the search tool instead"),
        assistant_message("", [ToolInvocation("call_3", "finished", {})]),
    ]


@pytest.mark.parametrize("fmt", [ContentBlockFormat(), ToolCallsFormat()], ids=lambda f: f.name)
def test_round_trip(fmt):
    msgs = _conversation()
    assert fmt.decode_messages(fmt.encode_messages(msgs)) == msgs


@pytest.mark.parametrize("fmt", [ContentBlockFormat(), ToolCallsFormat()], ids=lambda f: f.name)
def test_round_trip_keeps_raw_arguments(fmt):
    msgs = [
        user_message("go"),
        assistant_message("", [ToolInvocation("t1", "shell", {}, raw_arguments='"ls"')]),
        ToolResult("t1", "", "error: invalid arguments", 2).to_message(),
    ]
    assert fmt.decode_messages(fmt.encode_messages(msgs)) == msgs


class TestContentBlockFormat:

    fmt = ContentBlockFormat()

    def test_system_is_top_level(self):
        fragment = self.fmt.encode_messages(_conversation())
        assert fragment["system"] == "be helpful"
        assert all(m["role"] != "system" for m in fragment["messages"])

    def test_tool_results_grouped_in_one_user_message(self):
        wire = self.fmt.encode_messages(_conversation())["messages"]
        assert [m["role"] for m in wire] == ["user", "assistant", "user", "assistant"]
        blocks = wire[2]["content"]
        assert [b["type"] for b in blocks] == ["tool_result", "tool_result", "text"]
        assert blocks[0]["tool_use_id"] == "call_1"
        assert "is_error" not in blocks[0]
        assert blocks[1]["is_error"] is True

    def test_consecutive_user_messages_share_one_turn(self):
        msgs = [system_message("s"), user_message("go"), user_message("use a tool")]
        wire = self.fmt.encode_messages(msgs)["messages"]
        assert wire == [{"role": "user", "content": [
            {"type": "text", "text": "go"},
            {"type": "text", "text": "use a tool"},
        ]}]
        assert self.fmt.decode_messages(self.fmt.encode_messages(msgs)) == msgs

    def test_tool_use_blocks(self):
        wire = self.fmt.encode_messages(_conversation())["messages"]
        content = wire[1]["content"]
        assert content[0] == {"type": "text", "text": "Looking around."}
        assert content[1] == {"type": "tool_use", "id": "call_1", "name": "shell", "input": {"command": "ls"}}

    def test_parse_response(self):
        payload = {
            "content": [
                {"type": "text", "text": "ok"},
                {"type": "tool_use", "id": "tu_1", "name": "sed", "input": {"file_path": "a"}},
            ],
            "stop_reason": "tool_use",
        }
        msg = self.fmt.parse_response(payload)
        assert msg.role == "assistant"
        assert msg.content == [Text("ok"), ToolInvocation("tu_1", "sed", {"file_path": "a"})]

    @pytest.mark.parametrize("payload", [
        [],
        {"content": "nope"},
        {"content": [{"type": "tool_use", "name": "sed", "input": {}}]},
        {"type": "error", "error": {"message": "overloaded"}},
    ])
    def test_parse_response_malformed(self, payload):
        with pytest.raises(ProtocolError):
            self.fmt.parse_response(payload)

    def test_request_shape(self):
        tools = self.fmt.render_tools(DEFAULT_TOOLS)
        req = self.fmt.build_request("m", _conversation()[:2], tools, temperature=0.2, max_tokens=100)
        assert req["model"] == "m"
        assert req["max_tokens"] == 100
        assert req["temperature"] == 0.2
        assert req["system"] == "be helpful"
        assert {t["name"] for t in req["tools"]} >= {"shell", "sed", "finished"}
        assert "input_schema" in req["tools"][0]

    def test_endpoint_and_headers(self):
        assert self.fmt.endpoint("https://api.example.com/v1/") == "https://api.example.com/v1/messages"
        headers = self.fmt.headers("k")
        assert headers["x-api-key"] == "k"
        assert "anthropic-version" in headers


class TestToolCallsFormat:

    fmt = ToolCallsFormat()

    def test_arguments_are_json_strings(self):
        wire = self.fmt.encode_messages(_conversation())["messages"]
        call = wire[2]["tool_calls"][0]
        assert call["type"] == "function"
        assert json.loads(call["function"]["arguments"]) == {"command": "ls"}
        assert wire[3] == {"role": "tool", "tool_call_id": "call_1", "content": wire[3]["content"]}

    def test_undecodable_arguments_kept_raw(self):
        payload = {"choices": [{"message": {
            "role": "assistant",
            "content": None,
            "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "shell", "arguments": "{bad"}}],
        }}]}
        msg = self.fmt.parse_response(payload)
        inv = msg.invocations[0]
        assert inv.arguments == {}
        assert inv.raw_arguments == "{bad"
        assert msg.text == ""

    def test_parse_text_only(self):
        payload = {"choices": [{"message": {"role": "assistant", "content": "thinking..."}}]}
        msg = self.fmt.parse_response(payload)
        assert msg.content == [Text("thinking...")]
        assert msg.invocations == []

    @pytest.mark.parametrize("payload", [
        {},
        {"choices": []},
        {"choices": [{}]},
        {"error": {"message": "bad key"}},
        {"choices": [{"message": {"tool_calls": [{"function": {"name": "x"}}]}}]},
    ])
    def test_parse_response_malformed(self, payload):
        with pytest.raises(ProtocolError):
            self.fmt.parse_response(payload)

    def test_endpoint_and_headers(self):
        assert self.fmt.endpoint("http://localhost:8080/v1") == "http://localhost:8080/v1/chat/completions"
        assert self.fmt.headers("k")["Authorization"] == "Bearer k"

    def test_tools_rendering(self):
        tools = self.fmt.render_tools(DEFAULT_TOOLS)
        sed = next(t for t in tools if t["function"]["name"] == "sed")
        params = sed["function"]["parameters"]
        assert params["required"] == ["file_path", "search_pattern", "replace_pattern"]
        assert params["properties"]["dry_run"]["type"] == "boolean"


def test_get_wire_format():
    assert isinstance(get_wire_format("content_blocks"), ContentBlockFormat)
    assert isinstance(get_wire_format("TOOL_CALLS"), ToolCallsFormat)
    with pytest.raises(ValueError):
        get_wire_format("xml")


class TestValidateToolResults:

    def test_valid_conversation(self):
        validate_tool_results(_conversation())

    def test_orphan_result(self):
        msgs = [user_message("hi"), ToolResult("x", "", "", 0).to_message()]
        with pytest.raises(ProtocolError):
            validate_tool_results(msgs)

    def test_result_for_older_turn(self):
        msgs = _conversation()[:4] + [
            assistant_message("", [ToolInvocation("call_9", "shell", {"command": "pwd"})]),
            ToolResult("call_1", "", "", 0).to_message(),
        ]
        with pytest.raises(ProtocolError):
            validate_tool_results(msgs)

    def test_duplicate_result(self):
        msgs = _conversation()[:4] + [ToolResult("call_1", "", "", 0).to_message()]
        with pytest.raises(ProtocolError):
            validate_tool_results(msgs)

    def test_tool_message_without_correlation(self):
        msgs = _conversation()[:3] + [ConversationMessage("tool", "{}")]
        with pytest.raises(ProtocolError):
            validate_tool_results(msgs)
