"""End-to-end tests of the agent loop with a scripted transport and operator."""

import dataclasses
import json

import pytest

from pilotcode import hooks
from pilotcode.agent import NUDGE, create_state, run_agent
from pilotcode.config import Settings
from pilotcode.interaction import ScriptedOperator
from pilotcode.messages import ProcessResult
from pilotcode.middleware import metrics_hook
from pilotcode.model_calls import ApiError, TransportError
from pilotcode.protocol import ContentBlockFormat, ToolCallsFormat
from pilotcode.tool_handlers import DEFAULT_TOOLS


def _call(call_id, name, **args):
    return {"id": call_id, "type": "function", "function": {"name": name, "arguments": json.dumps(args)}}


def _reply(content=None, calls=None):
    message = {"role": "assistant", "content": content}
    if calls:
        message["tool_calls"] = calls
    return {"choices": [{"message": message}]}


class ScriptedTransport:
    """Returns (or raises) the queued items in order and records each request."""

    def __init__(self, items):
        self.items = list(items)
        self.requests = []

    def __call__(self, url, payload, headers):
        self.requests.append((url, json.loads(json.dumps(payload)), headers))
        item = self.items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _state(tmp_path, items, operator=None, **overrides):
    settings = Settings(
        api_key="test-key",
        base_url="http://model.local/v1",
        workdir=str(tmp_path),
        **overrides,
    )
    transport = ScriptedTransport(items)
    sleeps = []
    state = create_state(settings, operator=operator or ScriptedOperator(), transport=transport, sleep=sleeps.append)
    return state, transport, sleeps


@pytest.fixture(autouse=True)
def _clean_hooks():
    hooks.clear()
    yield
    hooks.clear()


class TestAgentLoop:

    def test_checklist_add_then_complete(self, tmp_path):
        state, transport, _ = _state(tmp_path, [
            _reply(calls=[_call("c1", "todo", action="add", content="Task 1")]),
            _reply(calls=[_call("c2", "todo", action="complete", content="Task 1")]),
            _reply(calls=[_call("c3", "finished")]),
        ])
        outcome = run_agent("track a task", state)
        assert outcome.ok
        assert outcome.turns == 3
        assert (tmp_path / "todo.md").read_text() == "# TODO\n\n- [x] Task 1\n"

    def test_text_only_reply_is_nudged(self, tmp_path):
        state, transport, _ = _state(tmp_path, [
            _reply(content="I think we are done."),
            _reply(calls=[_call("c1", "finished")]),
        ])
        outcome = run_agent("do it", state)
        assert outcome.ok
        second_request = transport.requests[1][1]["messages"]
        assert second_request[-1] == {"role": "user", "content": NUDGE}
        assert second_request[-2]["content"] == "I think we are done."

    def test_finished_short_circuits_batch(self, tmp_path):
        calls = []
        state, transport, _ = _state(tmp_path, [
            _reply(calls=[
                _call("c1", "todo", action="add", content="first"),
                _call("c2", "finished"),
                _call("c3", "todo", action="add", content="never"),
            ]),
        ])
        original = state.registry["todo"].handler

        def spy(args, ctx):
            calls.append(args["content"])
            return original(args, ctx)

        state.registry["todo"] = state.registry["todo"].__class__(state.registry["todo"].schema, spy)
        outcome = run_agent("go", state)
        assert outcome.ok
        assert calls == ["first"]
        assert len(transport.requests) == 1

    def test_initial_conversation(self, tmp_path):
        state, transport, _ = _state(tmp_path, [_reply(calls=[_call("c1", "finished")])])
        run_agent("hello", state)
        url, payload, headers = transport.requests[0]
        assert url == "http://model.local/v1/chat/completions"
        assert headers["Authorization"] == "Bearer test-key"
        assert [m["role"] for m in payload["messages"]] == ["system", "user"]
        assert payload["messages"][1]["content"] == "hello"
        assert payload["model"] == state.settings.model

    def test_tool_results_follow_assistant(self, tmp_path):
        state, transport, _ = _state(tmp_path, [
            _reply(calls=[_call("c1", "todo", action="read"), _call("c2", "todo", action="add", content="x")]),
            _reply(calls=[_call("c3", "finished")]),
        ])
        run_agent("go", state)
        messages = transport.requests[1][1]["messages"]
        assert [m["role"] for m in messages[-3:]] == ["assistant", "tool", "tool"]
        assert [m["tool_call_id"] for m in messages[-2:]] == ["c1", "c2"]
        first = json.loads(messages[-2]["content"])
        assert first["exit_code"] == 1
        assert first["stderr"].startswith("error:")

    def test_substitute_instruction_appended_after_tool_messages(self, tmp_path):
        operator = ScriptedOperator(["i", "use the search tool"])
        state, transport, _ = _state(tmp_path, [
            _reply(calls=[_call("c1", "shell", command="grep -r x .")]),
            _reply(calls=[_call("c2", "finished")]),
        ], operator=operator)
        outcome = run_agent("go", state)
        assert outcome.ok
        messages = transport.requests[1][1]["messages"]
        assert messages[-2]["role"] == "tool"
        assert json.loads(messages[-2]["content"])["exit_code"] == 0
        assert messages[-1] == {"role": "user", "content": "use the search tool"}

    def test_sed_preview_then_apply(self, tmp_path):
        (tmp_path / "a.py").write_text("value = 1\n")
        args = {"file_path": "a.py", "search_pattern": "1", "replace_pattern": "2"}
        state, transport, _ = _state(tmp_path, [
            _reply(calls=[_call("c1", "sed", dry_run=False, **args)]),
            _reply(calls=[_call("c2", "sed", dry_run=True, **args)]),
            _reply(calls=[_call("c3", "sed", dry_run=False, **args)]),
            _reply(calls=[_call("c4", "finished")]),
        ])
        outcome = run_agent("edit", state)
        assert outcome.ok
        blocked = json.loads(transport.requests[1][1]["messages"][-1]["content"])
        assert "Must perform dry-run" in blocked["stderr"]
        assert (tmp_path / "a.py").read_text() == "value = 2\n"

    def test_unknown_tool_terminates(self, tmp_path):
        state, transport, _ = _state(tmp_path, [_reply(calls=[_call("c1", "teleport")])])
        outcome = run_agent("go", state)
        assert outcome.status == "error"
        assert "unknown tool 'teleport'" in outcome.error

    def test_transport_errors_retried_then_fatal(self, tmp_path):
        state, transport, sleeps = _state(
            tmp_path,
            [TransportError("down")] * 3,
            max_retries=2,
        )
        outcome = run_agent("go", state)
        assert outcome.status == "error"
        assert "TransportError" in outcome.error
        assert sleeps == [1.0, 2.0]

    def test_retry_then_success(self, tmp_path):
        state, transport, sleeps = _state(tmp_path, [
            ApiError(502),
            _reply(calls=[_call("c1", "finished")]),
        ])
        assert run_agent("go", state).ok
        assert sleeps == [1.0]

    def test_client_error_not_retried(self, tmp_path):
        state, transport, sleeps = _state(tmp_path, [ApiError(401, "unauthorized")])
        outcome = run_agent("go", state)
        assert outcome.status == "error"
        assert sleeps == []
        assert len(transport.requests) == 1

    def test_max_turns(self, tmp_path):
        state, _, _ = _state(tmp_path, [_reply(content="hmm")] * 3, max_turns=2)
        outcome = run_agent("go", state)
        assert outcome.status == "error"
        assert outcome.error == "max turns reached"
        assert outcome.turns == 2

    def test_content_blocks_flavor(self, tmp_path):
        state, transport, _ = _state(tmp_path, [
            {"content": [{"type": "tool_use", "id": "t1", "name": "todo", "input": {"action": "add", "content": "A"}}]},
            {"content": [{"type": "tool_use", "id": "t2", "name": "finished", "input": {}}]},
        ], flavor="content_blocks")
        assert isinstance(state.wire_format, ContentBlockFormat)
        outcome = run_agent("go", state)
        assert outcome.ok
        url, payload, headers = transport.requests[1]
        assert url.endswith("/messages")
        assert headers["x-api-key"] == "test-key"
        assert payload["system"]
        assert payload["messages"][-1]["content"][0]["tool_use_id"] == "t1"

    def test_guard_and_allow_list_persist_across_runs(self, tmp_path):
        operator = ScriptedOperator(["a"])
        state, transport, _ = _state(tmp_path, [
            _reply(calls=[_call("c1", "shell", command="echo one")]),
            _reply(calls=[_call("c2", "finished")]),
            _reply(calls=[_call("c3", "shell", command="echo two")]),
            _reply(calls=[_call("c4", "finished")]),
        ], operator=operator)
        assert isinstance(state.wire_format, ToolCallsFormat)
        run_agent("first", state)
        run_agent("second", state)
        assert len(operator.prompts) == 1
        assert state.messages[1].content == "second"

    def test_hooks_and_metrics(self, tmp_path):
        collector = metrics_hook.install()
        state, _, _ = _state(tmp_path, [
            _reply(content="thinking"),
            _reply(calls=[_call("c1", "todo", action="read")]),
            _reply(calls=[_call("c2", "finished")]),
        ])
        run_agent("go", state)
        summary = collector.summary()
        assert summary["turns"] == 3
        assert summary["nudges"] == 1
        assert summary["tool_calls_total"] == 1
        assert summary["tool_error_counts"] == {"todo": 1}


def test_handler_override(tmp_path):
    settings = Settings(api_key="k", workdir=str(tmp_path))
    handlers = {name: (lambda args, ctx: ProcessResult("stub", "", 0)) for name in (
        "shell", "doc", "search", "sed", "comby", "format", "todo", "ask_user", "finished")}
    transport = ScriptedTransport([
        _reply(calls=[_call("c1", "doc", symbol="json")]),
        _reply(calls=[_call("c2", "finished")]),
    ])
    state = create_state(settings, transport=transport, handlers=handlers)
    assert run_agent("go", state).ok
    tool_msg = transport.requests[1][1]["messages"][-1]
    assert json.loads(tool_msg["content"])["stdout"] == "stub"


def test_tool_timeout_setting_keeps_explicit_timeouts(tmp_path):
    settings = Settings(api_key="k", workdir=str(tmp_path), tool_timeout=5)
    tools = [dataclasses.replace(s, timeout=60) if s.name == "shell" else s for s in DEFAULT_TOOLS]
    state = create_state(settings, transport=ScriptedTransport([]), tools=tools)
    assert state.registry["shell"].schema.timeout == 60
    assert state.registry["doc"].schema.timeout == 5


class TestEmptyReply:

    def test_tool_calls_empty_reply_is_nudged(self, tmp_path):
        state, transport, _ = _state(tmp_path, [
            _reply(content=None),
            _reply(calls=[_call("c1", "finished")]),
        ])
        outcome = run_agent("go", state)
        assert outcome.ok
        wire = transport.requests[1][1]["messages"]
        assert [m["role"] for m in wire] == ["system", "user", "user"]
        assert wire[-1]["content"] == NUDGE

    def test_content_blocks_empty_reply_is_nudged(self, tmp_path):
        state, transport, _ = _state(tmp_path, [
            {"content": [], "stop_reason": "end_turn"},
            {"content": [{"type": "tool_use", "id": "t1", "name": "finished", "input": {}}]},
        ], flavor="content_blocks")
        outcome = run_agent("go", state)
        assert outcome.ok
        wire = transport.requests[1][1]["messages"]
        assert wire == [{"role": "user", "content": [
            {"type": "text", "text": "go"},
            {"type": "text", "text": NUDGE},
        ]}]
