# tests/test_agent_loop.py
"""
Tests for the bounded agent loop.
"""

import pytest

from atelier.agent.core import (
    STALL_INSTRUCTION,
    AgentLoop,
    AgentRunResult,
    AgentState,
    CancellationToken,
    RunOutcome,
)
from atelier.agent.tools_executor import ToolExecutor
from atelier.messages import ASSISTANT, TOOL, USER, Message
from atelier.providers.errors import ModelAccessError, RateLimitError

from tests.conftest import ScriptedAdapter, text_response, tool_response


@pytest.fixture
def executor(files, terminal, audit):
    return ToolExecutor(files=files, terminal=terminal, audit=audit)


def make_loop(script, executor, events=None, **kwargs):
    adapter = ScriptedAdapter(script=script)
    loop = AgentLoop(adapter, executor, on_event=events.append if events is not None else None, **kwargs)
    return adapter, loop


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class TestCompletion:
    async def test_tool_call_then_end_turn(self, executor):
        adapter, loop = make_loop(
            [
                tool_response(("t1", "list_files", {"path": "/p"})),
                text_response("The project has a src directory."),
            ],
            executor,
        )

        result = await loop.run("What is in this project?", project_path="/p")

        assert result.state == AgentState.COMPLETED
        assert result.outcome == RunOutcome.END_TURN
        assert result.iterations == 2
        assert result.final_text == "The project has a src directory."
        assert len(adapter.calls) == 2
        assert adapter.calls[0]["tools"] == ["read_file", "write_file", "create_file", "list_files", "run_command"]
        assert "Project: /p" in adapter.calls[0]["system_prompt"]

    async def test_tool_results_follow_their_calls(self, executor):
        adapter, loop = make_loop(
            [
                tool_response(
                    ("t1", "create_file", {"path": "/p/a.py", "content": "a"}),
                    ("t2", "read_file", {"path": "/p/a.py"}),
                ),
                text_response("done"),
            ],
            executor,
        )

        result = await loop.run("make a.py")

        roles = [m.role for m in result.messages]
        assert roles == [USER, ASSISTANT, TOOL, TOOL, ASSISTANT]
        assert [m.tool_call_id for m in result.messages[2:4]] == ["t1", "t2"]
        assert result.messages[3].tool_results()[0].content == "a"
        # Second request carried the results
        assert len(adapter.calls[1]["messages"]) == 4

    async def test_modified_files_recorded_once(self, executor):
        _, loop = make_loop(
            [
                tool_response(("t1", "write_file", {"path": "/p/a.py", "content": "1"})),
                tool_response(("t2", "write_file", {"path": "/p/a.py", "content": "2"})),
                tool_response(("t3", "create_file", {"path": "/p/b.py"})),
                text_response("ok"),
            ],
            executor,
        )

        result = await loop.run("edit")

        assert result.modified_files == ["/p/a.py", "/p/b.py"]
        assert result.summary_line() == "Agent finished: task completed."

    async def test_history_seeds_the_run(self, executor):
        adapter, loop = make_loop([text_response("sure")], executor)
        history = [Message.user("earlier"), Message.assistant("reply")]

        await loop.run("next", history=history, system_prompt="custom prompt")

        sent = adapter.calls[0]
        assert [m.text() for m in sent["messages"]] == ["earlier", "reply", "next"]
        assert sent["system_prompt"] == "custom prompt"

    async def test_failed_tool_is_reported_to_model(self, executor):
        adapter, loop = make_loop(
            [
                tool_response(("t1", "read_file", {"path": "/p/missing.py"})),
                text_response("That file does not exist."),
            ],
            executor,
        )

        result = await loop.run("read missing.py")

        result_block = adapter.calls[1]["messages"][-1].tool_results()[0]
        assert result_block.is_error
        assert result.succeeded


# ---------------------------------------------------------------------------
# Stall, ceiling, failure
# ---------------------------------------------------------------------------


class TestStall:
    async def test_nudge_once_then_degraded_completion(self, executor):
        adapter, loop = make_loop(
            [
                text_response("I would edit main.py", stop_reason="max_tokens"),
                text_response("First, open main.py", stop_reason="max_tokens"),
            ],
            executor,
        )

        result = await loop.run("fix main.py")

        assert result.state == AgentState.COMPLETED
        assert result.outcome == RunOutcome.NO_TOOL_USE
        assert result.iterations == 2
        nudges = [m for m in result.messages if m.role == USER and m.text() == STALL_INSTRUCTION]
        assert len(nudges) == 1
        assert adapter.calls[1]["messages"][-1].text() == STALL_INSTRUCTION
        assert "without calling tools" in result.summary_line()

    async def test_nudge_then_tool_use_recovers(self, executor):
        _, loop = make_loop(
            [
                text_response("Plan: list files", stop_reason="length"),
                tool_response(("t1", "list_files", {"path": "/p"})),
                text_response("Listed."),
            ],
            executor,
        )

        result = await loop.run("list")

        assert result.outcome == RunOutcome.END_TURN
        assert result.iterations == 3


class TestIterationCeiling:
    async def test_aborts_at_twenty(self, executor):
        script = [tool_response((f"t{i}", "list_files", {"path": "/p"})) for i in range(25)]
        adapter, loop = make_loop(script, executor)

        result = await loop.run("loop forever")

        assert result.state == AgentState.ABORTED
        assert result.outcome == RunOutcome.MAX_ITERATIONS
        assert result.iterations == 20
        assert len(adapter.calls) == 20
        assert result.summary_line() == "Agent stopped after 20 iterations."

    async def test_custom_ceiling(self, executor):
        script = [tool_response((f"t{i}", "list_files", {"path": "/p"})) for i in range(5)]
        adapter, loop = make_loop(script, executor, max_iterations=3)

        result = await loop.run("loop")

        assert result.iterations == 3
        assert len(adapter.calls) == 3


class TestFailure:
    async def test_provider_error_fails_and_lists_files(self, executor):
        _, loop = make_loop(
            [
                tool_response(("t1", "write_file", {"path": "/p/a.py", "content": "x"})),
                ModelAccessError("model not found", "claude", "claude-sonnet-4-6"),
            ],
            executor,
        )

        result = await loop.run("edit")

        assert result.state == AgentState.FAILED
        assert result.outcome == RunOutcome.ERROR
        assert result.modified_files == ["/p/a.py"]
        line = result.summary_line()
        assert line.startswith("Agent failed:")
        assert "Files already modified: /p/a.py" in line

    async def test_rate_limit_retries_then_fails(self, executor):
        events = []
        adapter, loop = make_loop(
            [RateLimitError("429", "claude")] * 3,
            executor,
            events=events,
        )

        result = await loop.run("edit")

        assert result.state == AgentState.FAILED
        assert adapter.sleeps == [15.0, 30.0]
        waits = [e.data for e in events if e.type == "retry_wait"]
        assert waits == [{"attempt": 1, "delay": 15.0}, {"attempt": 2, "delay": 30.0}]

    async def test_missing_credential_fails_without_request(self, executor):
        adapter = ScriptedAdapter(script=[], api_key=None)
        loop = AgentLoop(adapter, executor)

        result = await loop.run("edit")

        assert result.state == AgentState.FAILED
        assert "No API key configured for Claude" in result.error
        assert adapter.calls == []

    async def test_unexpected_exception_fails(self, executor):
        _, loop = make_loop([ValueError("bad payload")], executor)

        result = await loop.run("edit")

        assert result.state == AgentState.FAILED
        assert result.error == "Error: bad payload"


# ---------------------------------------------------------------------------
# Cancellation and events
# ---------------------------------------------------------------------------


class TestCancellation:
    async def test_cancel_before_start(self, executor):
        adapter, loop = make_loop([text_response("never")], executor)
        token = CancellationToken()
        token.cancel()

        result = await loop.run("edit", token=token)

        assert result.state == AgentState.CANCELLED
        assert adapter.calls == []

    async def test_cancel_after_tool_execution(self, executor):
        token = CancellationToken()

        def on_event(event):
            if event.type == "tool_finished":
                token.cancel()

        adapter = ScriptedAdapter(script=[
            tool_response(("t1", "list_files", {"path": "/p"}), ("t2", "list_files", {"path": "/p"})),
            text_response("never"),
        ])
        loop = AgentLoop(adapter, executor, on_event=on_event)

        result = await loop.run("edit", token=token)

        assert result.state == AgentState.CANCELLED
        assert result.outcome == RunOutcome.CANCELLED
        assert len(adapter.calls) == 1
        # The second call was never executed
        assert [m.tool_call_id for m in result.messages if m.role == TOOL] == ["t1"]
        assert result.summary_line() == "Agent cancelled."

    async def test_cancel_during_rate_limit_wait(self, executor):
        token = CancellationToken()

        def on_event(event):
            if event.type == "retry_wait":
                token.cancel()

        adapter = ScriptedAdapter(script=[RateLimitError("429", "claude"), text_response("never")])
        loop = AgentLoop(adapter, executor, on_event=on_event)

        result = await loop.run("edit", token=token)

        assert result.state == AgentState.CANCELLED
        assert result.outcome == RunOutcome.CANCELLED
        assert len(adapter.calls) == 1
        assert adapter.sleeps == [15.0]


class TestEvents:
    async def test_event_sequence(self, executor):
        events = []
        _, loop = make_loop(
            [
                tool_response(("t1", "run_command", {"command": "ls"}), text="Running ls"),
                text_response("Done"),
            ],
            executor,
            events=events,
        )

        await loop.run("ls")

        assert [e.type for e in events] == [
            "status",
            "assistant_text",
            "tool_started",
            "tool_finished",
            "assistant_text",
            "finished",
        ]
        assert events[-1].data["outcome"] == "end_turn"

    async def test_broken_observer_does_not_end_run(self, executor):
        def on_event(event):
            raise RuntimeError("ui crashed")

        adapter = ScriptedAdapter(script=[text_response("ok")])
        result = await AgentLoop(adapter, executor, on_event=on_event).run("hi")

        assert result.succeeded


def test_run_result_failed_without_files():
    result = AgentRunResult(
        state=AgentState.FAILED,
        outcome=RunOutcome.ERROR,
        final_text="",
        messages=[],
        modified_files=[],
        iterations=1,
        error="Error: boom",
    )
    assert result.summary_line() == "Agent failed: Error: boom"
