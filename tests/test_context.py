# tests/test_context.py
"""
Tests for context budgeting: history selection, rolling summaries, file
context and the system prompt.
"""

from unittest.mock import AsyncMock

import pytest

from atelier.agent.context import (
    AGENT_INSTRUCTIONS,
    CHAT_INSTRUCTIONS,
    BudgetConfig,
    ContextBudgeter,
    build_system_prompt,
    limit_lines,
    should_include_file_context,
)
from atelier.messages import Message
from atelier.utils.text import ELISION_MARKER, compact_text, extract_file_block, strip_file_blocks


def chat_config(**overrides) -> BudgetConfig:
    return BudgetConfig.for_mode("chat", provider="openai", overrides=overrides)


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


class TestCompactText:
    def test_short_text_unchanged(self):
        assert compact_text("hello", 10) == "hello"

    def test_none_is_empty(self):
        assert compact_text(None, 10) == ""

    def test_long_text_keeps_head_and_tail(self):
        text = "A" * 500 + "Z" * 500
        out = compact_text(text, 300)
        assert len(out) <= 300
        assert ELISION_MARKER in out
        assert out.startswith("A")
        assert out.endswith("Z")

    def test_tiny_budget_truncates(self):
        assert compact_text("abcdefghijklmnopqrstuvwxyz", 5) == "abcde"


class TestFileBlocks:
    def test_extract_first_block(self):
        text = "Here you go:\n<file>print(1)\n</file>\nand <file>second</file>"
        assert extract_file_block(text) == "print(1)\n"

    def test_extract_none(self):
        assert extract_file_block("no code here") is None

    def test_strip(self):
        assert strip_file_blocks("before <file>big\nfile</file> after") == "before  after"


class TestShouldIncludeFileContext:
    @pytest.mark.parametrize("text", ["Can you FIX this?", "explain this code", "what's in <file>"])
    def test_matches(self, text):
        assert should_include_file_context(text)

    @pytest.mark.parametrize("text", ["", "   ", None, "write a haiku about rain"])
    def test_no_match(self, text):
        assert not should_include_file_context(text)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestBudgetConfig:
    def test_chat_defaults(self):
        config = BudgetConfig.for_mode("chat", provider="openai")
        assert config.max_history_messages == 12
        assert config.summarize_threshold == 18
        assert config.keep_after_summarize == 8
        assert config.max_file_chars == 2500

    def test_claude_chat_gets_larger_file_excerpt(self):
        assert BudgetConfig.for_mode("chat", provider="claude").max_file_chars == 4500

    def test_agent_defaults(self):
        config = BudgetConfig.for_mode("agent", provider="claude")
        assert config.max_history_messages == 18
        assert config.summarize_threshold == 28
        assert config.keep_after_summarize == 10
        assert config.max_file_chars == 0

    def test_overrides_are_clamped(self):
        config = chat_config(
            max_history_messages=0,
            summarize_threshold=1,
            keep_after_summarize=-5,
            max_summary_chars=10,
            max_file_chars=-1,
        )
        assert config.max_history_messages == 2
        assert config.summarize_threshold == 4
        assert config.keep_after_summarize == 2
        assert config.max_summary_chars == 200
        assert config.max_file_chars == 0

    def test_invalid_overrides_ignored(self):
        config = chat_config(max_history_messages="lots", enable_summarize="yes", max_summary_chars=float("nan"))
        assert config.max_history_messages == 12
        assert config.enable_summarize is True
        assert config.max_summary_chars == 1800

    def test_boolean_overrides(self):
        config = chat_config(enable_summarize=False, enable_file_context=False)
        assert not config.enable_summarize
        assert not config.enable_file_context


def test_limit_lines_drops_blank_lines():
    text = "\n".join(f"- line {i}\n" for i in range(20))
    assert limit_lines(text).splitlines() == [f"- line {i}" for i in range(12)]


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelectContext:
    async def test_below_threshold_no_model_call(self, history):
        summarize = AsyncMock(return_value="- nope")
        budgeter = ContextBudgeter(summarize=summarize)

        context = await budgeter.select_context(
            all_messages=history[:15],
            project_memory="",
            conversation_summary="",
            file_content=None,
            config=chat_config(),
        )

        assert context.messages == history[3:15]
        assert not context.summarized
        assert context.summary == ""
        summarize.assert_not_awaited()

    async def test_summarization_keeps_recent_messages(self, history):
        summarize = AsyncMock(return_value="- decided to use sqlite\n- tests must stay green")
        budgeter = ContextBudgeter(summarize=summarize)

        context = await budgeter.select_context(
            all_messages=history,
            project_memory="",
            conversation_summary="- earlier note",
            file_content=None,
            config=chat_config(),
        )

        assert context.summarized
        assert context.messages == history[-8:]
        assert context.dropped == history[:-8]
        assert context.summary.startswith("- earlier note\n- decided to use sqlite")
        assert len(context.summary) <= 1800
        assert "Conversation summary:" in context.system_prompt
        # Summary travels out of band, never as a message
        assert all("decided to use sqlite" not in m.text() for m in context.messages)

        prompt = summarize.await_args.args[0]
        assert "User: question 0" in prompt
        assert "Assistant: answer 1" in prompt

    async def test_summary_respects_max_chars(self, history):
        summarize = AsyncMock(return_value="x" * 5000)
        budgeter = ContextBudgeter(summarize=summarize)

        context = await budgeter.select_context(
            all_messages=history,
            project_memory="",
            conversation_summary="y" * 5000,
            file_content=None,
            config=chat_config(max_summary_chars=400),
        )

        assert len(context.summary) <= 400

    async def test_summarizer_failure_falls_back_to_transcript(self, history):
        summarize = AsyncMock(side_effect=RuntimeError("network down"))
        budgeter = ContextBudgeter(summarize=summarize)

        context = await budgeter.select_context(
            all_messages=history,
            project_memory="",
            conversation_summary="",
            file_content=None,
            config=chat_config(),
        )

        assert context.summarized
        assert context.summary.startswith("User: question 0")
        assert len(context.messages) == 8

    async def test_summarize_disabled_uses_window(self, history):
        summarize = AsyncMock()
        budgeter = ContextBudgeter(summarize=summarize)

        context = await budgeter.select_context(
            all_messages=history,
            project_memory="",
            conversation_summary="",
            file_content=None,
            config=chat_config(enable_summarize=False),
        )

        assert context.messages == history[-12:]
        summarize.assert_not_awaited()

    async def test_display_rows_not_sent(self):
        messages = [
            Message.user("hi"),
            Message.system("Task finished"),
            Message.tool_result("t1", "ok", tool_name="read_file"),
            Message.assistant("hello"),
        ]
        context = await ContextBudgeter().select_context(
            all_messages=messages,
            project_memory="",
            conversation_summary="",
            file_content=None,
            config=chat_config(),
        )
        assert [m.role for m in context.messages] == ["user", "assistant"]

    async def test_selection_is_deterministic(self, history):
        budgeter = ContextBudgeter(summarize=AsyncMock(return_value="- same"))
        kwargs = dict(
            all_messages=history,
            project_memory="memory",
            conversation_summary="",
            file_content="code",
            config=chat_config(),
            user_text="fix this",
        )
        first = await budgeter.select_context(**kwargs)
        second = await budgeter.select_context(**kwargs)
        assert first.messages == second.messages
        assert first.system_prompt == second.system_prompt


class TestFileContext:
    async def test_attached_in_chat_when_relevant(self):
        context = await ContextBudgeter().select_context(
            all_messages=[Message.user("Please fix the bug")],
            project_memory="",
            conversation_summary="",
            file_content="def broken(): pass",
            config=chat_config(),
            user_text="Please fix the bug",
        )
        assert context.file_context_included
        assert "def broken(): pass" in context.system_prompt

    async def test_not_attached_when_irrelevant(self):
        context = await ContextBudgeter().select_context(
            all_messages=[Message.user("hello there")],
            project_memory="",
            conversation_summary="",
            file_content="def broken(): pass",
            config=chat_config(),
            user_text="hello there",
        )
        assert not context.file_context_included
        assert "def broken" not in context.system_prompt

    async def test_never_attached_in_agent_mode(self):
        context = await ContextBudgeter().select_context(
            all_messages=[Message.user("fix this file")],
            project_memory="",
            conversation_summary="",
            file_content="def broken(): pass",
            config=BudgetConfig.for_mode("agent", overrides={"max_file_chars": 5000}),
            user_text="fix this file",
            mode="agent",
        )
        assert not context.file_context_included

    async def test_file_excerpt_is_compacted(self):
        context = await ContextBudgeter().select_context(
            all_messages=[],
            project_memory="",
            conversation_summary="",
            file_content="x" * 10000,
            config=chat_config(max_file_chars=500),
            user_text="explain this file",
        )
        assert "x" * 501 not in context.system_prompt
        assert ELISION_MARKER in context.system_prompt


class TestSystemPrompt:
    def test_agent_prompt(self):
        prompt = build_system_prompt("agent", project_path="/p", active_file_path="/p/main.py")
        assert prompt.startswith(AGENT_INSTRUCTIONS)
        assert "Project: /p" in prompt
        assert "Active file: /p/main.py" in prompt

    def test_chat_prompt_with_memory(self):
        prompt = build_system_prompt("chat", project_memory="- uses poetry")
        assert prompt.startswith(CHAT_INSTRUCTIONS)
        assert "Project memory (auto):\n- uses poetry" in prompt

    def test_project_memory_is_capped(self):
        config = chat_config(max_summary_chars=1000)
        prompt = build_system_prompt("chat", project_memory="m" * 5000, config=config)
        assert "m" * 801 not in prompt
