"""
Context Budgeting
=================

Decides what goes into the next model call:
- which prior messages are sent verbatim
- whether older history is folded into a rolling summary
- whether the active file's content is attached
- the system prompt (role instructions, project, memory, summary, file)

Budget rules:
    history < summarize_threshold (or summarization off)
        -> last max_history_messages messages, untouched, no model call
    history >= summarize_threshold
        -> older prefix summarized by a model into <= 12 bullet lines,
           merged with the previous summary and compacted to
           max_summary_chars; only the last keep_after_summarize messages
           are sent. The summary travels in the system prompt.

File content costs tokens on every turn, so it is attached only in chat
mode, only with a positive max_file_chars, and only when the user's text
looks like it is about the open file (see should_include_file_context).

Selection is deterministic: identical inputs give identical output.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Mapping

from atelier.messages import Message, conversation_turns, transcript_lines
from atelier.utils.logger import Logger
from atelier.utils.text import FILE_OPEN_TAG, compact_text

logger = Logger("Budget")

MODE_CHAT = "chat"
MODE_AGENT = "agent"

SUMMARY_MAX_LINES = 12
PROJECT_MEMORY_SHARE = 0.8

# Words that suggest the user is talking about the open file
FILE_CONTEXT_KEYWORDS = (
    "this file",
    "this code",
    "active file",
    "current file",
    "bug",
    "error",
    "stack",
    "trace",
    "refactor",
    "fix",
    "optimize",
    "optimise",
    "explain",
    "understand",
    "diff",
    "patch",
)

Summarizer = Callable[[str], Awaitable[str]]


# ==============================================================================
# Budget configuration
# ==============================================================================

@dataclass(frozen=True)
class BudgetConfig:
    """
    Limits applied when selecting context.

    Attributes:
        enable_summarize: Fold old history into a rolling summary
        enable_file_context: Allow attaching the active file
        max_history_messages: Messages sent when not summarizing
        summarize_threshold: History length that triggers summarization
        keep_after_summarize: Messages kept verbatim after summarizing
        max_summary_chars: Cap for the rolling summary
        max_file_chars: Cap for attached file content (0 disables it)
    """
    enable_summarize: bool = True
    enable_file_context: bool = True
    max_history_messages: int = 12
    summarize_threshold: int = 18
    keep_after_summarize: int = 8
    max_summary_chars: int = 1800
    max_file_chars: int = 2500

    @classmethod
    def for_mode(
        cls,
        mode: str,
        provider: str | None = None,
        overrides: Mapping[str, Any] | None = None
    ) -> "BudgetConfig":
        """
        Defaults for a mode, with user overrides applied.

        Agent runs keep more history and never attach file content; chat
        with the primary vendor gets a larger file excerpt.
        """
        is_agent = mode == MODE_AGENT
        if is_agent:
            max_file_chars = 0
        else:
            max_file_chars = 4500 if provider == "claude" else 2500

        base = cls(
            enable_summarize=True,
            enable_file_context=True,
            max_history_messages=18 if is_agent else 12,
            summarize_threshold=28 if is_agent else 18,
            keep_after_summarize=10 if is_agent else 8,
            max_summary_chars=1800,
            max_file_chars=max_file_chars,
        )
        return base.with_overrides(overrides)

    def with_overrides(self, overrides: Mapping[str, Any] | None) -> "BudgetConfig":
        """
        Apply overrides independently, clamping each to its minimum.

        Values of the wrong type are ignored.
        """
        if not overrides:
            return self

        changes: dict[str, Any] = {}
        for name in ("enable_summarize", "enable_file_context"):
            value = overrides.get(name)
            if isinstance(value, bool):
                changes[name] = value

        minimums = {
            "max_history_messages": 2,
            "summarize_threshold": 4,
            "keep_after_summarize": 2,
            "max_summary_chars": 200,
            "max_file_chars": 0,
        }
        for name, minimum in minimums.items():
            value = overrides.get(name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            if value != value or value in (float("inf"), float("-inf")):
                continue
            changes[name] = max(minimum, int(value))

        return replace(self, **changes)


# ==============================================================================
# Pure helpers
# ==============================================================================

def should_include_file_context(user_text: str | None) -> bool:
    """
    Whether the user's message plausibly refers to the open file.

    True for an explicit <file> marker or any of FILE_CONTEXT_KEYWORDS,
    matched case-insensitively.
    """
    t = (user_text or "").lower()
    if not t.strip():
        return False
    if FILE_OPEN_TAG in t:
        return True
    return any(keyword in t for keyword in FILE_CONTEXT_KEYWORDS)


def build_summary_prompt(lines: str) -> str:
    return (
        f"Summarize the following conversation in short bullet points "
        f"(max {SUMMARY_MAX_LINES} lines). Keep only decisions, constraints, "
        f"errors and important context.\n\n{lines}"
    )


def limit_lines(text: str, max_lines: int = SUMMARY_MAX_LINES) -> str:
    """Keep at most max_lines non-empty lines."""
    lines = [line for line in (text or "").splitlines() if line.strip()]
    return "\n".join(lines[:max_lines])


def project_memory_limit(config: BudgetConfig) -> int:
    """Characters of project memory allowed in the system prompt."""
    return max(300, min(3000, int(config.max_summary_chars * PROJECT_MEMORY_SHARE)))


# ==============================================================================
# System prompt
# ==============================================================================

AGENT_INSTRUCTIONS = """You are an expert autonomous development agent. You have DIRECT ACCESS to the listed tools and you MUST USE THEM to accomplish the task.
- When you carry out a task, CALL the appropriate tool (read_file, write_file, create_file, list_files, run_command) instead of only describing what you would do.
- Start by listing the project files when you need to understand its structure, and read the relevant files before modifying them.
- write_file and create_file replace the whole file: always send the complete content.
- run_command only sends the command to the terminal; you will not see its output.
- Briefly explain each action after it runs."""

CHAT_INSTRUCTIONS = """You are an expert development assistant embedded in an IDE.
When you modify code, ALWAYS write the complete file between <file> and </file> tags.
Be concise and precise."""


@dataclass
class BudgetedContext:
    """
    What the next model call should carry.

    Attributes:
        messages: History to send, oldest first
        summary: Rolling conversation summary (possibly updated)
        system_prompt: Instructions plus project, memory, summary, file
        summarized: Whether this selection produced a new summary
        file_context_included: Whether the file excerpt was attached
        dropped: Turns left out of messages (folded into the summary when
            summarized is set)
    """
    messages: list[Message]
    summary: str
    system_prompt: str = ""
    summarized: bool = False
    file_context_included: bool = False
    dropped: list[Message] = field(default_factory=list)


class ContextBudgeter:
    """
    Selects history, memory and file context for a model call.

    Example:
        budgeter = ContextBudgeter(summarize=adapter.summarize)

        context = await budgeter.select_context(
            all_messages=history,
            project_memory=memory_text,
            conversation_summary=summary,
            file_content=editor_text,
            config=BudgetConfig.for_mode("chat", provider="claude"),
            user_text="Why does this raise a KeyError?",
            project_path="/home/me/app",
            active_file_path="/home/me/app/main.py",
        )
    """

    def __init__(self, summarize: Summarizer | None = None):
        """
        Args:
            summarize: Async callable turning a prompt into a short summary.
                Without one, the compacted transcript is used as summary.
        """
        self.summarize = summarize

    async def select_context(
        self,
        all_messages: list[Message],
        project_memory: str,
        conversation_summary: str,
        file_content: str | None,
        config: BudgetConfig,
        user_text: str = "",
        mode: str = MODE_CHAT,
        project_path: str | None = None,
        active_file_path: str | None = None
    ) -> BudgetedContext:
        """
        Select the messages and build the system prompt for the next call.

        Returns:
            BudgetedContext; the summary is out-of-band and never inserted
            as a message
        """
        history = conversation_turns(all_messages)
        summary = conversation_summary or ""
        summarized = False
        dropped: list[Message] = []

        if not config.enable_summarize or len(history) < config.summarize_threshold:
            selected = history[-config.max_history_messages:]
            dropped = history[:len(history) - len(selected)]
        else:
            split = max(0, len(history) - config.keep_after_summarize)
            dropped, selected = history[:split], history[split:]
            summary = await self._summarize(dropped, summary, config)
            summarized = True
            logger.info(
                f"Summarized {len(dropped)} messages, keeping {len(selected)}",
                {"summary_chars": len(summary)}
            )

        include_file = self._wants_file_context(file_content, config, user_text, mode)
        system_prompt = build_system_prompt(
            mode=mode,
            project_path=project_path,
            active_file_path=active_file_path,
            project_memory=project_memory,
            conversation_summary=summary,
            file_content=file_content if include_file else None,
            config=config,
        )

        return BudgetedContext(
            messages=list(selected),
            summary=summary,
            system_prompt=system_prompt,
            summarized=summarized,
            file_context_included=include_file,
            dropped=list(dropped),
        )

    async def _summarize(self, prefix: list[Message], previous: str, config: BudgetConfig) -> str:
        lines = transcript_lines(prefix)
        if not lines.strip():
            return compact_text(previous.strip(), config.max_summary_chars)

        new_summary = ""
        if self.summarize is not None:
            try:
                new_summary = limit_lines((await self.summarize(build_summary_prompt(lines))).strip())
            except Exception as e:  # noqa: BLE001 - fall back to the raw transcript
                logger.warning(f"Summarization failed, keeping compacted transcript: {e}")
                new_summary = ""
        if not new_summary:
            new_summary = compact_text(lines, config.max_summary_chars)

        merged = (previous.strip() + "\n" if previous.strip() else "") + new_summary
        return compact_text(merged, config.max_summary_chars)

    @staticmethod
    def _wants_file_context(
        file_content: str | None,
        config: BudgetConfig,
        user_text: str,
        mode: str
    ) -> bool:
        if mode != MODE_CHAT or not file_content:
            return False
        if not config.enable_file_context or config.max_file_chars <= 0:
            return False
        return should_include_file_context(user_text)


def build_system_prompt(
    mode: str,
    project_path: str | None = None,
    active_file_path: str | None = None,
    project_memory: str | None = None,
    conversation_summary: str | None = None,
    file_content: str | None = None,
    config: BudgetConfig | None = None
) -> str:
    """
    Assemble the system prompt.

    file_content is attached as given (after compaction); callers decide
    whether it belongs in this turn.
    """
    config = config or BudgetConfig.for_mode(mode)
    prompt = AGENT_INSTRUCTIONS if mode == MODE_AGENT else CHAT_INSTRUCTIONS

    if project_path:
        prompt += f"\n\nProject: {project_path}"
    if active_file_path:
        prompt += f"\nActive file: {active_file_path}"

    memory = (project_memory or "").strip()
    if memory:
        prompt += f"\n\nProject memory (auto):\n{compact_text(memory, project_memory_limit(config))}"

    summary = (conversation_summary or "").strip()
    if summary:
        prompt += f"\n\nConversation summary:\n{compact_text(summary, config.max_summary_chars)}"

    if file_content and config.max_file_chars > 0:
        excerpt = compact_text(file_content, config.max_file_chars)
        prompt += f"\n\nActive file content (excerpt):\n```\n{excerpt}\n```"

    return prompt
