"""
Project Memory
==============

Keeps a persistent, model-written memory per project: goals, architecture
decisions, conventions, useful commands, known pitfalls. It is refreshed
from the recent conversation and injected (compacted) into every system
prompt for that project.

Each refresh is a full replacement, never an append.
"""

from typing import Awaitable, Callable

from atelier.messages import Message, conversation_turns, transcript_lines
from atelier.utils.logger import Logger
from atelier.utils.text import compact_text

logger = Logger("ProjectMemory")

PROJECT_MEMORY_MAX_CHARS = 9000
RECENT_MESSAGES = 12
MIN_MESSAGES = 4

Summarizer = Callable[[str], Awaitable[str]]


def build_project_memory_prompt(existing: str, recent_lines: str) -> str:
    existing = (existing or "").strip()
    recent = (recent_lines or "").strip()
    return f"""You maintain a persistent PROJECT MEMORY for an IDE.
Goal: keep only stable, reusable information.

Rules:
- Reply only with the updated memory text (no explanations).
- Concise format with short sections.
- Include: goals, architecture decisions, conventions, useful commands, known pitfalls, important TODOs.
- Exclude: chit-chat, temporary details, logs, tokens, or low-value messages.
- Keep the memory to roughly 500-1200 words at most.

CURRENT MEMORY:
{existing or "(empty)"}

NEW ELEMENTS (recent conversation):

{recent or "(nothing)"}

UPDATED MEMORY:"""


class ProjectMemoryUpdater:
    """
    Rewrites project memory from recent conversation turns.

    Example:
        updater = ProjectMemoryUpdater()
        new_text = await updater.update(messages, existing_text, adapter.summarize)
        if new_text:
            await store.save(key, new_text)
    """

    def __init__(
        self,
        max_chars: int = PROJECT_MEMORY_MAX_CHARS,
        recent_messages: int = RECENT_MESSAGES,
        min_messages: int = MIN_MESSAGES
    ):
        self.max_chars = max_chars
        self.recent_messages = recent_messages
        self.min_messages = min_messages

    def build_prompt(self, existing: str, recent_lines: str) -> str:
        return build_project_memory_prompt(existing, recent_lines)

    def should_update(self, messages: list[Message]) -> bool:
        """Only conversations with enough substance are worth remembering."""
        return len(conversation_turns(messages)) >= self.min_messages

    async def update(self, messages: list[Message], existing: str, summarize: Summarizer) -> str | None:
        """
        Ask the model for the updated memory.

        Args:
            messages: The conversation (display messages are filtered out)
            existing: Current memory text
            summarize: Async prompt -> text callable

        Returns:
            The new memory (compacted), or None when skipped or when the
            model returned nothing usable
        """
        if not self.should_update(messages):
            return None

        recent = conversation_turns(messages)[-self.recent_messages:]
        prompt = self.build_prompt(existing, transcript_lines(recent))

        try:
            text = await summarize(prompt)
        except Exception as e:  # noqa: BLE001 - memory is best-effort; keep the old one
            logger.warning(f"Project memory update failed: {e}")
            return None

        cleaned = compact_text((text or "").strip(), self.max_chars)
        if not cleaned:
            return None
        logger.info(f"Project memory updated ({len(cleaned)} chars)")
        return cleaned
