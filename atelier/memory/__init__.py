"""
Memory System
=============

Everything the engine remembers between turns and sessions:

1. CONVERSATIONS: per-project history with titles, summaries and messages
2. PROJECT MEMORY: a model-written digest of stable project knowledge
3. DEBOUNCED PERSISTENCE: saves coalesced so bursts of edits cost one write

This module provides a Facade: a single MemoryManager class that
coordinates the stores and the debouncer behind a simple interface.

Usage:
    from atelier.memory import MemoryManager

    memory = MemoryManager.from_config()

    conversations = await memory.list_conversations("/home/me/app")
    memory.schedule_conversation_save("/home/me/app", conversation)
    text = (await memory.get_project_memory("/home/me/app")).text

    await memory.close()    # flushes pending saves
"""

from pathlib import Path
from typing import Awaitable, Callable

from atelier.memory.debounce import Debouncer
from atelier.memory.models import (
    NO_PROJECT_KEY,
    Conversation,
    ConversationSummary,
    ProjectMemory,
    derive_title,
    new_conversation_id,
    project_key,
)
from atelier.memory.project import ProjectMemoryUpdater
from atelier.memory.stores import (
    ConversationStore,
    InMemoryConversationStore,
    InMemoryProjectMemoryStore,
    JsonConversationStore,
    JsonProjectMemoryStore,
    ProjectMemoryStore,
)
from atelier.utils.config import Config, get_config
from atelier.utils.logger import Logger

logger = Logger("Memory")


class MemoryManager:
    """
    Facade over the conversation store, the project memory store and the
    debouncer.

    Project paths are turned into store keys here; callers pass paths
    (or None when no project is open).

    Example:
        memory = MemoryManager(
            conversations=JsonConversationStore(path_a),
            memories=JsonProjectMemoryStore(path_b),
        )

        result = await memory.save_conversation("/home/me/app", conversation)
        loaded = await memory.get_conversation("/home/me/app", result["id"])
    """

    def __init__(
        self,
        conversations: ConversationStore,
        memories: ProjectMemoryStore,
        debouncer: Debouncer | None = None,
        conversation_save_delay: float = 0.8,
        memory_save_delay: float = 0.6,
        memory_refresh_delay: float = 4.5
    ):
        self.conversations = conversations
        self.memories = memories
        self.debouncer = debouncer or Debouncer()
        self.conversation_save_delay = conversation_save_delay
        self.memory_save_delay = memory_save_delay
        self.memory_refresh_delay = memory_refresh_delay

    @classmethod
    def from_config(cls, config: Config | None = None) -> "MemoryManager":
        """JSON-file stores under the configured data directory."""
        config = config or get_config()
        persistence = config.persistence
        logger.info(f"Memory stores in {persistence.data_dir}")
        return cls(
            conversations=JsonConversationStore(persistence.conversations_file),
            memories=JsonProjectMemoryStore(persistence.project_memory_file),
            conversation_save_delay=persistence.conversation_save_delay,
            memory_save_delay=persistence.memory_save_delay,
            memory_refresh_delay=persistence.memory_refresh_delay,
        )

    @classmethod
    def in_memory(cls, **kwargs) -> "MemoryManager":
        """Process-local stores (tests, throwaway sessions)."""
        return cls(
            conversations=InMemoryConversationStore(),
            memories=InMemoryProjectMemoryStore(),
            **kwargs
        )

    # ==========================================================================
    # Conversations
    # ==========================================================================

    async def list_conversations(self, project_path: str | Path | None) -> list[ConversationSummary]:
        return await self.conversations.list(project_key(project_path))

    async def get_conversation(self, project_path: str | Path | None, conversation_id: str) -> Conversation | None:
        return await self.conversations.get(project_key(project_path), conversation_id)

    async def save_conversation(self, project_path: str | Path | None, conversation: Conversation) -> dict:
        """Save now. Returns {"id": ...}."""
        return await self.conversations.save(project_key(project_path), conversation)

    def schedule_conversation_save(
        self,
        project_path: str | Path | None,
        conversation: Conversation | Callable[[], Conversation]
    ) -> None:
        """
        Save after a quiet period.

        A later call for the same project replaces the pending save, so only
        the latest snapshot is written. Pass a callable to take the snapshot
        when the save actually runs.
        """
        key = project_key(project_path)

        async def save():
            snapshot = conversation if isinstance(conversation, Conversation) else conversation()
            await self.conversations.save(key, snapshot)

        self.debouncer.schedule(f"conversation:{key}", self.conversation_save_delay, save)

    async def rename_conversation(self, project_path: str | Path | None, conversation_id: str, title: str) -> bool:
        return await self.conversations.rename(project_key(project_path), conversation_id, title)

    async def delete_conversation(self, project_path: str | Path | None, conversation_id: str) -> bool:
        key = project_key(project_path)
        # A pending save of the same conversation must not resurrect it
        await self.debouncer.flush(f"conversation:{key}")
        return await self.conversations.delete(key, conversation_id)

    # ==========================================================================
    # Project memory
    # ==========================================================================

    async def get_project_memory(self, project_path: str | Path | None) -> ProjectMemory:
        return await self.memories.get(project_key(project_path))

    async def save_project_memory(self, project_path: str | Path | None, text: str) -> bool:
        return await self.memories.save(project_key(project_path), text)

    def schedule_project_memory_save(self, project_path: str | Path | None, text: str) -> None:
        key = project_key(project_path)

        async def save():
            await self.memories.save(key, text)

        self.debouncer.schedule(f"memory-save:{key}", self.memory_save_delay, save)

    def schedule_project_memory_refresh(
        self,
        project_path: str | Path | None,
        refresh: Callable[[], Awaitable[None]]
    ) -> None:
        """Run refresh once the conversation has been quiet for a while."""
        key = project_key(project_path)
        self.debouncer.schedule(f"memory-refresh:{key}", self.memory_refresh_delay, refresh)

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def flush(self) -> None:
        """Run every pending save and refresh now."""
        # Refreshes schedule a memory save, so they go first
        await self.debouncer.flush("memory-refresh:")
        await self.debouncer.flush()

    async def close(self) -> None:
        await self.flush()
        self.debouncer.shutdown()


__all__ = [
    "NO_PROJECT_KEY",
    "Conversation",
    "ConversationStore",
    "ConversationSummary",
    "Debouncer",
    "InMemoryConversationStore",
    "InMemoryProjectMemoryStore",
    "JsonConversationStore",
    "JsonProjectMemoryStore",
    "MemoryManager",
    "ProjectMemory",
    "ProjectMemoryStore",
    "ProjectMemoryUpdater",
    "derive_title",
    "new_conversation_id",
    "project_key",
]
