"""
Persistence Stores
==================

Conversation history and project memory, keyed per project.

Both stores keep one JSON document each:

    conversations.json
    {
      "version": 1,
      "conversations": {
        "<project key>": {
          "byId":  {"c_...": {id, title, createdAt, updatedAt, provider,
                              model, summary, messages}},
          "order": ["c_...", ...]          # most recently saved first
        }
      }
    }

    project_memory.json
    {
      "version": 1,
      "memories": {"<project key>": {text, updatedAt, createdAt}}
    }

A missing or corrupt file reads as an empty document. Writes go to a temp
file renamed over the target, so a crash never leaves half a document.
Each store serializes its read-modify-write cycles with an asyncio.Lock.
"""

import asyncio
import json
from pathlib import Path
from typing import Protocol

from atelier.memory.models import (
    DEFAULT_TITLE,
    MAX_CONVERSATIONS_PER_PROJECT,
    Conversation,
    ConversationSummary,
    ProjectMemory,
    new_conversation_id,
    normalize_title,
    now_ms,
)
from atelier.tools.bridges import atomic_write_text
from atelier.utils.logger import Logger

logger = Logger("Stores")

DOCUMENT_VERSION = 1


class ConversationStore(Protocol):
    async def list(self, project_key: str) -> list[ConversationSummary]:
        ...

    async def get(self, project_key: str, conversation_id: str) -> Conversation | None:
        ...

    async def save(self, project_key: str, conversation: Conversation) -> dict:
        ...

    async def rename(self, project_key: str, conversation_id: str, title: str) -> bool:
        ...

    async def delete(self, project_key: str, conversation_id: str) -> bool:
        ...


class ProjectMemoryStore(Protocol):
    async def get(self, project_key: str) -> ProjectMemory:
        ...

    async def save(self, project_key: str, text: str) -> bool:
        ...


def read_document(path: Path, section: str) -> dict:
    """
    Read a store document, tolerating a missing or corrupt file.

    Args:
        path: JSON file
        section: Top-level mapping the document must carry
    """
    empty = {"version": DOCUMENT_VERSION, section: {}}
    if not path.exists():
        return empty
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Unreadable store {path.name}, starting empty: {e}")
        return empty
    if not isinstance(document, dict):
        return empty
    if not isinstance(document.get(section), dict):
        document[section] = {}
    document.setdefault("version", DOCUMENT_VERSION)
    return document


def write_document(path: Path, document: dict) -> None:
    atomic_write_text(path, json.dumps(document, indent=2, ensure_ascii=False))


# ==============================================================================
# Conversations
# ==============================================================================

class DocumentConversationStore:
    """
    Conversation store semantics over an in-memory document.

    Subclasses decide where the document lives (_load/_dump).
    """

    def __init__(self, max_per_project: int = MAX_CONVERSATIONS_PER_PROJECT):
        self.max_per_project = max_per_project
        self._lock = asyncio.Lock()

    async def _load(self) -> dict:
        raise NotImplementedError

    async def _dump(self, document: dict) -> None:
        raise NotImplementedError

    @staticmethod
    def _bucket(document: dict, project_key: str, create: bool = False) -> dict | None:
        conversations = document.setdefault("conversations", {})
        bucket = conversations.get(project_key)
        if bucket is None:
            if not create:
                return None
            bucket = conversations[project_key] = {"byId": {}, "order": []}
        if not isinstance(bucket.get("byId"), dict):
            bucket["byId"] = {}
        if not isinstance(bucket.get("order"), list):
            bucket["order"] = []
        return bucket

    async def list(self, project_key: str) -> list[ConversationSummary]:
        """Summaries in index order (most recently saved first)."""
        document = await self._load()
        bucket = self._bucket(document, project_key)
        if bucket is None:
            return []
        items = []
        for conversation_id in bucket["order"]:
            entry = bucket["byId"].get(conversation_id)
            if isinstance(entry, dict):
                items.append(Conversation.from_dict(entry).to_summary())
        return items

    async def get(self, project_key: str, conversation_id: str) -> Conversation | None:
        document = await self._load()
        bucket = self._bucket(document, project_key)
        if bucket is None:
            return None
        entry = bucket["byId"].get(conversation_id)
        return Conversation.from_dict(entry) if isinstance(entry, dict) else None

    async def save(self, project_key: str, conversation: Conversation) -> dict:
        """
        Insert or update a conversation.

        An id is assigned when absent. created_at is preserved, updated_at
        is set to now, and fields left empty fall back to the stored entry.
        The id moves to the front of the order index, which is capped;
        evicted conversations are removed.

        Returns:
            {"id": <conversation id>}
        """
        async with self._lock:
            document = await self._load()
            bucket = self._bucket(document, project_key, create=True)

            now = now_ms()
            conversation_id = conversation.id or new_conversation_id(now)
            existing = bucket["byId"].get(conversation_id) or {}

            messages = conversation.messages
            bucket["byId"][conversation_id] = {
                "id": conversation_id,
                "title": normalize_title(
                    conversation.title if conversation.title != DEFAULT_TITLE else existing.get("title")
                ),
                "createdAt": existing.get("createdAt") or conversation.created_at or now,
                "updatedAt": now,
                "provider": conversation.provider or existing.get("provider"),
                "model": conversation.model or existing.get("model"),
                "summary": (
                    conversation.summary if conversation.summary is not None
                    else existing.get("summary") or ""
                ),
                "messages": (
                    [m.to_dict() for m in messages] if messages is not None
                    else existing.get("messages", [])
                ),
            }

            order = [x for x in bucket["order"] if x != conversation_id]
            order.insert(0, conversation_id)
            for evicted in order[self.max_per_project:]:
                bucket["byId"].pop(evicted, None)
            bucket["order"] = order[:self.max_per_project]

            await self._dump(document)

        logger.debug(f"Saved conversation {conversation_id}", {"project": project_key})
        return {"id": conversation_id}

    async def rename(self, project_key: str, conversation_id: str, title: str) -> bool:
        async with self._lock:
            document = await self._load()
            bucket = self._bucket(document, project_key)
            entry = bucket["byId"].get(conversation_id) if bucket else None
            if not isinstance(entry, dict):
                return False
            entry["title"] = normalize_title(title)
            entry["updatedAt"] = now_ms()
            await self._dump(document)
        return True

    async def delete(self, project_key: str, conversation_id: str) -> bool:
        async with self._lock:
            document = await self._load()
            bucket = self._bucket(document, project_key)
            if bucket is None:
                return False
            bucket["byId"].pop(conversation_id, None)
            bucket["order"] = [x for x in bucket["order"] if x != conversation_id]
            await self._dump(document)
        return True


class InMemoryConversationStore(DocumentConversationStore):
    """Conversation store that lives only as long as the process."""

    def __init__(self, max_per_project: int = MAX_CONVERSATIONS_PER_PROJECT):
        super().__init__(max_per_project)
        self.document: dict = {"version": DOCUMENT_VERSION, "conversations": {}}

    async def _load(self) -> dict:
        return json.loads(json.dumps(self.document))

    async def _dump(self, document: dict) -> None:
        self.document = json.loads(json.dumps(document))


class JsonConversationStore(DocumentConversationStore):
    """
    Conversation store backed by one JSON file.

    Example:
        store = JsonConversationStore(config.persistence.conversations_file)
        result = await store.save(project_key("/home/me/app"), conversation)
        items = await store.list(project_key("/home/me/app"))
    """

    def __init__(self, path: Path, max_per_project: int = MAX_CONVERSATIONS_PER_PROJECT):
        super().__init__(max_per_project)
        self.path = Path(path)

    async def _load(self) -> dict:
        return await asyncio.to_thread(read_document, self.path, "conversations")

    async def _dump(self, document: dict) -> None:
        await asyncio.to_thread(write_document, self.path, document)


# ==============================================================================
# Project memory
# ==============================================================================

class DocumentProjectMemoryStore:
    """Project memory semantics over an in-memory document."""

    def __init__(self):
        self._lock = asyncio.Lock()

    async def _load(self) -> dict:
        raise NotImplementedError

    async def _dump(self, document: dict) -> None:
        raise NotImplementedError

    async def get(self, project_key: str) -> ProjectMemory:
        """The stored memory, or an empty one."""
        document = await self._load()
        return ProjectMemory.from_dict(document["memories"].get(project_key))

    async def save(self, project_key: str, text: str) -> bool:
        """Replace the memory text, preserving its creation time."""
        async with self._lock:
            document = await self._load()
            now = now_ms()
            previous = document["memories"].get(project_key) or {}
            document["memories"][project_key] = {
                "text": text or "",
                "updatedAt": now,
                "createdAt": previous.get("createdAt") or now,
            }
            await self._dump(document)
        return True


class InMemoryProjectMemoryStore(DocumentProjectMemoryStore):

    def __init__(self):
        super().__init__()
        self.document: dict = {"version": DOCUMENT_VERSION, "memories": {}}

    async def _load(self) -> dict:
        return json.loads(json.dumps(self.document))

    async def _dump(self, document: dict) -> None:
        self.document = json.loads(json.dumps(document))


class JsonProjectMemoryStore(DocumentProjectMemoryStore):
    """Project memory backed by one JSON file."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)

    async def _load(self) -> dict:
        return await asyncio.to_thread(read_document, self.path, "memories")

    async def _dump(self, document: dict) -> None:
        await asyncio.to_thread(write_document, self.path, document)
