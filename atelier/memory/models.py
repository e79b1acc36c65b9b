"""
Memory Models
=============

Records persisted by the conversation and project-memory stores.

The JSON form uses the camelCase keys the stores have always written
(createdAt, updatedAt), so existing files stay readable.
"""

import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path

from atelier.messages import USER, Message

NO_PROJECT_KEY = "__no_project__"
DEFAULT_TITLE = "Conversation"
TITLE_MAX_CHARS = 120
DERIVED_TITLE_CHARS = 80
MAX_CONVERSATIONS_PER_PROJECT = 200


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_conversation_id(timestamp_ms: int | None = None) -> str:
    """Generate an id like c_1718000000000_9f3a1c2b."""
    return f"c_{timestamp_ms if timestamp_ms is not None else now_ms()}_{secrets.token_hex(4)}"


def project_key(project_path: str | Path | None) -> str:
    """
    Key a project by its absolute path.

    No open project maps to a sentinel so its conversations still persist.
    """
    if not project_path or not str(project_path).strip():
        return NO_PROJECT_KEY
    return str(Path(project_path).expanduser().resolve())


def normalize_title(title: str | None) -> str:
    """Trim and cap a title; blank titles become the default."""
    cleaned = (title or "").strip()[:TITLE_MAX_CHARS]
    return cleaned or DEFAULT_TITLE


def derive_title(messages: list[Message], fallback: str = DEFAULT_TITLE) -> str:
    """Title from the first user message (first 80 chars)."""
    for message in messages:
        if message.role == USER:
            text = (message.display or message.text()).strip()
            if text:
                return text[:DERIVED_TITLE_CHARS]
    return fallback


@dataclass
class Conversation:
    """
    A persisted conversation.

    Attributes:
        id: Conversation id (assigned on first save when empty)
        title: Display title, at most 120 chars
        created_at: Epoch ms, preserved across saves
        updated_at: Epoch ms of the last save
        provider: Provider id used last
        model: Model id used last
        summary: Rolling conversation summary; None keeps the stored one on save
        messages: Display messages
    """
    id: str = ""
    title: str = DEFAULT_TITLE
    created_at: int | None = None
    updated_at: int | None = None
    provider: str | None = None
    model: str | None = None
    summary: str | None = None
    messages: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "provider": self.provider,
            "model": self.model,
            "summary": self.summary or "",
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Conversation":
        messages = []
        for raw in data.get("messages") or []:
            if isinstance(raw, dict):
                try:
                    messages.append(Message.from_dict(raw))
                except ValueError:
                    continue
        return cls(
            id=str(data.get("id") or ""),
            title=normalize_title(data.get("title")),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            provider=data.get("provider"),
            model=data.get("model"),
            summary=str(data.get("summary") or ""),
            messages=messages,
        )

    def to_summary(self) -> "ConversationSummary":
        return ConversationSummary(
            id=self.id,
            title=self.title,
            created_at=self.created_at,
            updated_at=self.updated_at,
            provider=self.provider,
            model=self.model,
        )


@dataclass
class ConversationSummary:
    """The list-view record of a conversation."""
    id: str
    title: str
    created_at: int | None = None
    updated_at: int | None = None
    provider: str | None = None
    model: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "provider": self.provider,
            "model": self.model,
        }


@dataclass
class ProjectMemory:
    """Long-lived notes about a project, rewritten as a whole."""
    text: str = ""
    updated_at: int | None = None
    created_at: int | None = None

    def to_dict(self) -> dict:
        return {"text": self.text, "updatedAt": self.updated_at, "createdAt": self.created_at}

    @classmethod
    def from_dict(cls, data: dict | None) -> "ProjectMemory":
        data = data or {}
        return cls(
            text=str(data.get("text") or ""),
            updated_at=data.get("updatedAt"),
            created_at=data.get("createdAt"),
        )
