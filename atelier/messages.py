"""
Vendor-Neutral Messages
=======================

The conversation data model shared by the budgeter, the agent loop, the
provider adapters and the conversation store.

Message content is a tagged union: either plain text (a str) or an ordered
list of content blocks. Each provider adapter converts to and from its own
wire format at the vendor boundary; nothing else in the engine needs to know
what a vendor expects.

Block types:
    TextBlock        - model or user text
    ToolUseBlock     - a model request to run a named tool
    ToolResultBlock  - the outcome of one tool call, linked by id
    ImageBlock       - an attached image (data URL), chat mode only

Invariant: every ToolResultBlock references the id of a ToolUseBlock in an
earlier assistant message, and results follow their calls directly.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from atelier.utils.text import strip_file_blocks

USER = "user"
ASSISTANT = "assistant"
TOOL = "tool"
SYSTEM = "system"

ROLES = (USER, ASSISTANT, TOOL, SYSTEM)

# Vendor-neutral stop reasons
END_TURN = "end_turn"
TOOL_USE = "tool_use"

# Tool row status (display messages only)
STATUS_RUNNING = "running"
STATUS_DONE = "done"


@dataclass
class TextBlock:
    text: str
    type: ClassVar[str] = "text"

    def to_dict(self) -> dict:
        return {"type": self.type, "text": self.text}


@dataclass
class ToolUseBlock:
    """A tool call requested by the model."""
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "tool_use"

    def to_dict(self) -> dict:
        return {"type": self.type, "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    """
    The result of one tool call.

    tool_name is carried because one vendor keys function results by name
    rather than by call id.
    """
    tool_use_id: str
    content: str
    is_error: bool = False
    tool_name: str | None = None
    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }
        if self.tool_name:
            data["tool_name"] = self.tool_name
        return data


@dataclass
class ImageBlock:
    data_url: str
    mime: str | None = None
    name: str | None = None
    type: ClassVar[str] = "image"

    def to_dict(self) -> dict:
        return {"type": self.type, "data_url": self.data_url, "mime": self.mime, "name": self.name}


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, ImageBlock]


def block_from_dict(data: dict) -> ContentBlock:
    """
    Rebuild a content block from its dict form.

    Raises:
        ValueError: If the block type is not recognized
    """
    kind = data.get("type")
    if kind == TextBlock.type:
        return TextBlock(text=str(data.get("text", "")))
    if kind == ToolUseBlock.type:
        return ToolUseBlock(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            input=dict(data.get("input") or {}),
        )
    if kind == ToolResultBlock.type:
        return ToolResultBlock(
            tool_use_id=str(data.get("tool_use_id", "")),
            content=str(data.get("content", "")),
            is_error=bool(data.get("is_error", False)),
            tool_name=data.get("tool_name"),
        )
    if kind == ImageBlock.type:
        return ImageBlock(
            data_url=str(data.get("data_url", "")),
            mime=data.get("mime"),
            name=data.get("name"),
        )
    raise ValueError(f"Unknown content block type: {kind!r}")


@dataclass
class Message:
    """
    One turn in a conversation.

    Attributes:
        role: "user", "assistant", "tool" or "system"
        content: Plain text, or a list of content blocks
        display: Human-facing rendering, when it differs from content
        tool_call_id: For tool rows, the call this row belongs to
        tool_name: For tool rows, the tool that ran
        status: For tool rows, "running" or "done"
        result_text: For tool rows, the tool output shown to the user
        icon: Short marker shown next to tool rows
    """
    role: str
    content: str | list[ContentBlock] = ""
    display: str | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    status: str | None = None
    result_text: str | None = None
    icon: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Invalid message role: {self.role!r}")

    @classmethod
    def user(cls, text: str, display: str | None = None) -> "Message":
        return cls(role=USER, content=text, display=display)

    @classmethod
    def assistant(cls, content: str | list[ContentBlock]) -> "Message":
        return cls(role=ASSISTANT, content=content)

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=SYSTEM, content=text)

    @classmethod
    def tool_result(
        cls,
        tool_use_id: str,
        output: str,
        is_error: bool = False,
        tool_name: str | None = None
    ) -> "Message":
        """Build the message that answers one tool call."""
        return cls(
            role=TOOL,
            content=[ToolResultBlock(
                tool_use_id=tool_use_id,
                content=output,
                is_error=is_error,
                tool_name=tool_name,
            )],
            tool_call_id=tool_use_id,
            tool_name=tool_name,
        )

    @property
    def is_text(self) -> bool:
        return isinstance(self.content, str)

    def blocks(self) -> list[ContentBlock]:
        """Content as a block list, wrapping plain text."""
        if isinstance(self.content, str):
            return [TextBlock(self.content)] if self.content else []
        return list(self.content)

    def text(self) -> str:
        """Plain-text view: the string itself, or all text blocks joined."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks() if isinstance(b, ToolUseBlock)]

    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.blocks() if isinstance(b, ToolResultBlock)]

    def images(self) -> list[ImageBlock]:
        return [b for b in self.blocks() if isinstance(b, ImageBlock)]

    def to_dict(self) -> dict:
        """Serializable form used by the conversation store."""
        data: dict[str, Any] = {"role": self.role}
        if isinstance(self.content, str):
            data["content"] = self.content
        else:
            data["content"] = [b.to_dict() for b in self.content]
        for key in ("display", "tool_call_id", "tool_name", "status", "result_text", "icon"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        content = data.get("content", "")
        if isinstance(content, list):
            content = [block_from_dict(b) for b in content]
        elif content is None:
            content = ""
        else:
            content = str(content)
        return cls(
            role=data.get("role", USER),
            content=content,
            display=data.get("display"),
            tool_call_id=data.get("tool_call_id"),
            tool_name=data.get("tool_name"),
            status=data.get("status"),
            result_text=data.get("result_text"),
            icon=data.get("icon"),
        )


@dataclass
class ProviderResponse:
    """
    A vendor reply translated to the neutral shape.

    Attributes:
        content_blocks: Text and tool-use blocks, in the order received
        stop_reason: "end_turn", "tool_use", or the vendor's own value
        vendor_stop_reason: The raw value the vendor reported
    """
    content_blocks: list[TextBlock | ToolUseBlock]
    stop_reason: str
    vendor_stop_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content_blocks if isinstance(b, TextBlock))

    @property
    def tool_calls(self) -> list[ToolUseBlock]:
        return [b for b in self.content_blocks if isinstance(b, ToolUseBlock)]

    def to_message(self) -> Message:
        """The assistant message to append to the history."""
        return Message.assistant(list(self.content_blocks))


def conversation_turns(messages: list[Message]) -> list[Message]:
    """Keep only user/assistant messages (drops tool and system display rows)."""
    return [m for m in messages if m.role in (USER, ASSISTANT)]


def transcript_lines(messages: list[Message]) -> str:
    """Render user/assistant turns as "User: ..." / "Assistant: ..." lines, <file> payloads removed."""
    lines = []
    for m in messages:
        if m.role == USER:
            lines.append(f"User: {strip_file_blocks(m.text())}")
        elif m.role == ASSISTANT:
            lines.append(f"Assistant: {strip_file_blocks(m.text())}")
    return "\n".join(lines)
