"""Data models for chat messages, message parts and tool call records."""

import json
from dataclasses import dataclass, field, replace
from typing import Any, Literal
from uuid import uuid4


# Type aliases for roles, statuses and states
Role = Literal["user", "assistant", "system"]

ChatStatus = Literal["ready", "submitted", "streaming", "error"]

ToolState = Literal["input-available", "output-available"]

VoiceState = Literal["idle", "recording", "transcribing"]

PlaybackState = Literal["idle", "generating", "playing"]

TOOL_TYPE_PREFIX = "tool-"


def new_id() -> str:
    """Generate a message or chat identifier."""
    return uuid4().hex


@dataclass(frozen=True)
class TextPart:
    """A run of prose inside a message."""

    text: str

    @property
    def type(self) -> str:
        return "text"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolPart:
    """A tool invocation announced by the assistant, optionally with its output."""

    tool_call_id: str
    tool_name: str
    state: ToolState = "input-available"
    input: Any = None
    output: Any = None

    @property
    def type(self) -> str:
        return f"{TOOL_TYPE_PREFIX}{self.tool_name}"

    @property
    def is_complete(self) -> bool:
        return self.state == "output-available"

    def with_output(self, output: Any) -> "ToolPart":
        """Return a copy moved to output-available with the output attached."""
        return replace(self, state="output-available", output=output)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "type": self.type,
            "toolCallId": self.tool_call_id,
            "state": self.state,
            "input": self.input,
        }
        if self.state == "output-available":
            data["output"] = self.output
        return data


@dataclass(frozen=True)
class OpaquePart:
    """A stored part of a kind the client does not interpret (reasoning, files, ...).

    Kept verbatim so that hydrating and re-saving a conversation never loses data.
    """

    data: dict = field(default_factory=dict)

    @property
    def type(self) -> str:
        return str(self.data.get("type", "unknown"))

    def to_dict(self) -> dict:
        return dict(self.data)


Part = TextPart | ToolPart | OpaquePart


def part_from_dict(data: dict) -> Part:
    """Create a part from its wire/storage dictionary."""
    part_type = data.get("type", "")
    if part_type == "text":
        return TextPart(text=data.get("text", ""))
    if part_type.startswith(TOOL_TYPE_PREFIX) and data.get("toolCallId"):
        return ToolPart(
            tool_call_id=data["toolCallId"],
            tool_name=data.get("toolName") or part_type[len(TOOL_TYPE_PREFIX):],
            state=data.get("state", "input-available"),
            input=data.get("input"),
            output=data.get("output"),
        )
    return OpaquePart(data=dict(data))


@dataclass(frozen=True)
class Message:
    """A single conversation message.

    Messages are immutable; the assembler replaces the trailing assistant
    message with a new object on every edit.
    """

    id: str
    role: Role
    parts: tuple[Part, ...] = ()

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(id=new_id(), role="user", parts=(TextPart(text),))

    @classmethod
    def assistant(cls, text: str = "", message_id: str | None = None) -> "Message":
        parts = (TextPart(text),) if text else ()
        return cls(id=message_id or new_id(), role="assistant", parts=parts)

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def text_part(self) -> TextPart | None:
        return next((p for p in self.parts if isinstance(p, TextPart)), None)

    def tool_parts(self) -> list[ToolPart]:
        return [p for p in self.parts if isinstance(p, ToolPart)]

    def find_tool_part(self, tool_call_id: str) -> ToolPart | None:
        return next((p for p in self.tool_parts() if p.tool_call_id == tool_call_id), None)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "role": self.role,
            "parts": [p.to_dict() for p in self.parts],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        """Create from dictionary."""
        return cls(
            id=data.get("id") or new_id(),
            role=data.get("role", "assistant"),
            parts=tuple(part_from_dict(p) for p in data.get("parts", []) if isinstance(p, dict)),
        )


@dataclass
class ToolCallRecord:
    """Whether the one-time side effect for a tool call has fired."""

    tool_call_id: str
    tool_name: str = ""
    handled: bool = False


def unserializable(_value: Any) -> str:
    """``json.dumps`` default for stored values JSON cannot encode."""
    return "[Unserializable]"


def deserialize_messages(raw: str | list | None) -> list[Message]:
    """Parse stored messages (a JSON string or an already-decoded list)."""
    if not raw:
        return []
    data = json.loads(raw) if isinstance(raw, str) else raw
    return [Message.from_dict(m) for m in data if isinstance(m, dict)]


def chat_title(messages: list[Message], limit: int = 100) -> str:
    """Title for a stored chat: the first message's text, truncated."""
    if messages:
        text_part = messages[0].text_part()
        if text_part and text_part.text:
            return text_part.text[:limit]
    return "New Chat"
