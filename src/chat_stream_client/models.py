from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

DEFAULT_TITLE = "New Chat"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessagesState(str, Enum):
    """Whether a session's message history has been fetched.

    ``UNLOADED`` means "not fetched yet", which is not the same as an empty chat.
    """

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


def utc_now() -> datetime:
    return datetime.now(UTC)


_last_local_id = 0


def new_local_id() -> str:
    """Return a provisional, strictly increasing, time-based identifier."""
    global _last_local_id
    candidate = time.time_ns()
    if candidate <= _last_local_id:
        candidate = _last_local_id + 1
    _last_local_id = candidate
    return f"local-{candidate}"


def is_local_id(value: str) -> bool:
    return value.startswith("local-")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # Millisecond epoch values come from the browser blob format.
        parsed = datetime.fromtimestamp(value / 1000 if value > 1e11 else value, UTC)
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        return utc_now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _pick(data: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class Message:
    id: str
    role: Role
    content: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    is_streaming: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    responding_to_message_id: str | None = None

    @classmethod
    def user(cls, content: str, *, metadata: dict | None = None) -> Message:
        return cls(id=new_local_id(), role=Role.USER, content=content, metadata=dict(metadata or {}))

    @classmethod
    def assistant_placeholder(cls, responding_to: str) -> Message:
        return cls(
            id=new_local_id(),
            role=Role.ASSISTANT,
            content="",
            is_streaming=True,
            responding_to_message_id=responding_to,
        )

    @property
    def has_attachment(self) -> bool:
        return bool(self.metadata.get("document_id"))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "isStreaming": self.is_streaming,
            "metadata": dict(self.metadata),
        }
        if self.responding_to_message_id is not None:
            data["respondingToMessageId"] = self.responding_to_message_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data["id"]),
            role=Role(data.get("role", "user")),
            content=str(data.get("content") or ""),
            timestamp=parse_timestamp(_pick(data, "timestamp", "created_at", "createdAt")),
            is_streaming=bool(_pick(data, "isStreaming", "is_streaming", default=False)),
            metadata=dict(data.get("metadata") or {}),
            responding_to_message_id=_pick(data, "respondingToMessageId", "responding_to_message_id"),
        )


@dataclass
class ChatSession:
    id: str
    title: str = DEFAULT_TITLE
    messages: list[Message] = field(default_factory=list)
    is_favorite: bool = False
    selected_model: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    messages_state: MessagesState = MessagesState.UNLOADED

    @property
    def messages_loaded(self) -> bool:
        return self.messages_state is MessagesState.LOADED

    @property
    def is_empty(self) -> bool:
        """True only for a fetched session with no messages."""
        return self.messages_loaded and not self.messages

    @property
    def streaming_message(self) -> Message | None:
        for message in self.messages:
            if message.is_streaming:
                return message
        return None

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_dict(self, *, include_messages: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "isFavorite": self.is_favorite,
            "selectedModel": self.selected_model,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, messages_loaded: bool | None = None) -> ChatSession:
        raw_messages = data.get("messages")
        messages = [Message.from_dict(m) for m in raw_messages or [] if isinstance(m, dict) and "id" in m]
        if messages_loaded is None:
            messages_loaded = raw_messages is not None
        return cls(
            id=str(data["id"]),
            title=str(_pick(data, "title", default=DEFAULT_TITLE)),
            messages=messages if messages_loaded else [],
            is_favorite=bool(_pick(data, "isFavorite", "is_favorite", default=False)),
            selected_model=str(_pick(data, "selectedModel", "selected_model", "model", default="")),
            created_at=parse_timestamp(_pick(data, "createdAt", "created_at")),
            updated_at=parse_timestamp(_pick(data, "updatedAt", "updated_at")),
            messages_state=MessagesState.LOADED if messages_loaded else MessagesState.UNLOADED,
        )
