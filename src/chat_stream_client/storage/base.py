from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from chat_stream_client.models import ChatSession, Message
from chat_stream_client.search import SearchFilters

# Session fields a store is allowed to update.
SESSION_FIELDS = ("title", "is_favorite", "selected_model")


@runtime_checkable
class SessionStore(Protocol):
    async def list_sessions(self) -> list[ChatSession]:
        """Return sessions most-recent-first. Messages may be left unloaded."""
        ...

    async def create_session(self, title: str, model: str) -> ChatSession: ...

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> None: ...

    async def delete_session(self, session_id: str) -> None:
        """Delete a session and, with it, all of its messages."""
        ...

    async def list_messages(self, session_id: str) -> list[Message]: ...

    async def create_message(self, session_id: str, message: Message) -> Message:
        """Persist ``message`` and return the authoritative copy (id, timestamp)."""
        ...

    async def update_message(
        self,
        session_id: str,
        message_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message: ...

    async def delete_message(self, session_id: str, message_id: str) -> None: ...

    async def search_sessions(self, query: str, filters: SearchFilters) -> list[ChatSession]: ...

    async def close(self) -> None: ...


@dataclass
class StoreContext:
    """Who is using the client and where their chats live.

    A ``None`` user id is guest mode. A ``None`` store keeps everything in memory.
    """

    user_id: str | None = None
    store: SessionStore | None = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None
