from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from chat_stream_client.errors import NotFoundError, StorageError
from chat_stream_client.models import ChatSession, Message, new_local_id, utc_now
from chat_stream_client.search import SearchFilters, filter_sessions
from chat_stream_client.storage.base import SESSION_FIELDS

STORAGE_KEY = "chat-stream-client-chats"


class LocalBlobStore:
    """Guest-mode store: the whole session list is one JSON blob.

    The blob is read once on construction and rewritten in full after every
    mutation. With ``path=None`` nothing touches the disk.
    """

    def __init__(self, path: str | None = None, *, key: str = STORAGE_KEY):
        self._path = Path(path) if path else None
        self._key = key
        self._sessions: list[ChatSession] = self._read()

    def _read(self) -> list[ChatSession]:
        if self._path is None or not self._path.exists():
            return []
        try:
            with open(self._path, encoding="utf-8") as f:
                blob = json.load(f)
        except (OSError, json.JSONDecodeError) as ex:
            logger.error(f"Error loading {self._key} from {self._path}: {ex}")
            return []
        raw = blob.get(self._key, []) if isinstance(blob, dict) else blob
        sessions: list[ChatSession] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                sessions.append(ChatSession.from_dict(item, messages_loaded=True))
            except (KeyError, TypeError, ValueError) as ex:
                logger.warning(f"Skipping unreadable stored session: {ex}")
        return sessions

    def _write(self) -> None:
        if self._path is None:
            return
        blob = {self._key: [s.to_dict() for s in self._sessions]}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(blob, f, ensure_ascii=False, indent=2)
            tmp_path.replace(self._path)
        except OSError as ex:
            raise StorageError(f"Error saving {self._key} to {self._path}: {ex}") from ex

    def _session(self, session_id: str) -> ChatSession:
        for session in self._sessions:
            if session.id == session_id:
                return session
        raise NotFoundError(f"Session does not exist: {session_id}")

    async def list_sessions(self) -> list[ChatSession]:
        return [ChatSession.from_dict(s.to_dict(), messages_loaded=True) for s in self._sessions]

    async def create_session(self, title: str, model: str) -> ChatSession:
        session = ChatSession(id=new_local_id(), title=title, selected_model=model)
        self._sessions.insert(0, session)
        self._write()
        return ChatSession.from_dict(session.to_dict(), messages_loaded=True)

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> None:
        session = self._session(session_id)
        for name, value in fields.items():
            if name in SESSION_FIELDS:
                setattr(session, name, value)
        session.touch()
        self._write()

    async def delete_session(self, session_id: str) -> None:
        session = self._session(session_id)
        self._sessions.remove(session)
        self._write()

    async def list_messages(self, session_id: str) -> list[Message]:
        return [Message.from_dict(m.to_dict()) for m in self._session(session_id).messages]

    async def create_message(self, session_id: str, message: Message) -> Message:
        session = self._session(session_id)
        stored = Message.from_dict(message.to_dict())
        stored.is_streaming = False
        session.messages.append(stored)
        session.touch()
        self._write()
        return Message.from_dict(stored.to_dict())

    async def update_message(
        self,
        session_id: str,
        message_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        session = self._session(session_id)
        message = session.find_message(message_id)
        if message is None:
            raise NotFoundError(f"Message does not exist: {message_id}")
        message.content = content
        if metadata is not None:
            message.metadata = dict(metadata)
        session.updated_at = utc_now()
        self._write()
        return Message.from_dict(message.to_dict())

    async def delete_message(self, session_id: str, message_id: str) -> None:
        session = self._session(session_id)
        message = session.find_message(message_id)
        if message is None:
            raise NotFoundError(f"Message does not exist: {message_id}")
        session.messages.remove(message)
        session.touch()
        self._write()

    async def search_sessions(self, query: str, filters: SearchFilters) -> list[ChatSession]:
        return filter_sessions(await self.list_sessions(), query, filters)

    async def close(self) -> None:
        return
