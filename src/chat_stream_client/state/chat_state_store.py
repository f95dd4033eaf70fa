from __future__ import annotations

from datetime import timedelta
from typing import Any

from loguru import logger

from chat_stream_client.errors import BulkDeleteError, NotFoundError, SendInProgressError
from chat_stream_client.models import DEFAULT_TITLE, ChatSession, Message, MessagesState, is_local_id, new_local_id
from chat_stream_client.result import Err, Ok, Result
from chat_stream_client.search import SearchFilters, filter_sessions
from chat_stream_client.state.dedupe import DEFAULT_TOLERANCE, merge_message
from chat_stream_client.storage.base import SESSION_FIELDS, StoreContext

UNTITLED = "Untitled Chat"

_MESSAGE_PATCH_FIELDS = ("content", "is_streaming", "metadata")


class ChatStateStore:
    """The canonical in-memory list of sessions, kept in step with a session store.

    Every operation tries the backing store first and then applies the change in
    memory in one synchronous step. When the store fails, the memory change is
    still applied where that makes sense and the failure comes back as ``Err``
    carrying the locally applied value.
    """

    def __init__(
        self,
        context: StoreContext,
        *,
        default_model: str = "",
        duplicate_tolerance: timedelta = DEFAULT_TOLERANCE,
    ):
        self._context = context
        self._backend = context.store
        self._default_model = default_model
        self._tolerance = duplicate_tolerance
        self.sessions: list[ChatSession] = []
        self.active_session_id: str | None = None
        self.error: Exception | None = None

    @property
    def context(self) -> StoreContext:
        return self._context

    @property
    def active_session(self) -> ChatSession | None:
        if self.active_session_id is None:
            return None
        return self.get_session(self.active_session_id)

    def get_session(self, session_id: str) -> ChatSession | None:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    def set_active(self, session_id: str | None) -> None:
        if session_id is not None and self.get_session(session_id) is None:
            raise NotFoundError(f"Session does not exist: {session_id}")
        self.active_session_id = session_id

    async def load_sessions(self) -> Result[list[ChatSession]]:
        if self._backend is None:
            return Ok(list(self.sessions))
        try:
            sessions = await self._backend.list_sessions()
        except Exception as ex:
            self.error = ex
            self.sessions = []
            self.active_session_id = None
            return Err(ex, [])

        self.error = None
        self.sessions = list(sessions)
        if self.active_session_id is not None and self.get_session(self.active_session_id) is None:
            self.active_session_id = None
        return Ok(list(self.sessions))

    async def create_session(self, title: str = DEFAULT_TITLE, model: str | None = None) -> Result[ChatSession]:
        model = model or self._default_model
        session: ChatSession | None = None
        error: Exception | None = None
        if self._backend is not None:
            try:
                session = await self._backend.create_session(title, model)
            except Exception as ex:
                error = ex

        if session is None:
            session = ChatSession(id=new_local_id(), title=title, selected_model=model)
        session.selected_model = session.selected_model or model
        session.messages_state = MessagesState.LOADED

        if self.get_session(session.id) is None:
            self.sessions.insert(0, session)
        self.active_session_id = session.id
        if error is not None:
            return Err(error, session)
        return Ok(session)

    async def delete_session(self, session_id: str) -> Result[None]:
        error: Exception | None = None
        if self._backend is not None:
            try:
                await self._backend.delete_session(session_id)
            except Exception as ex:
                error = ex

        session = self.get_session(session_id)
        if session is None and error is None and self._backend is None:
            error = NotFoundError(f"Session does not exist: {session_id}")
        if session is not None:
            self.sessions.remove(session)
        if self.active_session_id == session_id:
            self.active_session_id = self.sessions[0].id if self.sessions else None

        if error is not None:
            return Err(error, None)
        return Ok(None)

    async def delete_sessions(self, session_ids: list[str]) -> Result[list[str]]:
        """Delete several sessions; one failure does not stop the batch."""
        deleted: list[str] = []
        failures: dict[str, Exception] = {}
        for session_id in session_ids:
            result = await self.delete_session(session_id)
            if result.ok:
                deleted.append(session_id)
            else:
                failures[session_id] = result.error
        if failures:
            return Err(BulkDeleteError(failures), deleted)
        return Ok(deleted)

    async def update_session_fields(self, session_id: str, **fields: Any) -> Result[ChatSession]:
        unknown = set(fields) - set(SESSION_FIELDS)
        if unknown:
            raise ValueError(f"Unknown session fields: {', '.join(sorted(unknown))}")
        if self.get_session(session_id) is None:
            return Err(NotFoundError(f"Session does not exist: {session_id}"))

        error: Exception | None = None
        if self._backend is not None:
            try:
                await self._backend.update_session(session_id, fields)
            except Exception as ex:
                error = ex

        session = self.get_session(session_id)
        if session is None:
            return Err(NotFoundError(f"Session was deleted: {session_id}"))
        for name, value in fields.items():
            setattr(session, name, value)
        session.touch()
        if error is not None:
            return Err(error, session)
        return Ok(session)

    async def toggle_favorite(self, session_id: str) -> Result[ChatSession]:
        session = self.get_session(session_id)
        if session is None:
            return Err(NotFoundError(f"Session does not exist: {session_id}"))
        return await self.update_session_fields(session_id, is_favorite=not session.is_favorite)

    async def rename_session(self, session_id: str, title: str) -> Result[ChatSession]:
        return await self.update_session_fields(session_id, title=title.strip() or UNTITLED)

    async def append_message(self, session_id: str, message: Message, *, persist: bool = True) -> Result[Message]:
        """Append ``message``; when persisted, the stored id and timestamp win."""
        session = self.get_session(session_id)
        if session is None:
            return Err(NotFoundError(f"Session does not exist: {session_id}"))
        if message.is_streaming and session.streaming_message is not None:
            return Err(SendInProgressError(session_id))

        stored = message
        error: Exception | None = None
        if persist and self._backend is not None:
            try:
                saved = await self._backend.create_message(session_id, message)
            except Exception as ex:
                error = ex
            else:
                stored = Message(
                    id=saved.id,
                    role=message.role,
                    content=message.content,
                    timestamp=saved.timestamp,
                    is_streaming=message.is_streaming,
                    metadata={**message.metadata, **saved.metadata},
                    responding_to_message_id=message.responding_to_message_id,
                )

        session = self.get_session(session_id)
        if session is None:
            return Err(NotFoundError(f"Session was deleted: {session_id}"), stored)
        session.messages.append(stored)
        session.touch()
        if error is not None:
            return Err(error, stored)
        return Ok(stored)

    def patch_message(self, session_id: str, message_id: str, **fields: Any) -> Result[Message]:
        """Apply a partial update to one message in memory only."""
        unknown = set(fields) - set(_MESSAGE_PATCH_FIELDS)
        if unknown:
            raise ValueError(f"Unknown message fields: {', '.join(sorted(unknown))}")
        session = self.get_session(session_id)
        if session is None:
            return Err(NotFoundError(f"Session does not exist: {session_id}"))
        message = session.find_message(message_id)
        if message is None:
            return Err(NotFoundError(f"Message does not exist: {message_id}"))
        for name, value in fields.items():
            setattr(message, name, value)
        session.touch()
        return Ok(message)

    async def update_message_content(self, session_id: str, message_id: str, content: str) -> Result[Message]:
        session = self.get_session(session_id)
        if session is None or session.find_message(message_id) is None:
            return Err(NotFoundError(f"Message does not exist: {message_id}"))

        error: Exception | None = None
        if self._backend is not None:
            try:
                await self._backend.update_message(session_id, message_id, content)
            except Exception as ex:
                error = ex

        result = self.patch_message(session_id, message_id, content=content)
        if error is not None:
            return Err(error, result.value)
        return result

    async def delete_message(self, session_id: str, message_id: str) -> Result[None]:
        session = self.get_session(session_id)
        if session is None or session.find_message(message_id) is None:
            return Err(NotFoundError(f"Message does not exist: {message_id}"))

        error: Exception | None = None
        if self._backend is not None:
            try:
                await self._backend.delete_message(session_id, message_id)
            except Exception as ex:
                error = ex

        session = self.get_session(session_id)
        message = session.find_message(message_id) if session is not None else None
        if session is not None and message is not None:
            session.messages.remove(message)
            session.touch()
        if error is not None:
            return Err(error, None)
        return Ok(None)

    async def load_messages(self, session_id: str) -> Result[list[Message]]:
        """Fetch a session's history on demand.

        On failure the session goes back to ``UNLOADED`` so a later call can retry.
        """
        session = self.get_session(session_id)
        if session is None:
            return Err(NotFoundError(f"Session does not exist: {session_id}"), [])
        if self._backend is None:
            session.messages_state = MessagesState.LOADED
            return Ok(list(session.messages))

        session.messages_state = MessagesState.LOADING
        try:
            fetched = await self._backend.list_messages(session_id)
        except Exception as ex:
            self.error = ex
            session = self.get_session(session_id)
            if session is not None:
                session.messages_state = MessagesState.UNLOADED
            return Err(ex, [])

        session = self.get_session(session_id)
        if session is None:
            return Err(NotFoundError(f"Session was deleted: {session_id}"), [])

        # Keep anything added locally while the fetch was in flight.
        merged = list(fetched)
        known = {m.id for m in merged}
        for message in session.messages:
            if message.id not in known:
                merge_message(merged, message, self._tolerance)
        session.messages = merged
        session.messages_state = MessagesState.LOADED
        return Ok(list(merged))

    def merge_remote_message(self, session_id: str, message: Message) -> bool:
        """Merge an authoritative message; returns False when it was a duplicate."""
        session = self.get_session(session_id)
        if session is None:
            return False
        if merge_message(session.messages, message, self._tolerance) is not None:
            return False
        session.touch()
        return True

    async def persist_message(self, session_id: str, message_id: str) -> Result[Message]:
        """Save a finalized in-memory message to the backing store."""
        session = self.get_session(session_id)
        message = session.find_message(message_id) if session is not None else None
        if message is None:
            return Err(NotFoundError(f"Message does not exist: {message_id}"))
        if self._backend is None:
            return Ok(message)

        try:
            saved = await self._backend.create_message(session_id, message)
        except Exception as ex:
            return Err(ex, message)

        session = self.get_session(session_id)
        local = session.find_message(message_id) if session is not None else None
        if local is None:
            logger.debug(f"Message {message_id} was removed before its save completed")
            return Ok(saved)
        if is_local_id(local.id) and not is_local_id(saved.id):
            local.id = saved.id
        return Ok(saved)

    async def search(self, query: str = "", filters: SearchFilters | None = None) -> Result[list[ChatSession]]:
        filters = filters or SearchFilters()
        if self._backend is None:
            return Ok(filter_sessions(self.sessions, query, filters))
        try:
            return Ok(await self._backend.search_sessions(query, filters))
        except Exception as ex:
            await self._load_for_local_search(query, filters)
            return Err(ex, filter_sessions(self.sessions, query, filters))

    async def _load_for_local_search(self, query: str, filters: SearchFilters) -> None:
        """Fetch unloaded histories so the in-memory search can see their content.

        Sessions that still cannot be loaded only match on their title and are left
        out of ``has_messages``/``has_attachments`` results.
        """
        if not query.strip() and filters.has_messages is None and filters.has_attachments is None:
            return
        for session in list(self.sessions):
            if session.messages_state is not MessagesState.UNLOADED:
                continue
            loaded = await self.load_messages(session.id)
            if not loaded.ok:
                logger.warning(f"Search skipped message history of unloaded chats: {loaded.error}")
                return
