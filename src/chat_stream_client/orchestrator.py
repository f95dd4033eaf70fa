from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from chat_stream_client.backend import ChatBackend
from chat_stream_client.errors import NotFoundError, SendInProgressError
from chat_stream_client.formatters import TITLE_MAX_CHARS, generate_chat_title
from chat_stream_client.models import Message, Role
from chat_stream_client.result import Result
from chat_stream_client.state.chat_state_store import ChatStateStore
from chat_stream_client.streaming.events import Done, StreamError, Token

FAILED_REQUEST_MARKER = "❌ Failed to get response from server"
STREAM_ERROR_MARKER = "\n\n❌ Error receiving response"
CANCELLED_MARKER = "\n\n⏹ Response cancelled"


class SendState(str, Enum):
    IDLE = "idle"
    SESSION_RESOLVED = "session_resolved"
    USER_MESSAGE_RECORDED = "user_message_recorded"
    ASSISTANT_PLACEHOLDER_CREATED = "assistant_placeholder_created"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SendOutcome:
    session_id: str
    user_message: Message
    assistant_message: Message
    state: SendState
    error: BaseException | None = None


class SendOrchestrator:
    """Runs one user turn: record the message, stream the reply into a placeholder.

    At most one send is in flight per session. A second send for the same session
    raises ``SendInProgressError``. ``cancel`` before the reply starts makes ``send``
    return None; after that the partial reply is finalized with a marker.
    """

    def __init__(
        self,
        store: ChatStateStore,
        backend: ChatBackend,
        *,
        default_model: str = "",
        title_max_chars: int = TITLE_MAX_CHARS,
    ):
        self._store = store
        self._backend = backend
        self._default_model = default_model
        self._title_max_chars = title_max_chars
        self._in_flight: dict[str, asyncio.Task] = {}
        self._cancel_requested: set[str] = set()
        self._states: dict[str, SendState] = {}
        self._background: set[asyncio.Task] = set()

    def is_sending(self, session_id: str) -> bool:
        return session_id in self._in_flight

    def state(self, session_id: str) -> SendState:
        return self._states.get(session_id, SendState.IDLE)

    def _set_state(self, session_id: str, state: SendState) -> None:
        self._states[session_id] = state
        logger.debug(f"Send {session_id}: {state.value}")

    async def send(
        self,
        text: str,
        *,
        session_id: str | None = None,
        model: str | None = None,
        document_context: str | None = None,
        metadata: dict[str, Any] | None = None,
        on_token: Callable[[str], None] | None = None,
    ) -> SendOutcome | None:
        if not text or not text.strip():
            return None

        session_id = session_id or self._store.active_session_id
        if session_id is not None:
            if session_id in self._in_flight:
                raise SendInProgressError(session_id)
            if self._store.get_session(session_id) is None:
                raise NotFoundError(f"Session does not exist: {session_id}")
        else:
            created = await self._store.create_session(model=model or self._default_model)
            if not created.ok:
                logger.warning(f"Error creating chat, continuing with local session: {created.error}")
            session_id = created.value.id

        task = asyncio.current_task()
        if task is not None:
            self._in_flight[session_id] = task
        try:
            return await self._run(session_id, text, model, document_context, metadata, on_token)
        except asyncio.CancelledError:
            # Cancelled before the stream started; there is no reply to finalize.
            if session_id not in self._cancel_requested:
                raise
            task.uncancel()
            self._set_state(session_id, SendState.CANCELLED)
            logger.info(f"Send {session_id} cancelled before the reply started")
            return None
        finally:
            self._in_flight.pop(session_id, None)
            self._cancel_requested.discard(session_id)
            if self._store.get_session(session_id) is None:
                self._states.pop(session_id, None)

    async def _run(
        self,
        session_id: str,
        text: str,
        model: str | None,
        document_context: str | None,
        metadata: dict[str, Any] | None,
        on_token: Callable[[str], None] | None,
    ) -> SendOutcome:
        self._set_state(session_id, SendState.SESSION_RESOLVED)
        session = self._store.get_session(session_id)
        model = model or session.selected_model or self._default_model
        is_first_message = session.is_empty
        history = list(session.messages)

        recorded = await self._store.append_message(session_id, Message.user(text, metadata=metadata))
        if self._store.get_session(session_id) is None:
            raise NotFoundError(f"Session was deleted: {session_id}")
        if not recorded.ok:
            logger.error(f"Error saving user message, keeping local copy: {recorded.error}")
        user_message = recorded.value
        self._set_state(session_id, SendState.USER_MESSAGE_RECORDED)

        if is_first_message:
            titled = await self._store.update_session_fields(
                session_id, title=generate_chat_title(text, self._title_max_chars)
            )
            if not titled.ok:
                logger.warning(f"Error updating chat title: {titled.error}")

        placeholder = Message.assistant_placeholder(user_message.id)
        appended = await self._store.append_message(session_id, placeholder, persist=False)
        if not appended.ok:
            raise appended.error
        self._set_state(session_id, SendState.ASSISTANT_PLACEHOLDER_CREATED)

        return await self._stream(
            session_id,
            user_message,
            placeholder.id,
            model,
            document_context,
            history,
            on_token,
        )

    async def _stream(
        self,
        session_id: str,
        user_message: Message,
        assistant_id: str,
        model: str,
        document_context: str | None,
        history: list[Message],
        on_token: Callable[[str], None] | None,
    ) -> SendOutcome:
        content = ""
        received_any = False
        self._set_state(session_id, SendState.STREAMING)

        def finish(state: SendState, final_content: str, error: BaseException | None = None) -> SendOutcome:
            patched = self._store.patch_message(session_id, assistant_id, content=final_content, is_streaming=False)
            self._set_state(session_id, state)
            assistant = patched.value or Message(
                id=assistant_id,
                role=Role.ASSISTANT,
                content=final_content,
                responding_to_message_id=user_message.id,
            )
            return SendOutcome(session_id, user_message, assistant, state, error)

        try:
            stream = self._backend.stream_chat(user_message.content, model, document_context, history=history)
            async with aclosing(stream):
                async for event in stream:
                    received_any = True
                    if isinstance(event, Token):
                        content += event.content
                        patched = self._store.patch_message(session_id, assistant_id, content=content)
                        if not patched.ok:
                            logger.info(f"Chat {session_id} is gone, dropping the rest of the stream")
                            return finish(SendState.CANCELLED, content, patched.error)
                        if on_token is not None:
                            on_token(event.content)
                    elif isinstance(event, Done):
                        outcome = finish(SendState.COMPLETED, content)
                        self._schedule_persist(session_id, outcome.assistant_message.id)
                        return outcome
                    elif isinstance(event, StreamError):
                        return finish(SendState.FAILED, content + STREAM_ERROR_MARKER, event.error)
        except asyncio.CancelledError as ex:
            outcome = finish(SendState.CANCELLED, content + CANCELLED_MARKER, ex)
            if session_id not in self._cancel_requested:
                raise
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
            return outcome
        except Exception as ex:
            logger.error(f"Error getting response: {ex}")
            if received_any:
                return finish(SendState.FAILED, content + STREAM_ERROR_MARKER, ex)
            return finish(SendState.FAILED, FAILED_REQUEST_MARKER, ex)

        # Only reachable if a backend ends its stream without a terminal event.
        return finish(SendState.COMPLETED, content)

    def _schedule_persist(self, session_id: str, message_id: str) -> None:
        message = self._store.get_session(session_id).find_message(message_id)
        if message is None or not message.content:
            return
        task = asyncio.create_task(self._persist(session_id, message_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _persist(self, session_id: str, message_id: str) -> None:
        result = await self._store.persist_message(session_id, message_id)
        if result.ok:
            logger.debug(f"Assistant message saved: {result.value.id}")
        else:
            logger.error(f"Error saving assistant message: {result.error}")

    async def edit_and_resend(
        self,
        session_id: str,
        message_id: str,
        new_text: str,
        **send_kwargs: Any,
    ) -> SendOutcome | None:
        """Replace a user message (and the reply right after it) with a new send."""
        if session_id in self._in_flight:
            raise SendInProgressError(session_id)
        session = self._store.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session does not exist: {session_id}")
        message = session.find_message(message_id)
        if message is None:
            raise NotFoundError(f"Message does not exist: {message_id}")
        if message.role is not Role.USER:
            raise ValueError("Only user messages can be edited and resent")

        index = session.messages.index(message)
        reply = session.messages[index + 1] if index + 1 < len(session.messages) else None
        to_delete = [message.id]
        if reply is not None and reply.role is Role.ASSISTANT:
            to_delete.append(reply.id)

        for target_id in to_delete:
            deleted = await self._store.delete_message(session_id, target_id)
            if not deleted.ok:
                logger.error(f"Error deleting message {target_id} before resend: {deleted.error}")

        return await self.send(new_text, session_id=session_id, **send_kwargs)

    async def resend(self, session_id: str, message_id: str, **send_kwargs: Any) -> SendOutcome | None:
        session = self._store.get_session(session_id)
        message = session.find_message(message_id) if session is not None else None
        if message is None:
            raise NotFoundError(f"Message does not exist: {message_id}")
        return await self.send(message.content, session_id=session_id, **send_kwargs)

    def cancel(self, session_id: str) -> bool:
        """Abort the in-flight send for a session; False when nothing is running."""
        task = self._in_flight.get(session_id)
        if task is None or task.done():
            return False
        self._cancel_requested.add(session_id)
        task.cancel()
        return True

    async def delete_session(self, session_id: str) -> Result[None]:
        self.cancel(session_id)
        result = await self._store.delete_session(session_id)
        if self._store.get_session(session_id) is None:
            self._states.pop(session_id, None)
        return result

    async def drain(self) -> None:
        """Wait for background saves to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
