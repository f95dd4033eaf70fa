from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from tenacity import retry

from chat_stream_client.errors import NotFoundError, StorageError
from chat_stream_client.models import ChatSession, Message
from chat_stream_client.retry import default_retry_kwargs
from chat_stream_client.search import SearchFilters, matches_query
from chat_stream_client.storage.base import SESSION_FIELDS

_COLUMN_FOR_FIELD = {
    "title": "title",
    "is_favorite": "is_favorite",
    "selected_model": "model",
}

_RETRY_STATUSES = {429, 502, 503, 504}


class _RetryableStatusError(StorageError):
    pass


class RemoteSessionStore:
    """Sessions and messages kept in a hosted PostgREST-style database.

    Tables: ``chats`` (per user), ``messages`` (per chat) and ``documents``
    (used only to answer the has-attachments filter).
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json", "Prefer": "return=representation"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/rest/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._user_id = user_id
        self._send = retry(**default_retry_kwargs(
            (httpx.ConnectError, httpx.TimeoutException, _RetryableStatusError),
            attempts=max_attempts,
        ))(self._send_once)

    async def _send_once(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code in _RETRY_STATUSES:
            raise _RetryableStatusError(f"HTTP {response.status_code} from {method} {path}")
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        logger.debug(f"Remote store request: {method} {path}")
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPError as ex:
            raise StorageError(f"{method} {path} failed: {ex}") from ex

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: not found")
        if response.status_code >= 400:
            raise StorageError(f"HTTP {response.status_code} from {method} {path}: {response.text[:200]}")
        if not response.content:
            return None
        return response.json()

    async def _single(self, method: str, path: str, **kwargs: Any) -> dict:
        rows = await self._request(method, path, **kwargs)
        if isinstance(rows, list):
            if not rows:
                raise NotFoundError(f"{method} {path}: no rows returned")
            return rows[0]
        if not isinstance(rows, dict):
            raise StorageError(f"{method} {path}: unexpected response {rows!r}")
        return rows

    async def list_sessions(self) -> list[ChatSession]:
        rows = await self._request(
            "GET",
            "/chats",
            params={"select": "*", "user_id": f"eq.{self._user_id}", "order": "updated_at.desc"},
        )
        return [ChatSession.from_dict(row, messages_loaded=False) for row in rows or []]

    async def create_session(self, title: str, model: str) -> ChatSession:
        row = await self._single(
            "POST",
            "/chats",
            json={"user_id": self._user_id, "title": title, "model": model},
        )
        return ChatSession.from_dict({**row, "messages": []}, messages_loaded=True)

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> None:
        body = {_COLUMN_FOR_FIELD[k]: v for k, v in fields.items() if k in SESSION_FIELDS}
        if not body:
            return
        await self._single("PATCH", "/chats", params={"id": f"eq.{session_id}"}, json=body)

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", "/chats", params={"id": f"eq.{session_id}"})

    async def list_messages(self, session_id: str) -> list[Message]:
        rows = await self._request(
            "GET",
            "/messages",
            params={"select": "*", "chat_id": f"eq.{session_id}", "order": "timestamp.asc"},
        )
        return [Message.from_dict(row) for row in rows or []]

    async def create_message(self, session_id: str, message: Message) -> Message:
        row = await self._single(
            "POST",
            "/messages",
            json={
                "chat_id": session_id,
                "role": message.role.value,
                "content": message.content,
                "metadata": message.metadata,
            },
        )
        saved = Message.from_dict(row)
        if saved.responding_to_message_id is None:
            saved.responding_to_message_id = message.responding_to_message_id
        return saved

    async def update_message(
        self,
        session_id: str,
        message_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        body: dict[str, Any] = {"content": content}
        if metadata is not None:
            body["metadata"] = metadata
        row = await self._single("PATCH", "/messages", params={"id": f"eq.{message_id}"}, json=body)
        return Message.from_dict(row)

    async def delete_message(self, session_id: str, message_id: str) -> None:
        await self._request("DELETE", "/messages", params={"id": f"eq.{message_id}"})

    async def search_sessions(self, query: str, filters: SearchFilters) -> list[ChatSession]:
        params: list[tuple[str, str]] = [
            ("select", "*,messages(id,content,role,metadata)"),
            ("user_id", f"eq.{self._user_id}"),
            ("order", "updated_at.desc"),
        ]
        if filters.is_favorite is not None:
            params.append(("is_favorite", f"eq.{str(filters.is_favorite).lower()}"))
        if filters.date_range is not None:
            params.append(("created_at", f"gte.{filters.date_range.start.isoformat()}"))
            params.append(("created_at", f"lte.{filters.date_range.end.isoformat()}"))
        if filters.has_attachments is not None:
            chat_ids = await self._chat_ids_with_documents()
            id_list = ",".join(f'"{cid}"' for cid in chat_ids)
            if filters.has_attachments:
                if not chat_ids:
                    return []
                params.append(("id", f"in.({id_list})"))
            elif chat_ids:
                params.append(("id", f"not.in.({id_list})"))

        rows = await self._request("GET", "/chats", params=params)
        sessions: list[ChatSession] = []
        for row in rows or []:
            # Embedded messages are for matching only; history is still loaded lazily.
            candidate = ChatSession.from_dict(
                {**row, "messages": [{"timestamp": row.get("created_at"), **m} for m in row.get("messages") or []]},
                messages_loaded=True,
            )
            if not matches_query(candidate, query):
                continue
            if filters.has_messages is not None and bool(candidate.messages) != filters.has_messages:
                continue
            sessions.append(ChatSession.from_dict(row, messages_loaded=False))
        return sessions

    async def _chat_ids_with_documents(self) -> list[str]:
        rows = await self._request(
            "GET",
            "/documents",
            params={"select": "chat_id", "user_id": f"eq.{self._user_id}"},
        )
        return sorted({str(row["chat_id"]) for row in rows or [] if row.get("chat_id")})

    async def close(self) -> None:
        await self._client.aclose()
