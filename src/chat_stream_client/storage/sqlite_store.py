from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from chat_stream_client.errors import NotFoundError
from chat_stream_client.models import ChatSession, Message, MessagesState, Role, parse_timestamp, utc_now
from chat_stream_client.search import SearchFilters
from chat_stream_client.storage.base import SESSION_FIELDS
from chat_stream_client.storage.database import Database

_COLUMN_FOR_FIELD = {
    "title": "title",
    "is_favorite": "is_favorite",
    "selected_model": "model",
}


def _iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds")


def _now() -> str:
    return _iso(utc_now())


class SqliteSessionStore:
    """Durable per-user store backed by a local SQLite file."""

    def __init__(self, db: Database, user_id: str):
        self._db = db
        self._user_id = user_id

    async def list_sessions(self) -> list[ChatSession]:
        rows = self._db.execute(
            """
            SELECT id, title, is_favorite, model, created_at, updated_at
            FROM sessions
            WHERE user_id = ?
            ORDER BY updated_at DESC, created_at DESC
            """,
            (self._user_id,),
        ).fetchall()
        return [self._to_session(row) for row in rows]

    async def create_session(self, title: str, model: str) -> ChatSession:
        sid = str(uuid4())
        now = _now()
        self._db.execute(
            """
            INSERT INTO sessions (id, user_id, title, is_favorite, model, created_at, updated_at)
            VALUES (?, ?, ?, 0, ?, ?, ?)
            """,
            (sid, self._user_id, title, model, now, now),
        )
        self._db.commit()
        session = self._to_session(self._session_row(sid))
        session.messages_state = MessagesState.LOADED
        return session

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> None:
        self._session_row(session_id)
        assignments: list[str] = []
        params: list[Any] = []
        for name, value in fields.items():
            if name not in SESSION_FIELDS:
                continue
            assignments.append(f"{_COLUMN_FOR_FIELD[name]} = ?")
            params.append(int(bool(value)) if name == "is_favorite" else value)
        assignments.append("updated_at = ?")
        params.append(_now())
        params.append(session_id)
        self._db.execute(f"UPDATE sessions SET {', '.join(assignments)} WHERE id = ?", tuple(params))
        self._db.commit()

    async def delete_session(self, session_id: str) -> None:
        cursor = self._db.execute(
            "DELETE FROM sessions WHERE id = ? AND user_id = ?",
            (session_id, self._user_id),
        )
        self._db.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Session does not exist: {session_id}")

    async def list_messages(self, session_id: str) -> list[Message]:
        self._session_row(session_id)
        rows = self._db.execute(
            """
            SELECT id, role, content, metadata_json, responding_to_message_id, created_at
            FROM messages
            WHERE session_id = ?
            ORDER BY seq ASC
            """,
            (session_id,),
        ).fetchall()
        return [self._to_message(row) for row in rows]

    async def create_message(self, session_id: str, message: Message) -> Message:
        self._session_row(session_id)
        row = self._db.execute(
            "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        next_seq = int(row["max_seq"]) + 1
        message_id = str(uuid4())
        now = _now()
        with self._db.transaction():
            self._db.execute(
                """
                INSERT INTO messages
                    (id, session_id, seq, role, content, metadata_json, responding_to_message_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    session_id,
                    next_seq,
                    message.role.value,
                    message.content,
                    json.dumps(message.metadata, ensure_ascii=True),
                    message.responding_to_message_id,
                    now,
                ),
            )
            self._db.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (now, session_id))
        return self._to_message(self._message_row(message_id))

    async def update_message(
        self,
        session_id: str,
        message_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        existing = self._message_row(message_id)
        metadata_json = existing["metadata_json"] if metadata is None else json.dumps(metadata, ensure_ascii=True)
        with self._db.transaction():
            self._db.execute(
                "UPDATE messages SET content = ?, metadata_json = ? WHERE id = ?",
                (content, metadata_json, message_id),
            )
            self._db.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (_now(), session_id))
        return self._to_message(self._message_row(message_id))

    async def delete_message(self, session_id: str, message_id: str) -> None:
        with self._db.transaction():
            cursor = self._db.execute(
                "DELETE FROM messages WHERE id = ? AND session_id = ?",
                (message_id, session_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Message does not exist: {message_id}")
            self._db.execute("UPDATE sessions SET updated_at = ? WHERE id = ?", (_now(), session_id))

    async def search_sessions(self, query: str, filters: SearchFilters) -> list[ChatSession]:
        clauses = ["s.user_id = ?"]
        params: list[Any] = [self._user_id]

        needle = query.strip().lower()
        if needle:
            clauses.append(
                """
                (LOWER(s.title) LIKE ? OR EXISTS (
                    SELECT 1 FROM messages m WHERE m.session_id = s.id AND LOWER(m.content) LIKE ?
                ))
                """
            )
            pattern = f"%{needle}%"
            params.extend([pattern, pattern])

        if filters.is_favorite is not None:
            clauses.append("s.is_favorite = ?")
            params.append(int(filters.is_favorite))

        if filters.date_range is not None:
            clauses.append("s.created_at >= ? AND s.created_at <= ?")
            params.append(_iso(filters.date_range.start))
            params.append(_iso(filters.date_range.end))

        if filters.has_messages is not None:
            exists = "EXISTS (SELECT 1 FROM messages m WHERE m.session_id = s.id)"
            clauses.append(exists if filters.has_messages else f"NOT {exists}")

        if filters.has_attachments is not None:
            exists = (
                "EXISTS (SELECT 1 FROM messages m WHERE m.session_id = s.id "
                "AND json_extract(m.metadata_json, '$.document_id') IS NOT NULL)"
            )
            clauses.append(exists if filters.has_attachments else f"NOT {exists}")

        rows = self._db.execute(
            f"""
            SELECT s.id, s.title, s.is_favorite, s.model, s.created_at, s.updated_at
            FROM sessions s
            WHERE {' AND '.join(clauses)}
            ORDER BY s.updated_at DESC
            """,
            tuple(params),
        ).fetchall()
        return [self._to_session(row) for row in rows]

    async def close(self) -> None:
        self._db.close()

    def _session_row(self, session_id: str) -> sqlite3.Row:
        row = self._db.execute(
            "SELECT * FROM sessions WHERE id = ? AND user_id = ? LIMIT 1",
            (session_id, self._user_id),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Session does not exist: {session_id}")
        return row

    def _message_row(self, message_id: str) -> sqlite3.Row:
        row = self._db.execute(
            """
            SELECT id, role, content, metadata_json, responding_to_message_id, created_at
            FROM messages WHERE id = ? LIMIT 1
            """,
            (message_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Message does not exist: {message_id}")
        return row

    def _to_session(self, row: sqlite3.Row) -> ChatSession:
        return ChatSession(
            id=row["id"],
            title=row["title"],
            is_favorite=bool(row["is_favorite"]),
            selected_model=row["model"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            messages_state=MessagesState.UNLOADED,
        )

    def _to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            role=Role(row["role"]),
            content=row["content"],
            timestamp=parse_timestamp(row["created_at"]),
            metadata=self._parse_metadata(row["metadata_json"]),
            responding_to_message_id=row["responding_to_message_id"],
        )

    def _parse_metadata(self, metadata_json: str) -> dict:
        try:
            parsed = json.loads(metadata_json)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
        return {}
