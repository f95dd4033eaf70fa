from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_stream_client.models import ChatSession


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def contains(self, value: datetime) -> bool:
        return self.start <= value <= self.end


@dataclass(frozen=True)
class SearchFilters:
    """Session filters. ``None`` means the filter is not applied."""

    is_favorite: bool | None = None
    date_range: DateRange | None = None
    has_messages: bool | None = None
    has_attachments: bool | None = None

    @property
    def active(self) -> bool:
        return any(
            value is not None
            for value in (self.is_favorite, self.date_range, self.has_messages, self.has_attachments)
        )


def matches_query(session: ChatSession, query: str) -> bool:
    """Title match, or content match over whatever history is in memory."""
    needle = query.strip().lower()
    if not needle:
        return True
    if needle in session.title.lower():
        return True
    return any(needle in message.content.lower() for message in session.messages)


def matches_filters(session: ChatSession, filters: SearchFilters) -> bool:
    if filters.is_favorite is not None and session.is_favorite != filters.is_favorite:
        return False
    if filters.date_range is not None and not filters.date_range.contains(session.created_at):
        return False
    if (filters.has_messages is not None or filters.has_attachments is not None) and not session.messages_loaded:
        # History not fetched yet is unknown, not empty.
        return False
    if filters.has_messages is not None and bool(session.messages) != filters.has_messages:
        return False
    if filters.has_attachments is not None:
        has_attachments = any(m.has_attachment for m in session.messages)
        if has_attachments != filters.has_attachments:
            return False
    return True


def filter_sessions(
    sessions: list[ChatSession],
    query: str = "",
    filters: SearchFilters | None = None,
) -> list[ChatSession]:
    """In-memory search, most recently updated first."""
    filters = filters or SearchFilters()
    matched = [s for s in sessions if matches_query(s, query) and matches_filters(s, filters)]
    return sorted(matched, key=lambda s: s.updated_at, reverse=True)
