from __future__ import annotations

from datetime import date, datetime, timedelta

from chat_stream_client.models import DEFAULT_TITLE, ChatSession, Message, utc_now

TITLE_MAX_CHARS = 40

FAVORITES = "Favorites"
TODAY = "Today"
YESTERDAY = "Yesterday"
EARLIER = "Earlier"


def generate_chat_title(first_message: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    text = " ".join(first_message.split())
    if len(text) > max_chars:
        return text[:max_chars] + "..."
    return text or DEFAULT_TITLE


def format_timestamp(timestamp: datetime | None) -> str:
    value = timestamp or utc_now()
    return value.astimezone().strftime("%H:%M:%S")


def group_messages_by_date(messages: list[Message]) -> list[tuple[date, list[Message]]]:
    groups: list[tuple[date, list[Message]]] = []
    for message in messages:
        day = message.timestamp.astimezone().date()
        if groups and groups[-1][0] == day:
            groups[-1][1].append(message)
        else:
            groups.append((day, [message]))
    return groups


def group_sessions(sessions: list[ChatSession], *, today: date | None = None) -> dict[str, list[ChatSession]]:
    """Bucket sessions for a sidebar: favorites first, then by last update."""
    today = today or utc_now().astimezone().date()
    yesterday = today - timedelta(days=1)
    buckets: dict[str, list[ChatSession]] = {FAVORITES: [], TODAY: [], YESTERDAY: [], EARLIER: []}

    for session in sessions:
        if session.is_favorite:
            buckets[FAVORITES].append(session)
            continue
        updated = session.updated_at.astimezone().date()
        if updated == today:
            buckets[TODAY].append(session)
        elif updated == yesterday:
            buckets[YESTERDAY].append(session)
        else:
            buckets[EARLIER].append(session)

    return {name: items for name, items in buckets.items() if items}
