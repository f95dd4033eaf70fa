from __future__ import annotations

from datetime import timedelta

from loguru import logger

from chat_stream_client.models import Message, is_local_id

DEFAULT_TOLERANCE = timedelta(seconds=10)


def is_duplicate(existing: Message, incoming: Message, tolerance: timedelta = DEFAULT_TOLERANCE) -> bool:
    """Heuristic identity: same role, same content, close in time. Ids are ignored."""
    if existing.role != incoming.role or existing.content != incoming.content:
        return False
    return abs(existing.timestamp - incoming.timestamp) < tolerance


def merge_message(
    messages: list[Message],
    incoming: Message,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> Message | None:
    """Append ``incoming`` unless a local copy of it is already present.

    Returns the local copy when the incoming message was dropped, else None.
    A local copy still holding a provisional id takes over the incoming id.
    """
    for existing in messages:
        if is_duplicate(existing, incoming, tolerance):
            logger.debug(f"Message {incoming.id} already present as {existing.id}, skipping duplicate")
            if is_local_id(existing.id) and not is_local_id(incoming.id):
                _adopt_id(messages, existing, incoming.id)
            return existing
    messages.append(incoming)
    return None


def _adopt_id(messages: list[Message], message: Message, new_id: str) -> None:
    old_id = message.id
    message.id = new_id
    for other in messages:
        if other.responding_to_message_id == old_id:
            other.responding_to_message_id = new_id
