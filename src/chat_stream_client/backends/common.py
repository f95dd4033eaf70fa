from __future__ import annotations

from chat_stream_client.models import Message, Role


def build_prompt(message: str, document_context: str | None) -> str:
    if not document_context:
        return message
    return f"Use the following document to answer.\n\n<document>\n{document_context}\n</document>\n\n{message}"


def history_to_messages(history: list[Message] | None) -> list[dict]:
    """Finished, non-empty turns as role/content dicts."""
    out: list[dict] = []
    for message in history or []:
        if message.is_streaming or not message.content.strip():
            continue
        out.append({"role": message.role.value, "content": message.content})
    # Provider APIs want the conversation to start with a user turn.
    while out and out[0]["role"] != Role.USER.value:
        out.pop(0)
    return out
