from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator

from loguru import logger

DATA_PREFIX = "data: "


def _parse_line(line: str) -> dict | None:
    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):]
    if not data.strip():
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as ex:
        logger.warning(f"Skipping malformed stream event: {ex} ({data[:200]!r})")
        return None
    if not isinstance(payload, dict):
        logger.warning(f"Skipping non-object stream event: {data[:200]!r}")
        return None
    return payload


async def decode_sse(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[dict]:
    """Turn a chunked server-sent-event body into parsed ``data:`` payloads.

    Chunks may split lines (and multibyte characters) at any point. Only complete
    lines are parsed; a trailing partial line at end of stream is dropped.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for chunk in chunks:
        buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        *lines, buffer = buffer.split("\n")
        for line in lines:
            payload = _parse_line(line.rstrip("\r"))
            if payload is not None:
                yield payload

    buffer += decoder.decode(b"", final=True)
    if buffer:
        logger.debug(f"Discarding {len(buffer)} chars of incomplete stream data")
