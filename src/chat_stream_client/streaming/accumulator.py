from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Literal

from loguru import logger

from chat_stream_client.streaming.events import Done, StreamError, StreamEvent, Token

Outcome = Literal["pending", "completed", "failed"]


async def accumulate(payloads: AsyncIterable[dict]) -> AsyncIterator[StreamEvent]:
    """Interpret decoded stream payloads as token/done events.

    Yields ``Token`` per fragment, then exactly one terminal event: ``Done`` when
    the server says so (or the body ends without saying so) or ``StreamError``
    when reading the transport fails.
    """
    try:
        async for payload in payloads:
            event_type = payload.get("type")
            if event_type == "token":
                content = payload.get("content")
                if not isinstance(content, str):
                    logger.warning(f"Skipping token event without string content: {payload!r}")
                    continue
                yield Token(content)
            elif event_type == "done":
                yield Done()
                return
            else:
                logger.debug(f"Ignoring stream event of type {event_type!r}")
    except Exception as ex:
        logger.error(f"Error reading stream: {ex}")
        yield StreamError(ex)
        return

    logger.warning("Stream ended without a done event; treating as complete")
    yield Done(implicit=True)


class TokenAccumulator:
    """Callback adapter over a ``StreamEvent`` iterator.

    Keeps the concatenated content and guarantees that ``on_complete`` and
    ``on_error`` fire at most once and never both.
    """

    def __init__(self, events: AsyncIterable[StreamEvent]):
        self._events = events
        self._parts: list[str] = []
        self._outcome: Outcome = "pending"

    @property
    def content(self) -> str:
        return "".join(self._parts)

    @property
    def outcome(self) -> Outcome:
        return self._outcome

    async def run(
        self,
        on_token: Callable[[str], None],
        on_complete: Callable[[], None],
        on_error: Callable[[BaseException], None],
    ) -> Outcome:
        if self._outcome != "pending":
            return self._outcome

        async for event in self._events:
            if isinstance(event, Token):
                self._parts.append(event.content)
                on_token(event.content)
            elif isinstance(event, Done):
                self._outcome = "completed"
                on_complete()
                break
            elif isinstance(event, StreamError):
                self._outcome = "failed"
                on_error(event.error)
                break
        return self._outcome
