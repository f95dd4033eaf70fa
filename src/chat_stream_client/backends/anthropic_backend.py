from __future__ import annotations

from collections.abc import AsyncIterator

import anthropic
from loguru import logger

from chat_stream_client.backends.common import build_prompt, history_to_messages
from chat_stream_client.errors import ChatTransportError
from chat_stream_client.models import Message
from chat_stream_client.streaming.accumulator import accumulate
from chat_stream_client.streaming.events import StreamEvent


class AnthropicChatBackend:
    def __init__(self, api_key: str, *, max_tokens: int = 4096, temperature: float = 1.0, system_prompt: str = ""):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._system_prompt = system_prompt

    async def stream_chat(
        self,
        message: str,
        model: str,
        document_context: str | None = None,
        *,
        history: list[Message] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        messages = history_to_messages(history)
        messages.append({"role": "user", "content": build_prompt(message, document_context)})
        logger.debug(f"API request: model={model}, max_tokens={self._max_tokens}, messages={len(messages)}")

        kwargs: dict = dict(
            model=model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            messages=messages,
        )
        if self._system_prompt:
            kwargs["system"] = self._system_prompt

        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for event in accumulate(_payloads(stream)):
                    yield event
        except anthropic.APIError as ex:
            raise ChatTransportError(str(ex), status_code=getattr(ex, "status_code", None)) from ex

    async def list_models(self) -> list[str]:
        page = await self._client.models.list()
        return [model.id for model in page.data]

    async def close(self) -> None:
        await self._client.close()


async def _payloads(stream) -> AsyncIterator[dict]:
    async for event in stream:
        if event.type == "content_block_delta" and event.delta.type == "text_delta":
            yield {"type": "token", "content": event.delta.text}
        elif event.type == "message_stop":
            yield {"type": "done"}
