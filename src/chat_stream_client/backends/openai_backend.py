from __future__ import annotations

from collections.abc import AsyncIterator

import openai
from loguru import logger

from chat_stream_client.backends.common import build_prompt, history_to_messages
from chat_stream_client.errors import ChatTransportError
from chat_stream_client.models import Message
from chat_stream_client.streaming.accumulator import accumulate
from chat_stream_client.streaming.events import StreamEvent


class OpenAIChatBackend:
    def __init__(self, api_key: str, *, max_tokens: int = 4096, temperature: float = 1.0, system_prompt: str = ""):
        self._client = openai.AsyncOpenAI(api_key=api_key)
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
        messages: list[dict] = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.extend(history_to_messages(history))
        messages.append({"role": "user", "content": build_prompt(message, document_context)})
        logger.debug(f"API request: model={model}, max_tokens={self._max_tokens}, messages={len(messages)}")

        try:
            stream = await self._client.chat.completions.create(
                model=model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                messages=messages,
                stream=True,
            )
        except openai.APIError as ex:
            raise ChatTransportError(str(ex), status_code=getattr(ex, "status_code", None)) from ex

        async for event in accumulate(_payloads(stream)):
            yield event

    async def list_models(self) -> list[str]:
        page = await self._client.models.list()
        return [model.id for model in page.data]

    async def close(self) -> None:
        await self._client.close()


async def _payloads(stream) -> AsyncIterator[dict]:
    async for chunk in stream:
        choice = chunk.choices[0] if chunk.choices else None
        if choice is None:
            continue
        delta = choice.delta
        if delta is not None and delta.content:
            yield {"type": "token", "content": delta.content}
        if choice.finish_reason:
            yield {"type": "done"}
