from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
from loguru import logger
from tenacity import retry

from chat_stream_client.errors import ChatTransportError
from chat_stream_client.models import Message
from chat_stream_client.retry import default_retry_kwargs
from chat_stream_client.streaming.accumulator import accumulate
from chat_stream_client.streaming.events import StreamEvent
from chat_stream_client.streaming.sse_decoder import decode_sse

DEFAULT_BASE_URL = "http://localhost:5000/api"

CHAT_STREAM_ENDPOINT = "/chat/stream"
CHAT_ENDPOINT = "/chat"
MODELS_ENDPOINT = "/models"


class HttpChatBackend:
    """Client for the chat REST API and its ``data:`` line token stream."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=(base_url or DEFAULT_BASE_URL).rstrip("/"),
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout, read=None),
            transport=transport,
        )

    async def stream_chat(
        self,
        message: str,
        model: str,
        document_context: str | None = None,
        *,
        history: list[Message] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        body = {
            "message": message,
            "model": model,
            "stream": True,
            "documentContext": document_context,
        }
        logger.debug(f"Chat stream request: model={model}, chars={len(message)}")
        try:
            async with self._client.stream("POST", CHAT_STREAM_ENDPOINT, json=body) as response:
                if response.status_code >= 400:
                    raise ChatTransportError(
                        f"Failed to get response from server (HTTP {response.status_code})",
                        status_code=response.status_code,
                    )
                async for event in accumulate(decode_sse(response.aiter_bytes())):
                    yield event
        except httpx.HTTPError as ex:
            raise ChatTransportError(f"Failed to get response from server: {ex}") from ex

    async def send_message(self, message: str, model: str) -> dict[str, Any]:
        """Non-streaming chat call."""
        try:
            response = await self._client.post(
                CHAT_ENDPOINT,
                json={"message": message, "model": model, "stream": False},
            )
        except httpx.HTTPError as ex:
            raise ChatTransportError(f"Failed to get response from server: {ex}") from ex
        if response.status_code >= 400:
            raise ChatTransportError("Failed to get response from server", status_code=response.status_code)
        return response.json()

    @retry(**default_retry_kwargs((httpx.ConnectError, httpx.TimeoutException)))
    async def _get_models(self) -> httpx.Response:
        return await self._client.get(MODELS_ENDPOINT)

    async def list_models(self) -> list[str]:
        try:
            response = await self._get_models()
        except httpx.HTTPError as ex:
            raise ChatTransportError(f"Failed to get models: {ex}") from ex
        if response.status_code >= 400:
            raise ChatTransportError("Failed to get models", status_code=response.status_code)
        return _model_names(response.json())

    async def close(self) -> None:
        await self._client.aclose()


def _model_names(payload: Any) -> list[str]:
    if isinstance(payload, dict):
        payload = payload.get("models") or payload.get("data") or []
    names: list[str] = []
    for item in payload if isinstance(payload, list) else []:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, dict):
            name = item.get("id") or item.get("name")
            if name:
                names.append(str(name))
    return names
