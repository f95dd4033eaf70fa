from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from chat_stream_client.models import Message
from chat_stream_client.streaming.events import StreamEvent


@runtime_checkable
class ChatBackend(Protocol):
    def stream_chat(
        self,
        message: str,
        model: str,
        document_context: str | None = None,
        *,
        history: list[Message] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream an assistant reply as ``Token`` events ending in ``Done`` or ``StreamError``.

        A request that is rejected before any body is read (connection refused,
        non-2xx status) raises instead of yielding.
        """
        ...

    async def list_models(self) -> list[str]:
        """Model identifiers the backend accepts."""
        ...

    async def close(self) -> None: ...


def create_backend(
    backend_name: str,
    *,
    api_key: str = "",
    base_url: str = "",
    max_tokens: int = 4096,
    temperature: float = 1.0,
    timeout: float = 60.0,
) -> ChatBackend:
    """Factory: create a ChatBackend by name."""
    name = backend_name.strip().lower()
    if name == "http":
        from chat_stream_client.backends.http_backend import HttpChatBackend
        return HttpChatBackend(base_url, timeout=timeout)
    if name == "anthropic":
        from chat_stream_client.backends.anthropic_backend import AnthropicChatBackend
        return AnthropicChatBackend(api_key, max_tokens=max_tokens, temperature=temperature)
    if name == "openai":
        from chat_stream_client.backends.openai_backend import OpenAIChatBackend
        return OpenAIChatBackend(api_key, max_tokens=max_tokens, temperature=temperature)
    raise ValueError(f"Unknown chat backend: {backend_name!r}. Supported: 'http', 'anthropic', 'openai'")
