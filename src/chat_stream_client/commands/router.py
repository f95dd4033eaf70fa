from __future__ import annotations

from collections.abc import Awaitable, Callable

Handler = Callable[[str], Awaitable[None]]


def split_command(text: str) -> tuple[str, str]:
    """``"/rename  My chat "`` -> ``("/rename", "My chat")``."""
    name, _, rest = text.strip().partition(" ")
    return name.lower(), rest.strip()


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Handler,
        on_new: Handler,
        on_list: Handler,
        on_open: Handler,
        on_favorite: Handler,
        on_rename: Handler,
        on_delete: Handler,
        on_search: Handler,
        on_edit: Handler,
        on_models: Handler,
        on_unknown: Callable[[str], None],
    ) -> None:
        self._handlers: dict[str, Handler] = {
            "/help": on_help,
            "/new": on_new,
            "/list": on_list,
            "/open": on_open,
            "/fav": on_favorite,
            "/rename": on_rename,
            "/delete": on_delete,
            "/search": on_search,
            "/edit": on_edit,
            "/models": on_models,
        }
        self._on_unknown = on_unknown

    @property
    def commands(self) -> list[str]:
        return list(self._handlers)

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        name, argument = split_command(trimmed)
        handler = self._handlers.get(name)
        if handler is None:
            self._on_unknown(trimmed)
            return True
        await handler(argument)
        return True
