from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger

from chat_stream_client.bootstrap import AppRuntime
from chat_stream_client.commands.router import CommandRouter
from chat_stream_client.console import Spinner
from chat_stream_client.errors import ChatClientError, user_friendly_error
from chat_stream_client.formatters import format_timestamp, group_messages_by_date, group_sessions
from chat_stream_client.models import ChatSession, Role
from chat_stream_client.orchestrator import SendOutcome, SendState
from chat_stream_client.search import SearchFilters

HELP_TEXT = """Commands:
  /help                      Show this help
  /new                       Start a new chat
  /list                      List chats (favorites, today, yesterday, earlier)
  /open <id>                 Open a chat and show its history
  /fav [id]                  Toggle favorite on a chat (default: current)
  /rename <title>            Rename the current chat
  /delete [id ...]           Delete chats (default: current)
  /search <query> [is:fav] [has:messages] [has:attachments]
                             Search chat titles and messages
  /edit <message-id> <text>  Replace one of your messages and resend it
  /models                    List models offered by the backend
Anything else is sent to the assistant. Type 'exit' to quit."""

_SEARCH_FLAGS = {
    "is:fav": "is_favorite",
    "has:messages": "has_messages",
    "has:attachments": "has_attachments",
}


def parse_search(argument: str) -> tuple[str, SearchFilters]:
    """Split ``/search`` input into free text and ``is:``/``has:`` filters."""
    flags: dict[str, bool] = {}
    words: list[str] = []
    for word in argument.split():
        flag = _SEARCH_FLAGS.get(word.lower())
        if flag is None:
            words.append(word)
        else:
            flags[flag] = True
    return " ".join(words), SearchFilters(**flags)


class ChatShell:
    """Line-oriented front end over the chat state store and send orchestrator."""

    def __init__(self, runtime: AppRuntime, *, out: TextIO | None = None, spinner: bool = True):
        self._runtime = runtime
        self._state = runtime.state
        self._orchestrator = runtime.orchestrator
        self._out = out or sys.stdout
        self._spinner = spinner
        self.router = CommandRouter(
            on_help=self._help,
            on_new=self._new,
            on_list=self._list,
            on_open=self._open,
            on_favorite=self._favorite,
            on_rename=self._rename,
            on_delete=self._delete,
            on_search=self._search,
            on_edit=self._edit,
            on_models=self._models,
            on_unknown=self._unknown,
        )

    def _print(self, text: str = "") -> None:
        self._out.write(text + "\n")
        self._out.flush()

    async def handle(self, line: str) -> None:
        if await self.router.try_handle(line):
            return
        await self.send(line)

    # -- sending ---------------------------------------------------------

    async def send(self, text: str) -> SendOutcome | None:
        return await self._stream_reply(lambda on_token: self._orchestrator.send(text, on_token=on_token))

    async def _stream_reply(self, start) -> SendOutcome | None:
        self._out.write("assistant> ")
        self._out.flush()
        spinner = Spinner(prefix="assistant> ", stream=self._out) if self._spinner else None
        if spinner is not None:
            spinner.start()

        streamed: list[str] = []

        def on_token(fragment: str) -> None:
            if spinner is not None:
                spinner.stop()
            streamed.append(fragment)
            self._out.write(fragment)
            self._out.flush()

        try:
            outcome = await start(on_token)
        except ChatClientError as ex:
            logger.error(f"Send failed: {ex}")
            outcome = None
            self._print(user_friendly_error(ex))
        finally:
            if spinner is not None:
                spinner.stop()

        if outcome is None:
            return None
        if outcome.state is SendState.COMPLETED:
            self._print()
        else:
            # Markers land after the last token; print the part that was not streamed.
            content = outcome.assistant_message.content
            shown = "".join(streamed)
            self._print(content[len(shown):] if content.startswith(shown) else content)
            if outcome.error is not None and outcome.state is SendState.FAILED:
                self._print(user_friendly_error(outcome.error))
        self._print()
        return outcome

    # -- commands --------------------------------------------------------

    async def _help(self, _argument: str) -> None:
        self._print(HELP_TEXT)

    async def _new(self, _argument: str) -> None:
        result = await self._state.create_session()
        if not result.ok:
            self._print(f"Chat created locally only: {user_friendly_error(result.error)}")
        self._print(f"Started chat {result.value.id}")

    async def _list(self, _argument: str) -> None:
        groups = group_sessions(self._state.sessions)
        if not groups:
            self._print("No chats yet.")
            return
        for label, sessions in groups.items():
            self._print(f"{label}:")
            for session in sessions:
                self._print(f"  {self._describe(session)}")

    def _describe(self, session: ChatSession) -> str:
        marker = "*" if session.id == self._state.active_session_id else " "
        star = " ★" if session.is_favorite else ""
        return f"{marker} {session.id}  {session.title}{star}"

    async def _open(self, argument: str) -> None:
        session = self._resolve(argument)
        if session is None:
            return
        self._state.set_active(session.id)
        if not session.messages_loaded:
            loaded = await self._state.load_messages(session.id)
            if not loaded.ok:
                self._print(f"Could not load messages: {user_friendly_error(loaded.error)}")
                return
        self._print(f"Opened {session.title}")
        for day, messages in group_messages_by_date(session.messages):
            self._print(f"-- {day.isoformat()} --")
            for message in messages:
                speaker = "you" if message.role is Role.USER else "assistant"
                self._print(f"[{format_timestamp(message.timestamp)}] {message.id} {speaker}> {message.content}")

    async def _favorite(self, argument: str) -> None:
        session = self._resolve(argument)
        if session is None:
            return
        result = await self._state.toggle_favorite(session.id)
        if not result.ok:
            self._print(user_friendly_error(result.error))
            return
        self._print(f"{'Added to' if result.value.is_favorite else 'Removed from'} favorites: {result.value.title}")

    async def _rename(self, argument: str) -> None:
        session = self._resolve("")
        if session is None:
            return
        result = await self._state.rename_session(session.id, argument)
        if not result.ok:
            self._print(user_friendly_error(result.error))
            return
        self._print(f"Renamed to {result.value.title}")

    async def _delete(self, argument: str) -> None:
        targets = [self._resolve(part) for part in argument.split()] if argument else [self._resolve("")]
        session_ids = [s.id for s in targets if s is not None]
        if not session_ids:
            return
        if len(session_ids) == 1:
            result = await self._orchestrator.delete_session(session_ids[0])
            deleted = session_ids if result.ok else []
        else:
            for session_id in session_ids:
                self._orchestrator.cancel(session_id)
            result = await self._state.delete_sessions(session_ids)
            deleted = result.value or []
        if deleted:
            self._print(f"Deleted {len(deleted)} chat(s)")
        if not result.ok:
            self._print(f"Some chats could not be deleted: {user_friendly_error(result.error)}")

    async def _search(self, argument: str) -> None:
        query, filters = parse_search(argument)
        result = await self._state.search(query, filters)
        if not result.ok:
            logger.warning(f"Search fell back to local chats: {result.error}")
        if not result.value:
            self._print("No matching chats.")
            return
        for session in result.value:
            self._print(f"  {self._describe(session)}")

    async def _edit(self, argument: str) -> None:
        message_id, _, text = argument.partition(" ")
        session = self._state.active_session
        if session is None or not message_id or not text.strip():
            self._print("Usage: /edit <message-id> <text> (in an open chat)")
            return
        try:
            await self._stream_reply(
                lambda on_token: self._orchestrator.edit_and_resend(
                    session.id, message_id, text.strip(), on_token=on_token
                )
            )
        except ValueError as ex:
            self._print(str(ex))

    async def _models(self, _argument: str) -> None:
        try:
            models = await self._runtime.backend.list_models()
        except ChatClientError as ex:
            logger.error(f"Error listing models: {ex}")
            self._print(user_friendly_error(ex))
            return
        for name in models:
            self._print(f"  - {name}")

    def _unknown(self, command: str) -> None:
        self._print(f"Unknown command: {command}. Type /help for commands.")

    def _resolve(self, argument: str) -> ChatSession | None:
        """Find a chat by id or unique id prefix; blank means the current chat."""
        if not argument:
            session = self._state.active_session
            if session is None:
                self._print("No chat is open.")
            return session
        matches = [s for s in self._state.sessions if s.id == argument] or [
            s for s in self._state.sessions if s.id.startswith(argument)
        ]
        if len(matches) != 1:
            self._print(f"No chat matches {argument!r}." if not matches else f"{argument!r} is ambiguous.")
            return None
        return matches[0]

