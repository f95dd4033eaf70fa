import asyncio
import io
import unittest

from chat_stream_client.bootstrap import AppRuntime
from chat_stream_client.orchestrator import SendOrchestrator
from chat_stream_client.shell import ChatShell, parse_search
from chat_stream_client.state.chat_state_store import ChatStateStore
from chat_stream_client.storage.base import StoreContext
from chat_stream_client.streaming.events import Done, StreamError, Token
from tests.fakes import FlakyStore, ScriptedBackend


class ChatShellTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FlakyStore()
        self.state = ChatStateStore(StoreContext(user_id="u1", store=self.store), default_model="m1")
        self.out = io.StringIO()

    def make_shell(self, *scripts, models=None) -> ChatShell:
        self.backend = ScriptedBackend(*scripts, models=models)
        runtime = AppRuntime(
            context=self.state.context,
            state=self.state,
            orchestrator=SendOrchestrator(self.state, self.backend, default_model="m1"),
            backend=self.backend,
            log_descriptions=[],
        )
        return ChatShell(runtime, out=self.out, spinner=False)

    def run_lines(self, shell: ChatShell, *lines: str) -> str:
        async def scenario():
            for line in lines:
                await shell.handle(line)
            await shell._orchestrator.drain()

        asyncio.run(scenario())
        return self.out.getvalue()

    def test_send_prints_streamed_reply(self) -> None:
        shell = self.make_shell([Token("Hi"), Token(" there"), Done()])
        output = self.run_lines(shell, "Hello")
        self.assertIn("assistant> Hi there\n", output)
        self.assertEqual("Hello", self.state.active_session.title)

    def test_failed_stream_prints_marker_once(self) -> None:
        shell = self.make_shell([Token("Partial"), StreamError(ConnectionResetError("reset"))])
        output = self.run_lines(shell, "Hello")
        self.assertEqual(1, output.count("Partial"))
        self.assertIn("❌ Error receiving response", output)

    def test_new_list_rename_and_favorite(self) -> None:
        shell = self.make_shell()
        output = self.run_lines(shell, "/new", "/rename Trip plan", "/fav", "/list")
        self.assertIn("Started chat", output)
        self.assertIn("Renamed to Trip plan", output)
        self.assertIn("Added to favorites: Trip plan", output)
        self.assertIn("Favorites:", output)
        self.assertIn("Trip plan ★", output)

    def test_open_loads_history(self) -> None:
        shell = self.make_shell([Token("Hi"), Done()])
        self.run_lines(shell, "Hello")
        session_id = self.state.active_session_id
        asyncio.run(self.state.load_sessions())

        output = self.run_lines(shell, f"/open {session_id[:8]}")

        self.assertIn("you> Hello", output)
        self.assertIn("assistant> Hi", output)
        self.assertTrue(self.state.get_session(session_id).messages_loaded)

    def test_delete_several_chats(self) -> None:
        shell = self.make_shell()
        self.run_lines(shell, "/new", "/new")
        ids = [s.id for s in self.state.sessions]
        output = self.run_lines(shell, f"/delete {ids[0]} {ids[1]}")
        self.assertIn("Deleted 2 chat(s)", output)
        self.assertEqual([], self.state.sessions)

    def test_search_and_models(self) -> None:
        shell = self.make_shell([Token("Hi"), Done()], models=["m1", "m2"])
        output = self.run_lines(shell, "Tell me about asyncio", "/search ASYNCIO", "/search nothing-here", "/models")
        self.assertIn("Tell me about asyncio", output)
        self.assertIn("No matching chats.", output)
        self.assertIn("  - m2", output)

    def test_edit_resends(self) -> None:
        shell = self.make_shell([Token("Hi"), Done()], [Token("Hello to you"), Done()])
        self.run_lines(shell, "Helo")
        user_id = self.state.active_session.messages[0].id
        output = self.run_lines(shell, f"/edit {user_id} Hello")
        self.assertIn("assistant> Hello to you", output)
        self.assertEqual(["Hello", "Hello to you"], [m.content for m in self.state.active_session.messages])

    def test_unknown_command(self) -> None:
        shell = self.make_shell()
        self.assertIn("Unknown command: /nope", self.run_lines(shell, "/nope"))

    def test_parse_search_flags(self) -> None:
        query, filters = parse_search("python is:fav has:attachments tips")
        self.assertEqual("python tips", query)
        self.assertTrue(filters.is_favorite)
        self.assertTrue(filters.has_attachments)
        self.assertIsNone(filters.has_messages)


if __name__ == "__main__":
    unittest.main()
