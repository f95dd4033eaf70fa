import asyncio
import unittest

from chat_stream_client.commands.router import CommandRouter, split_command


class CommandRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.calls: list[tuple[str, str]] = []

        def recorder(name: str):
            async def handler(argument: str) -> None:
                self.calls.append((name, argument))

            return handler

        self.router = CommandRouter(
            on_help=recorder("help"),
            on_new=recorder("new"),
            on_list=recorder("list"),
            on_open=recorder("open"),
            on_favorite=recorder("fav"),
            on_rename=recorder("rename"),
            on_delete=recorder("delete"),
            on_search=recorder("search"),
            on_edit=recorder("edit"),
            on_models=recorder("models"),
            on_unknown=lambda text: self.calls.append(("unknown", text)),
        )

    def test_plain_text_is_not_a_command(self) -> None:
        self.assertFalse(asyncio.run(self.router.try_handle("hello there")))
        self.assertEqual([], self.calls)

    def test_routes_with_argument(self) -> None:
        self.assertTrue(asyncio.run(self.router.try_handle("  /rename   Trip plan ")))
        self.assertTrue(asyncio.run(self.router.try_handle("/EDIT m1 new text")))
        self.assertTrue(asyncio.run(self.router.try_handle("/help")))
        self.assertEqual([("rename", "Trip plan"), ("edit", "m1 new text"), ("help", "")], self.calls)

    def test_unknown_command(self) -> None:
        self.assertTrue(asyncio.run(self.router.try_handle("/frobnicate now")))
        self.assertEqual([("unknown", "/frobnicate now")], self.calls)

    def test_split_command(self) -> None:
        self.assertEqual(("/open", "abc"), split_command("/open abc"))
        self.assertEqual(("/list", ""), split_command("/list"))
        self.assertIn("/models", self.router.commands)


if __name__ == "__main__":
    unittest.main()
