import asyncio
from unittest.mock import patch

from chat_stream_client.app_config import RuntimeEnv, parse_app_config
from chat_stream_client.backends.http_backend import HttpChatBackend
from chat_stream_client.bootstrap import bootstrap_runtime, build_store_context
from chat_stream_client.storage import LocalBlobStore, RemoteSessionStore, SqliteSessionStore
from tests.storage.base import TempDirTestCase


def _env(user_id: str | None = None) -> RuntimeEnv:
    return RuntimeEnv(backend_api_key="", backend_env_var=None, remote_store_api_key=None, user_id=user_id)


class BuildStoreContextTests(TempDirTestCase):
    def test_local_store_is_guest_mode(self) -> None:
        app = parse_app_config({"LocalStorePath": str(self._tmp_dir / "chats.json")})
        context = build_store_context(app, _env())
        self.assertTrue(context.is_guest)
        self.assertIsInstance(context.store, LocalBlobStore)

    def test_memory_store(self) -> None:
        context = build_store_context(parse_app_config({"StorageBackend": "memory"}), _env())
        self.assertIsNone(context.store)

    def test_sqlite_store(self) -> None:
        app = parse_app_config({"StorageBackend": "sqlite", "SqliteDbPath": str(self._tmp_dir / "chats.db")})
        context = build_store_context(app, _env("u1"))
        self.assertIsInstance(context.store, SqliteSessionStore)
        self.assertEqual("u1", context.user_id)
        asyncio.run(context.store.close())

    def test_remote_store_needs_a_user(self) -> None:
        app = parse_app_config({
            "StorageBackend": "remote",
            "RemoteStoreUrl": "https://db.example.test",
            "LocalStorePath": str(self._tmp_dir / "chats.json"),
        })
        guest = build_store_context(app, _env())
        self.assertTrue(guest.is_guest)
        self.assertIsInstance(guest.store, LocalBlobStore)

        signed_in = build_store_context(app, _env("u1"))
        self.assertIsInstance(signed_in.store, RemoteSessionStore)
        asyncio.run(signed_in.store.close())

    def test_remote_store_needs_a_url(self) -> None:
        with self.assertRaises(ValueError):
            build_store_context(parse_app_config({"StorageBackend": "remote"}), _env("u1"))

    def test_unknown_store(self) -> None:
        with self.assertRaises(ValueError):
            build_store_context(parse_app_config({"StorageBackend": "floppy"}), _env())


class BootstrapRuntimeTests(TempDirTestCase):
    @patch("chat_stream_client.bootstrap.setup_logging", return_value=["console (stderr, INFO)"])
    def test_wires_state_orchestrator_and_backend(self, setup_logging) -> None:
        app = parse_app_config({"LocalStorePath": str(self._tmp_dir / "chats.json"), "Model": "m9"})

        async def scenario():
            runtime = await bootstrap_runtime(app, _env())
            await runtime.close()
            return runtime

        runtime = asyncio.run(scenario())

        setup_logging.assert_called_once_with(level="INFO", consumers=None)
        self.assertIsInstance(runtime.backend, HttpChatBackend)
        self.assertEqual([], runtime.state.sessions)
        self.assertEqual(["console (stderr, INFO)"], runtime.log_descriptions)
