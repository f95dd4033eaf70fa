import asyncio
import json

from chat_stream_client.errors import NotFoundError
from chat_stream_client.models import Message, MessagesState
from chat_stream_client.search import SearchFilters
from chat_stream_client.storage.local_store import STORAGE_KEY, LocalBlobStore
from tests.storage.base import TempDirTestCase


class LocalBlobStoreTests(TempDirTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._path = self._tmp_dir / "chats.json"

    def test_round_trips_through_the_blob(self) -> None:
        store = LocalBlobStore(str(self._path))

        async def scenario():
            session = await store.create_session("Chat", "m1")
            await store.create_message(session.id, Message.user("Hello", metadata={"document_id": "d1"}))
            await store.update_session(session.id, {"is_favorite": True})
            return session

        session = asyncio.run(scenario())

        blob = json.loads(self._path.read_text(encoding="utf-8"))
        self.assertEqual([session.id], [s["id"] for s in blob[STORAGE_KEY]])

        reopened = LocalBlobStore(str(self._path))
        sessions = asyncio.run(reopened.list_sessions())
        self.assertEqual(1, len(sessions))
        self.assertTrue(sessions[0].is_favorite)
        self.assertEqual(MessagesState.LOADED, sessions[0].messages_state)
        self.assertEqual(["Hello"], [m.content for m in sessions[0].messages])
        self.assertTrue(sessions[0].messages[0].has_attachment)

    def test_stored_messages_are_never_streaming(self) -> None:
        store = LocalBlobStore()

        async def scenario():
            session = await store.create_session("Chat", "m1")
            placeholder = Message.assistant_placeholder("u1")
            placeholder.content = "partial"
            await store.create_message(session.id, placeholder)
            return await store.list_messages(session.id)

        messages = asyncio.run(scenario())
        self.assertFalse(messages[0].is_streaming)
        self.assertEqual("u1", messages[0].responding_to_message_id)

    def test_unreadable_blob_starts_empty(self) -> None:
        self._path.write_text("{not json", encoding="utf-8")
        store = LocalBlobStore(str(self._path))
        self.assertEqual([], asyncio.run(store.list_sessions()))

    def test_missing_ids_raise_not_found(self) -> None:
        store = LocalBlobStore()
        with self.assertRaises(NotFoundError):
            asyncio.run(store.delete_session("missing"))

        session = asyncio.run(store.create_session("Chat", "m1"))
        with self.assertRaises(NotFoundError):
            asyncio.run(store.update_message(session.id, "missing", "x"))

    def test_search_uses_message_content(self) -> None:
        store = LocalBlobStore()

        async def scenario():
            first = await store.create_session("First", "m1")
            await store.create_session("Second", "m1")
            await store.create_message(first.id, Message.user("Tell me about asyncio"))
            return await store.search_sessions("ASYNCIO", SearchFilters(has_messages=True))

        self.assertEqual(["First"], [s.title for s in asyncio.run(scenario())])
