import asyncio
import json
import unittest
from itertools import count

import httpx

from chat_stream_client.errors import NotFoundError, StorageError
from chat_stream_client.models import Message, MessagesState
from chat_stream_client.search import SearchFilters
from chat_stream_client.storage.remote_store import RemoteSessionStore


class _FakeRestServer:
    """Just enough of a PostgREST table API for the store's requests."""

    def __init__(self) -> None:
        self.chats: list[dict] = []
        self.messages: list[dict] = []
        self.documents: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.fail_next: list[int] = []
        self._ids = count(1)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_next:
            return httpx.Response(self.fail_next.pop(0))
        table = request.url.path.rsplit("/", 1)[-1]
        params = request.url.params
        rows = {"chats": self.chats, "messages": self.messages, "documents": self.documents}[table]

        if request.method == "GET":
            result = [r for r in rows if self._matches(r, params)]
            if table == "chats" and "messages(" in params.get("select", ""):
                result = [{**r, "messages": [m for m in self.messages if m["chat_id"] == r["id"]]} for r in result]
            return httpx.Response(200, json=result)
        if request.method == "POST":
            body = json.loads(request.content)
            row = {"id": f"srv-{next(self._ids)}", "created_at": "2024-05-01T12:00:00Z", **body}
            if table == "chats":
                row.update({"is_favorite": False, "updated_at": row["created_at"]})
            else:
                row["timestamp"] = row["created_at"]
            rows.append(row)
            return httpx.Response(201, json=[row])
        if request.method == "PATCH":
            matched = [r for r in rows if self._matches(r, params)]
            for row in matched:
                row.update(json.loads(request.content))
            return httpx.Response(200, json=matched)
        if request.method == "DELETE":
            rows[:] = [r for r in rows if not self._matches(r, params)]
            return httpx.Response(204)
        return httpx.Response(405)

    @staticmethod
    def _matches(row: dict, params: httpx.QueryParams) -> bool:
        for key, value in params.multi_items():
            if key in ("select", "order") or not value.startswith("eq."):
                continue
            expected = value[3:]
            actual = row.get(key)
            if isinstance(actual, bool):
                actual = str(actual).lower()
            if str(actual) != expected:
                return False
        return True


class RemoteSessionStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.server = _FakeRestServer()
        self.store = RemoteSessionStore(
            "https://db.example.test",
            "u1",
            api_key="secret",
            transport=httpx.MockTransport(self.server),
        )

    def tearDown(self) -> None:
        asyncio.run(self.store.close())

    def run_async(self, coro):
        return asyncio.run(coro)

    def test_requests_carry_credentials(self) -> None:
        self.run_async(self.store.list_sessions())
        request = self.server.requests[0]
        self.assertEqual("/rest/v1/chats", request.url.path)
        self.assertEqual("secret", request.headers["apikey"])
        self.assertEqual("Bearer secret", request.headers["Authorization"])
        self.assertEqual("eq.u1", request.url.params["user_id"])

    def test_session_and_message_lifecycle(self) -> None:
        session = self.run_async(self.store.create_session("Chat", "m1"))
        self.assertEqual(MessagesState.LOADED, session.messages_state)
        self.assertEqual("m1", session.selected_model)

        saved = self.run_async(self.store.create_message(session.id, Message.user("Hello")))
        self.assertTrue(saved.id.startswith("srv-"))
        self.assertEqual(session.id, self.server.messages[0]["chat_id"])

        self.run_async(self.store.update_session(session.id, {"title": "Renamed", "selected_model": "m2"}))
        self.assertEqual("Renamed", self.server.chats[0]["title"])
        self.assertEqual("m2", self.server.chats[0]["model"])

        listed = self.run_async(self.store.list_sessions())
        self.assertEqual(MessagesState.UNLOADED, listed[0].messages_state)
        self.assertEqual(["Hello"], [m.content for m in self.run_async(self.store.list_messages(session.id))])

        updated = self.run_async(self.store.update_message(session.id, saved.id, "Hello!"))
        self.assertEqual("Hello!", updated.content)
        self.run_async(self.store.delete_message(session.id, saved.id))
        self.run_async(self.store.delete_session(session.id))
        self.assertEqual([], self.server.chats)

    def test_retries_transient_statuses(self) -> None:
        self.server.fail_next = [503]
        self.assertEqual([], self.run_async(self.store.list_sessions()))
        self.assertEqual(2, len(self.server.requests))

    def test_client_errors_are_not_retried(self) -> None:
        self.server.fail_next = [400]
        with self.assertRaises(StorageError):
            self.run_async(self.store.list_sessions())
        self.assertEqual(1, len(self.server.requests))

    def test_patch_of_missing_row_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self.run_async(self.store.update_message("c1", "missing", "x"))

    def test_search_matches_content_and_attachments(self) -> None:
        first = self.run_async(self.store.create_session("First", "m1"))
        second = self.run_async(self.store.create_session("Second", "m1"))
        self.run_async(self.store.create_message(first.id, Message.user("about asyncio")))
        self.server.documents.append({"chat_id": second.id, "user_id": "u1"})

        by_content = self.run_async(self.store.search_sessions("AsyncIO", SearchFilters()))
        self.assertEqual([first.id], [s.id for s in by_content])
        self.assertEqual(MessagesState.UNLOADED, by_content[0].messages_state)

        self.run_async(self.store.search_sessions("", SearchFilters(has_attachments=True)))
        chats_request = self.server.requests[-1]
        self.assertEqual(f'in.("{second.id}")', chats_request.url.params["id"])

        no_messages = self.run_async(self.store.search_sessions("", SearchFilters(has_messages=False)))
        self.assertEqual([second.id], [s.id for s in no_messages])

    def test_attachment_filter_without_documents_short_circuits(self) -> None:
        self.run_async(self.store.create_session("First", "m1"))
        result = self.run_async(self.store.search_sessions("", SearchFilters(has_attachments=True)))
        self.assertEqual([], result)
        self.assertEqual("/rest/v1/documents", self.server.requests[-1].url.path)


if __name__ == "__main__":
    unittest.main()
