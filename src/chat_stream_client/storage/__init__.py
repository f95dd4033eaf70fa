from chat_stream_client.storage.base import SESSION_FIELDS, SessionStore, StoreContext
from chat_stream_client.storage.database import Database
from chat_stream_client.storage.local_store import LocalBlobStore
from chat_stream_client.storage.remote_store import RemoteSessionStore
from chat_stream_client.storage.sqlite_store import SqliteSessionStore

__all__ = [
    "Database",
    "LocalBlobStore",
    "RemoteSessionStore",
    "SESSION_FIELDS",
    "SessionStore",
    "SqliteSessionStore",
    "StoreContext",
]
