from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from loguru import logger

from chat_stream_client.app_config import AppConfig, RuntimeEnv
from chat_stream_client.backend import ChatBackend, create_backend
from chat_stream_client.logging_config import setup_logging
from chat_stream_client.orchestrator import SendOrchestrator
from chat_stream_client.state.chat_state_store import ChatStateStore
from chat_stream_client.storage import (
    Database,
    LocalBlobStore,
    RemoteSessionStore,
    SessionStore,
    SqliteSessionStore,
    StoreContext,
)

DEFAULT_SQLITE_USER = "local"


@dataclass
class AppRuntime:
    context: StoreContext
    state: ChatStateStore
    orchestrator: SendOrchestrator
    backend: ChatBackend
    log_descriptions: list[str]

    async def close(self) -> None:
        await self.orchestrator.drain()
        await self.backend.close()
        if self.context.store is not None:
            await self.context.store.close()


def _resolve_path(path: str) -> str:
    resolved = Path(path)
    if not resolved.is_absolute():
        resolved = Path.cwd() / resolved
    return str(resolved)


def build_store_context(app: AppConfig, env: RuntimeEnv) -> StoreContext:
    """Pick the session store. A remote store needs a signed-in user; anyone else is a guest."""
    user_id = env.user_id or app.user_id
    store: SessionStore | None

    if app.storage_backend == "remote":
        if not app.remote_store_url:
            raise ValueError("StorageBackend 'remote' requires RemoteStoreUrl")
        if user_id is None:
            logger.warning("No user id configured, falling back to guest storage")
        else:
            store = RemoteSessionStore(
                app.remote_store_url,
                user_id,
                api_key=env.remote_store_api_key,
                timeout=app.request_timeout_seconds,
            )
            return StoreContext(user_id=user_id, store=store)
    elif app.storage_backend == "sqlite":
        db = Database(_resolve_path(app.sqlite_db_path))
        return StoreContext(user_id=user_id, store=SqliteSessionStore(db, user_id or DEFAULT_SQLITE_USER))
    elif app.storage_backend not in ("local", "memory"):
        raise ValueError(
            f"Unknown storage backend: {app.storage_backend!r}. Supported: 'local', 'sqlite', 'remote', 'memory'"
        )

    if app.storage_backend == "memory":
        return StoreContext(user_id=None, store=None)
    path = _resolve_path(app.local_store_path) if app.local_store_path else None
    return StoreContext(user_id=None, store=LocalBlobStore(path))


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    context = build_store_context(app, env)
    backend = create_backend(
        app.backend_name,
        api_key=env.backend_api_key,
        base_url=app.api_base_url,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
        timeout=app.request_timeout_seconds,
    )
    state = ChatStateStore(
        context,
        default_model=app.model,
        duplicate_tolerance=timedelta(seconds=app.duplicate_tolerance_seconds),
    )
    orchestrator = SendOrchestrator(
        state,
        backend,
        default_model=app.model,
        title_max_chars=app.title_max_chars,
    )

    loaded = await state.load_sessions()
    if not loaded.ok:
        logger.error(f"Error loading chats: {loaded.error}")

    return AppRuntime(
        context=context,
        state=state,
        orchestrator=orchestrator,
        backend=backend,
        log_descriptions=log_descriptions,
    )
