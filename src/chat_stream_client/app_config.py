from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RuntimeEnv:
    backend_api_key: str
    backend_env_var: str | None
    remote_store_api_key: str | None
    user_id: str | None


@dataclass
class AppConfig:
    backend_name: str
    api_base_url: str
    model: str
    max_tokens: int
    temperature: float
    request_timeout_seconds: float
    storage_backend: str
    local_store_path: str | None
    sqlite_db_path: str
    remote_store_url: str | None
    user_id: str | None
    duplicate_tolerance_seconds: float
    title_max_chars: int
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        backend_name=str(config.get("ChatBackend", "http")).strip().lower(),
        api_base_url=str(config.get("ApiBaseUrl", "http://localhost:5000/api")),
        model=str(config.get("Model", "llama-2-7b")),
        max_tokens=int(config.get("MaxTokens", 4096)),
        temperature=float(config.get("Temperature", 1.0)),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 60)),
        storage_backend=str(config.get("StorageBackend", "local")).strip().lower(),
        local_store_path=_optional_str(config.get("LocalStorePath", ".chat_stream/chats.json")),
        sqlite_db_path=str(config.get("SqliteDbPath", ".chat_stream/chats.db")),
        remote_store_url=_optional_str(config.get("RemoteStoreUrl")),
        user_id=_optional_str(config.get("UserId")),
        duplicate_tolerance_seconds=float(config.get("DuplicateToleranceSeconds", 10)),
        title_max_chars=int(config.get("TitleMaxChars", 40)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(backend_name: str) -> RuntimeEnv:
    if backend_name == "openai":
        env_var: str | None = "OPENAI_API_KEY"
    elif backend_name == "anthropic":
        env_var = "ANTHROPIC_API_KEY"
    else:
        env_var = None

    return RuntimeEnv(
        backend_api_key=os.environ.get(env_var, "") if env_var else "",
        backend_env_var=env_var,
        remote_store_api_key=os.environ.get("REMOTE_STORE_API_KEY"),
        user_id=_optional_str(os.environ.get("CHAT_USER_ID")),
    )
