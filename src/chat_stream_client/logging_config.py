"""Logging sinks for the chat client.

Streamed replies are written to stdout, so nothing here ever logs there. The
console sink goes to stderr and stays quiet by default; the full trace of a run
(requests, retries, saves) lands in the log file next to the local chat store.
"""

import sys
from pathlib import Path
from typing import Any, Protocol, TextIO, runtime_checkable

from loguru import logger

DEFAULT_LOG_PATH = ".chat_stream/chat.log"
DEFAULT_CONSOLE_LEVEL = "WARNING"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stderr

    def register(self, level: str) -> None:
        logger.add(
            self._stream,
            level=level,
            colorize=None if self._stream is sys.stderr else False,
            format="<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        )

    def describe(self, level: str) -> str:
        name = "stderr" if self._stream is sys.stderr else getattr(self._stream, "name", "stream")
        return f"console ({name}, {level})"


class FileLogConsumer:
    """Rotating UTF-8 log file; message text may hold any streamed characters."""

    def __init__(
        self,
        path: str = DEFAULT_LOG_PATH,
        rotation: str = "5 MB",
        retention: int = 5,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            encoding="utf-8",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}",
            rotation=self._rotation,
            retention=self._retention,
        )

    def describe(self, level: str) -> str:
        return f"file ({self._path}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

_DEFAULT_CONSUMERS = [
    {"type": "console", "level": DEFAULT_CONSOLE_LEVEL},
    {"type": "file", "path": DEFAULT_LOG_PATH},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace all loguru sinks with ``consumers`` (``LogConsumers`` in config.json).

    Levels are case-insensitive. Unknown consumer types are skipped with a warning.
    Returns one description per registered sink for the startup banner.
    """
    logger.remove()

    descriptions: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        sink_type = str(config.get("type", "")).lower()
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        options = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = str(config.get("level") or level).upper()

        consumer = cls(**options)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
