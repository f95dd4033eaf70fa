from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Token:
    content: str


@dataclass(frozen=True)
class Done:
    # True when the stream ended without an explicit "done" event.
    implicit: bool = False


@dataclass(frozen=True)
class StreamError:
    error: BaseException


StreamEvent = Token | Done | StreamError
