from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[T]):
    """A failed store operation.

    ``fallback`` carries the value that was applied locally instead, if any.
    """

    error: Exception
    fallback: T | None = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def value(self) -> T | None:
        return self.fallback

    def unwrap(self) -> T:
        raise self.error


Result = Ok[T] | Err[T]
