from __future__ import annotations

from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential


def _on_retry(retry_state):
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    max_attempts = getattr(retry_state.retry_object.stop, "max_attempt_number", "?")
    logger.warning(f"{reason}. Retrying in {wait:.1f}s (attempt {attempt}/{max_attempts})...")


def default_retry_kwargs(
    exception_types: tuple[type[Exception], ...],
    *,
    attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 8.0,
) -> dict:
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        "stop": stop_after_attempt(max(1, attempts)),
        "before_sleep": _on_retry,
        "reraise": True,
    }
