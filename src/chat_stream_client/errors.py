from __future__ import annotations


class ChatClientError(Exception):
    """Base class for errors raised by the chat client."""


class ChatTransportError(ChatClientError):
    """The chat endpoint could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(ChatClientError):
    """A session store call failed."""


class NotFoundError(StorageError):
    pass


class SendInProgressError(ChatClientError):
    def __init__(self, session_id: str):
        super().__init__(f"A response is already streaming for session {session_id}")
        self.session_id = session_id


class BulkDeleteError(ChatClientError):
    def __init__(self, failures: dict[str, Exception]):
        self.failures = dict(failures)
        ids = ", ".join(self.failures)
        super().__init__(f"Failed to delete {len(self.failures)} session(s): {ids}")


_NETWORK = "Unable to connect to the server. Please check your internet connection."
_SERVER = "Something went wrong on our end. Please try again later."
_UNAVAILABLE = "The service is temporarily unavailable. Please try again later."
_BAD_GATEWAY = "Unable to connect to the service. Please try again later."
_TIMEOUT = "The request timed out. Please try again."
_UPLOAD = "File upload failed. Please try again."
_GENERIC = "An unexpected error occurred. Please try again."

_EXACT_MESSAGES = {
    "Failed to fetch": _NETWORK,
    "Network request failed": _NETWORK,
    "Internal Server Error": _SERVER,
    "Service Unavailable": _UNAVAILABLE,
    "Bad Gateway": _BAD_GATEWAY,
    "Gateway Timeout": _TIMEOUT,
    "500": _SERVER,
    "502": _BAD_GATEWAY,
    "503": _UNAVAILABLE,
    "504": _TIMEOUT,
}

# Checked in order; first hit wins.
_PARTIAL_MESSAGES: list[tuple[tuple[str, ...], str]] = [
    (("failed to fetch", "network", "connect"), _NETWORK),
    (("internal server error", "500"), _SERVER),
    (("service unavailable", "503"), _UNAVAILABLE),
    (("bad gateway", "502"), _BAD_GATEWAY),
    (("timeout", "timed out", "504"), _TIMEOUT),
    (("upload",), _UPLOAD),
]


def user_friendly_error(error: BaseException | str | None) -> str:
    """Map an exception or raw error message to text fit for display."""
    if error is None:
        return _GENERIC

    if isinstance(error, ChatTransportError) and error.status_code is not None:
        by_status = _EXACT_MESSAGES.get(str(error.status_code))
        if by_status:
            return by_status

    message = error if isinstance(error, str) else (str(error) or type(error).__name__)
    if message in _EXACT_MESSAGES:
        return _EXACT_MESSAGES[message]

    lowered = message.lower()
    for needles, friendly in _PARTIAL_MESSAGES:
        if any(needle in lowered for needle in needles):
            return friendly

    if len(message) < 100 and "error" not in lowered:
        return message
    return _GENERIC
