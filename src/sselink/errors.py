"""Exception types raised inside the client.

None of these cross the public SSEConnection API: the connection catches
them and turns them into state transitions and ``error`` events.
"""

from __future__ import annotations


class SSELinkError(Exception):
    """Base class for client errors."""


class ConnectionFailed(SSELinkError):
    """The stream could not be opened (non-2xx status or network failure)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class StreamClosed(SSELinkError):
    """The peer ended an open stream."""
