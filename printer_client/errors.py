"""Error taxonomy for the printer client.

None of these reach an interactive user. They are logged, and the
coordinator recovers by retrying (or, for subscriptions, by supervision).
"""

from __future__ import annotations


class ClientError(Exception):
    """Base error for printer client failures."""


class LocalPreconditionError(ClientError):
    """Raised when the printer is not in the state an operation requires."""


class RequestFailure(ClientError):
    """Raised when a POST is rejected by the server or never reaches it."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


class MalformedResponseError(RequestFailure):
    """Raised when a response body cannot be parsed into the expected shape."""


class SubscriptionFailure(ClientError):
    """Raised when the broker rejects or fails a channel subscription."""

    def __init__(self, channel: str, message: str = "") -> None:
        super().__init__(f"{channel}: {message}" if message else channel)
        self.channel = channel
