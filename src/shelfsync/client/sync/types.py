"""Shared types and exceptions for synchronization.

This module provides:
- SyncError, SyncInterruptedError, UnexpectedResponseError: Session errors
- ListenerError, NotRegisteredError, SubscribeError: Listener errors
- Registration: A local interest in a stream topic
- ListenerEvent: Lifecycle events emitted by the Listener
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Default delay before an interrupted session resumes, in seconds
DEFAULT_RESUME_DELAY = 5.0


class SyncError(Exception):
    """Base exception for sync errors."""


class SyncInterruptedError(SyncError):
    """The remote library version changed during a synchronization session.

    Attributes:
        resume: Seconds to wait before resuming the session.
        expected: Version observed at the start of the session.
        actual: Version reported by the offending response.
    """

    def __init__(
        self,
        message: str = "version mismatch detected",
        resume: float = DEFAULT_RESUME_DELAY,
        expected: int | None = None,
        actual: int | None = None,
    ) -> None:
        super().__init__(message)
        self.resume = resume
        self.expected = expected
        self.actual = actual


class UnexpectedResponseError(SyncError):
    """The API returned a payload of an unexpected type."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"expected {expected} response, got {actual}")
        self.expected = expected
        self.actual = actual


class ListenerError(Exception):
    """Base exception for stream listener errors."""


class NotRegisteredError(ListenerError):
    """No active registration exists for the given subscription."""


class SubscribeError(ListenerError):
    """The stream rejected a topic subscription.

    Attributes:
        registration: The rejected registration.
        reason: Reason reported by the stream.
    """

    def __init__(self, registration: Registration, reason: str | None) -> None:
        super().__init__(
            f"failed to subscribe {registration.path}: {reason or 'unknown error'}"
        )
        self.registration = registration
        self.reason = reason


@dataclass(frozen=True)
class Registration:
    """A local interest in updates of a stream topic.

    Attributes:
        id: Id of the local subscription.
        key: API key the topic was subscribed with (None for public topics).
        path: The stream topic (library path).
    """

    id: str
    key: str | None
    path: str

    def matches(self, key: str | None, topic: str) -> bool:
        """Check whether this registration watches topic under key."""
        return self.key == key and self.path == topic


class ListenerEvent(str, Enum):
    """Events emitted by the Listener."""

    ADDED = "added"
    ERROR = "error"
    UPDATED = "updated"
