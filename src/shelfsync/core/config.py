"""Shared configuration classes for shelfsync.

This module defines configuration classes used by the API client, the
stream client and the synchronization engine.
"""

from __future__ import annotations

from dataclasses import dataclass

# Hard limit of the remote API for itemKey lookups
MAX_BATCH_SIZE = 50


@dataclass
class APIConfig:
    """Configuration for connecting to the remote library API.

    Used by both HTTP client (APIClient) and WebSocket client (StreamClient)
    to ensure consistent connection settings.

    Attributes:
        api_url: Base URL of the REST API.
        stream_url: URL of the streaming notification endpoint.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        api_version: Value sent in the API version header.
    """

    api_url: str = "https://api.zotero.org"
    stream_url: str = "wss://stream.zotero.org"
    timeout: float = 30.0
    verify_ssl: bool = True
    api_version: str = "3"

    def __post_init__(self) -> None:
        """Normalize URLs."""
        self.api_url = self.api_url.rstrip("/")
        self.stream_url = self.stream_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS/WSS.

        Returns:
            True if both endpoints are encrypted.
        """
        return self.api_url.startswith("https://") and self.stream_url.startswith(
            "wss://"
        )


@dataclass
class SyncConfig:
    """Tuning knobs for synchronization sessions.

    Attributes:
        retries: How often an interrupted session is resumed.
        resume_delay: Seconds to wait before resuming an interrupted session.
        batch_size: Number of item keys requested at once.
        page_limit: Page size used when fetching version manifests.
    """

    retries: int = 3
    resume_delay: float = 5.0
    batch_size: int = MAX_BATCH_SIZE
    page_limit: int = 5000

    def __post_init__(self) -> None:
        """Validate limits."""
        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise ValueError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE}, "
                f"got {self.batch_size}"
            )
        if self.retries < 0:
            raise ValueError(f"retries must not be negative, got {self.retries}")
        if self.resume_delay < 0:
            raise ValueError(
                f"resume_delay must not be negative, got {self.resume_delay}"
            )
