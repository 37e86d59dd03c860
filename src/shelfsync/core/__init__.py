"""Core module - Shared configuration."""

from shelfsync.core.config import MAX_BATCH_SIZE, APIConfig, SyncConfig

__all__ = [
    "MAX_BATCH_SIZE",
    "APIConfig",
    "SyncConfig",
]
