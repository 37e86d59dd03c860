"""Configuration utilities for the ShelfSync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

from shelfsync.core.config import APIConfig, SyncConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_config_dir() -> Path:
    """Get the configuration directory for ShelfSync.

    Returns:
        Path to ~/.shelfsync or equivalent.
    """
    return Path.home() / ".shelfsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_database_path() -> Path:
    """Get the path to the subscription database."""
    return get_config_dir() / "subscriptions.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def build_api_config(config: dict[str, Any] | None = None) -> APIConfig:
    """Create the API configuration, overriding defaults from the config file.

    Recognized keys: api_url, stream_url, timeout, verify_ssl.
    """
    if config is None:
        config = load_config()
    fields = ("api_url", "stream_url", "timeout", "verify_ssl")
    return APIConfig(**{name: config[name] for name in fields if name in config})


def build_sync_config(config: dict[str, Any] | None = None) -> SyncConfig:
    """Create the synchronization settings from the config file.

    Recognized keys: retries, resume_delay, batch_size, page_limit.
    """
    if config is None:
        config = load_config()
    fields = ("retries", "resume_delay", "batch_size", "page_limit")
    return SyncConfig(**{name: config[name] for name in fields if name in config})


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the shelfsync package.

    Args:
        verbose: Log debug messages instead of info and above.
    """
    package_logger = logging.getLogger("shelfsync")
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Avoid duplicate handlers when called more than once
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
