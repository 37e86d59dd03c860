"""Plugin that logs a summary of each synchronization session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shelfsync.plugins.base import Plugin

if TYPE_CHECKING:
    from shelfsync.client.sync.session import Session

logger = logging.getLogger(__name__)


class LoggerPlugin(Plugin):
    """Log created, updated and deleted items.

    Options:
        level: Log level name (default "INFO").
        items: Also log one line per item (default False).
    """

    name = "logger"
    summary = "Logs a summary of synchronized changes"

    async def process(self, session: Session) -> None:
        level = logging.getLevelName(str(self.options.get("level", "INFO")).upper())
        if not isinstance(level, int):
            level = logging.INFO

        logger.log(
            level,
            "[%s] %s at version %s: %d created, %d updated, %d deleted",
            session.id,
            session.subscription.url,
            session.version,
            len(session.created),
            len(session.updated),
            len(session.deleted),
        )

        if not self.options.get("items"):
            return

        for status, keys in (
            ("created", session.created),
            ("updated", session.updated),
            ("deleted", session.deleted),
        ):
            for key in keys:
                item = session.items.get(key, {})
                title = (item.get("data") or {}).get("title", "")
                logger.log(level, "[%s]   %s %s %s", session.id, status, key, title)
