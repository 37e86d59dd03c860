"""Plugin that mirrors synchronized items into a local directory.

Each item is written to `<path>/items/<key>.json`. Deleted items are
removed. Attachment files are optionally written next to them as
`<path>/files/<key>`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from shelfsync.plugins.base import Plugin

if TYPE_CHECKING:
    from shelfsync.client.sync.session import Session

logger = logging.getLogger(__name__)


class MirrorPlugin(Plugin):
    """Write items as JSON files.

    Options:
        path: Target directory (required).
        attachments: Download attachment files as well (default False).
    """

    name = "mirror"
    summary = "Mirrors items (and optionally attachment files) to a directory"

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        super().__init__(options)
        if not self.options.get("path"):
            raise ValueError("mirror plugin requires a 'path' option")
        self.root = Path(self.options["path"]).expanduser()

    async def process(self, session: Session) -> None:
        items_dir = self.root / "items"
        files_dir = self.root / "files"
        items_dir.mkdir(parents=True, exist_ok=True)

        written = 0
        for key in session.updated + session.created:
            item = session.items.get(key)
            if item is None:
                logger.warning("[%s] item %s was not downloaded, skipping", session.id, key)
                continue

            self._write(items_dir / f"{key}.json", json.dumps(item, indent=2, sort_keys=True))
            written += 1

            if self.options.get("attachments") and _is_file_attachment(item):
                message = await session.attachment(item)
                files_dir.mkdir(parents=True, exist_ok=True)
                data = message.data
                if isinstance(data, str):
                    data = data.encode("utf-8")
                elif not isinstance(data, bytes):
                    data = json.dumps(data).encode("utf-8")
                (files_dir / key).write_bytes(data)

        removed = 0
        for key in session.deleted:
            for path in (items_dir / f"{key}.json", files_dir / key):
                if path.exists():
                    path.unlink()
                    removed += 1

        logger.info(
            "[%s] mirrored %d item(s) to %s, removed %d file(s)",
            session.id,
            written,
            self.root,
            removed,
        )

    @staticmethod
    def _write(path: Path, content: str) -> None:
        # Atomic replace
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)


def _is_file_attachment(item: dict[str, Any]) -> bool:
    data = item.get("data") or {}
    return data.get("itemType") == "attachment" and data.get("linkMode") in (
        "imported_file",
        "imported_url",
    )
