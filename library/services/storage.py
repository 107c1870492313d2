# =============================================================================
# File Storage — Raw Uploaded Summaries
# =============================================================================
#
# Uploaded files are written to disk under settings.upload_dir, keyed by the
# book's relative file_path ("summaries/{safe-title}-{rand}.{ext}").
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import string
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_lowercase + string.digits


def sanitize_file_name(name: str) -> str:
    """
    Lowercase, replace anything outside [a-z0-9] with '-', collapse
    repeats, and trim leading/trailing dashes.

    >>> sanitize_file_name("The Left Hand of Darkness!")
    'the-left-hand-of-darkness'
    """
    slug = re.sub(r"[^a-z0-9]", "-", name.lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def build_file_path(title: str, original_filename: str) -> str:
    """Relative storage key for a new upload."""
    ext = PurePosixPath(original_filename).suffix.lstrip(".").lower() or "txt"
    safe_title = sanitize_file_name(title) or "book"
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(4))
    return f"summaries/{safe_title}-{suffix}.{ext}"


class LocalFileStorage:
    """Stores files on the local filesystem below ``root``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _resolve(self, file_path: str) -> Path:
        target = (self._root / file_path).resolve()
        if not target.is_relative_to(self._root.resolve()):
            raise ValueError(f"File path escapes storage root: {file_path}")
        return target

    async def save(self, file_path: str, content: bytes) -> None:
        """Write ``content`` to ``file_path``. Refuses to overwrite."""
        target = self._resolve(file_path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("xb") as fh:
                fh.write(content)

        await asyncio.to_thread(_write)
        logger.info("Stored %d bytes at %s", len(content), file_path)

    async def remove(self, file_path: str) -> bool:
        """Delete ``file_path``. Returns False if it did not exist."""
        target = self._resolve(file_path)

        def _unlink() -> bool:
            try:
                target.unlink()
            except FileNotFoundError:
                return False
            return True

        removed = await asyncio.to_thread(_unlink)
        if removed:
            logger.info("Removed stored file %s", file_path)
        else:
            logger.warning("Stored file already missing: %s", file_path)
        return removed
