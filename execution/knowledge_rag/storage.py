"""
Local file storage for uploaded knowledge documents

Files are stored under {root}/{owner_id}/{timestamp_ms}-{file_name}. Returned
paths are relative to the root and every access is confined to it.
"""

import os
import re
import time
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w.\- ]")


def _safe_segment(value: str) -> str:
    """Reduce a user-supplied value to a single safe path segment."""
    name = os.path.basename(value.replace("\\", "/")).strip()
    name = _UNSAFE_CHARS.sub("_", name)
    if name in ("", ".", ".."):
        raise ValueError(f"Invalid path segment: {value!r}")
    return name


class LocalFileStorage:
    """Filesystem-backed document storage."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or os.getenv("DOCUMENT_STORAGE_DIR", "./data/documents")).resolve()

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if full != self.root and self.root not in full.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return full

    def upload(self, owner_id: str, file_name: str, data: bytes) -> str:
        """
        Store a file for an owner.

        Returns:
            Storage path relative to the root
        """
        relative = f"{_safe_segment(owner_id)}/{int(time.time() * 1000)}-{_safe_segment(file_name)}"
        target = self._resolve(relative)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info(f"Stored {len(data)} bytes at {relative}")
        return relative

    def download(self, path: str) -> bytes:
        """Read a stored file. Raises FileNotFoundError if it does not exist."""
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(f"Stored file not found: {path}")
        return target.read_bytes()

    def delete(self, path: str) -> bool:
        target = self._resolve(path)
        if target.is_file():
            target.unlink()
            return True
        return False
