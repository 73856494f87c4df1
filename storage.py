"""
Byte-level file access relative to the audio assets root.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


class AssetFileSystem:
    """
    Opaque read/write/exists/remove service.

    Relative paths are resolved against ``root``; absolute paths (e.g. an
    image the user picked elsewhere) are used as-is.
    """

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def resolve(self, path: str) -> str:
        return os.path.join(self.root, path.replace("/", os.sep))

    def exists(self, path: str) -> bool:
        return os.path.isfile(self.resolve(path))

    def read(self, path: str) -> bytes:
        with open(self.resolve(path), "rb") as f:
            return f.read()

    def write(self, path: str, data: bytes) -> None:
        full_path = self.resolve(path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        with open(full_path, "wb") as f:
            f.write(data)
        logger.debug("Wrote %d bytes to %s", len(data), full_path)

    def remove(self, path: str) -> None:
        try:
            os.remove(self.resolve(path))
        except FileNotFoundError:
            pass
