"""
Cover-art lookup and replacement.

Covers live at ``Vleer/Covers/<id>.<ext>`` under the assets root and are
probed in a fixed extension order. Replacing a playlist cover removes every
older file for that id so at most one cover exists per id.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from config import COVER_EXTENSIONS, COVERS_DIR
from errors import NotFoundError, StorageError, ValidationError
from library import CatalogStore
from models import PLACEHOLDER_COVER, CoverArt, InvalidCover, parse_cover_ref
from storage import AssetFileSystem

logger = logging.getLogger(__name__)


def cover_path(item_id: str, ext: str) -> str:
    return f"{COVERS_DIR}/{item_id}.{ext}"


class CoverResolver:
    def __init__(self, files: AssetFileSystem, catalog: CatalogStore):
        self._files = files
        self._catalog = catalog

    def cover_files(self, item_id: str) -> list[str]:
        return [
            path
            for path in (cover_path(item_id, ext) for ext in COVER_EXTENSIONS)
            if self._files.exists(path)
        ]

    def find_cover_path(self, item_id: str) -> Optional[str]:
        for ext in COVER_EXTENSIONS:
            path = cover_path(item_id, ext)
            if self._files.exists(path):
                return path
        return None

    def resolve(self, item_id: str) -> CoverArt:
        """Bytes of the first cover found in probe order, else the placeholder."""
        path = self.find_cover_path(item_id)
        if path is None:
            return PLACEHOLDER_COVER
        try:
            data = self._files.read(path)
        except OSError as e:
            raise StorageError(f"Failed to read cover {path}: {e}") from e
        return CoverArt(path=path, data=data)

    def song_cover(self, song_id: str) -> bytes:
        path = cover_path(song_id, "png")
        if not self._files.exists(path):
            raise NotFoundError("Cover", song_id)
        try:
            return self._files.read(path)
        except OSError as e:
            raise StorageError(f"Failed to read cover {path}: {e}") from e

    def update_cover(self, playlist_id: str, cover: object) -> str:
        """
        Replace a playlist's cover with the image at ``cover.path``.

        Either every old cover is gone, the new file is written and the
        playlist row points at it, or the files and catalog are left as
        they were. Returns the new cover path.
        """
        ref = parse_cover_ref(cover)
        if isinstance(ref, InvalidCover):
            logger.error("Invalid cover reference for %s: %s", playlist_id, ref.reason)
            raise ValidationError(ref.reason)

        ext = os.path.splitext(ref.path)[1].lstrip(".").lower()
        if ext not in COVER_EXTENSIONS:
            raise ValidationError(
                f"Unsupported cover extension {ext!r}; expected one of {', '.join(COVER_EXTENSIONS)}"
            )
        self._catalog.get_playlist_by_id(playlist_id)
        new_path = cover_path(playlist_id, ext)

        try:
            data = self._files.read(ref.path)
            backups = {path: self._files.read(path) for path in self.cover_files(playlist_id)}
        except OSError as e:
            raise StorageError(f"Failed to read cover image {ref.path}: {e}") from e

        try:
            for path in backups:
                self._files.remove(path)
            self._files.write(new_path, data)
            self._catalog.set_playlist_cover(playlist_id, new_path)
        except (OSError, NotFoundError) as e:
            self._restore(new_path, backups)
            logger.warning("Failed to update playlist cover for %s: %s", playlist_id, e)
            raise StorageError(
                "Failed to update playlist cover due to path or permission issues."
            ) from e

        logger.info("Playlist %s cover set to %s", playlist_id, new_path)
        return new_path

    def _restore(self, new_path: str, backups: dict[str, bytes]) -> None:
        try:
            self._files.remove(new_path)
            for path, data in backups.items():
                self._files.write(path, data)
        except OSError:
            logger.exception("Could not restore previous covers after failed update")
