"""
Error taxonomy shared by the catalog, cover and playback layers.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Iterable


class EngineError(Exception):
    """Base class for every error the engine raises on purpose."""


class ValidationError(EngineError, ValueError):
    """Malformed input rejected before any state is touched."""


class CatalogCorruptionError(ValidationError):
    """Persisted catalog data violates referential integrity."""

    def __init__(self, dangling: Iterable[tuple[str, str]]):
        self.dangling = list(dangling)
        pairs = ", ".join(f"{pid}->{sid}" for pid, sid in self.dangling)
        super().__init__(f"Playlists reference unknown songs: {pairs}")


class NotFoundError(EngineError, LookupError):
    """Unknown song or playlist id."""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} not found: {item_id}")


class StorageError(EngineError, OSError):
    """Filesystem or database failure. Safe to retry."""


class MediaErrorCode(IntEnum):
    ABORTED = 1
    NETWORK = 2
    DECODE = 3
    SRC_NOT_SUPPORTED = 4


_MEDIA_ERROR_MESSAGES = {
    MediaErrorCode.ABORTED: "You aborted the media playback.",
    MediaErrorCode.NETWORK: "A network error caused the media download to fail.",
    MediaErrorCode.DECODE: (
        "The media playback was aborted due to a corruption problem "
        "or because the media used features your platform did not support."
    ),
    MediaErrorCode.SRC_NOT_SUPPORTED: "The media source is not supported.",
}


class MediaError(EngineError):
    """Playback failure reported by the audio element."""

    def __init__(self, code: MediaErrorCode, detail: str = ""):
        self.code = MediaErrorCode(code)
        self.detail = detail
        message = self.describe()
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)

    def describe(self) -> str:
        return _MEDIA_ERROR_MESSAGES.get(self.code, "An unknown error occurred.")
