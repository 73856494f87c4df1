from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Optional, Union

from config import DEFAULT_COVER
from errors import CatalogCorruptionError, ValidationError
from utils import utc_now


@dataclass
class Song:
    id: str
    title: str = ""
    artist: str = ""
    length: float = 0.0
    cover: str = ""
    date_added: datetime = field(default_factory=utc_now)
    path: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Playlist:
    id: str
    name: str
    cover: Optional[str] = None
    songs: list[str] = field(default_factory=list)
    date_created: datetime = field(default_factory=utc_now)


@dataclass
class SongsConfig:
    songs: dict[str, Song] = field(default_factory=dict)
    playlists: dict[str, Playlist] = field(default_factory=dict)
    last_updated: datetime = field(default_factory=utc_now)

    def dangling_references(self) -> list[tuple[str, str]]:
        return [
            (playlist.id, song_id)
            for playlist in self.playlists.values()
            for song_id in playlist.songs
            if song_id not in self.songs
        ]

    def check_integrity(self) -> None:
        dangling = self.dangling_references()
        if dangling:
            raise CatalogCorruptionError(dangling)


@dataclass
class EqBand:
    band_index: int
    gain_db: float = 0.0


@dataclass
class EqSettings:
    bands: list[EqBand]

    @classmethod
    def flat(cls, count: int) -> "EqSettings":
        return cls([EqBand(i, 0.0) for i in range(count)])

    @classmethod
    def from_gains(cls, gains: list[float], count: int) -> "EqSettings":
        if len(gains) != count:
            raise ValidationError(f"Expected {count} EQ gains, got {len(gains)}")
        return cls([EqBand(i, float(g)) for i, g in enumerate(gains)])

    def __len__(self) -> int:
        return len(self.bands)

    def gains(self) -> list[float]:
        return [band.gain_db for band in self.bands]

    def gain(self, band_index: int) -> float:
        self._check_index(band_index)
        return self.bands[band_index].gain_db

    def set_gain(self, band_index: int, gain_db: float) -> None:
        self._check_index(band_index)
        self.bands[band_index].gain_db = float(gain_db)

    def copy(self) -> "EqSettings":
        return EqSettings([EqBand(b.band_index, b.gain_db) for b in self.bands])

    def _check_index(self, band_index: int) -> None:
        if not 0 <= band_index < len(self.bands):
            raise ValidationError(
                f"EQ band index {band_index} out of range 0..{len(self.bands) - 1}"
            )


class PlaybackState(Enum):
    IDLE = auto()
    PLAYING = auto()
    PAUSED = auto()


class GraphState(Enum):
    UNINITIALIZED = auto()
    ACTIVE = auto()
    SUSPENDED = auto()


@dataclass(frozen=True)
class CoverPath:
    path: str


@dataclass(frozen=True)
class InvalidCover:
    reason: str


CoverRef = Union[CoverPath, InvalidCover]


def parse_cover_ref(value: object) -> CoverRef:
    """
    Validate a cover descriptor once, at the boundary.

    Accepts a CoverPath, a mapping with a "path" string, or any object
    exposing a string ``path`` attribute.
    """
    if isinstance(value, (CoverPath, InvalidCover)):
        return value
    if value is None:
        return InvalidCover("cover reference is missing")
    if isinstance(value, dict):
        path = value.get("path")
    else:
        path = getattr(value, "path", None)
    if not isinstance(path, str):
        return InvalidCover(f"cover reference has no path string: {value!r}")
    if not path.strip():
        return InvalidCover("cover path is empty")
    return CoverPath(path)


@dataclass(frozen=True)
class CoverArt:
    path: str
    data: Optional[bytes] = None

    @property
    def is_placeholder(self) -> bool:
        return self.data is None


PLACEHOLDER_COVER = CoverArt(path=DEFAULT_COVER)


@dataclass(frozen=True)
class PlayerSnapshot:
    state: PlaybackState
    current_song_id: Optional[str]
    volume: int
    queue: tuple[str, ...]
    cursor: int
