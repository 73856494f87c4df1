"""
Catalog service: the in-memory song/playlist aggregate backed by SQLite.

Every mutation is written to the database first; the in-memory
SongsConfig only changes once that write has committed.
"""

from __future__ import annotations

import copy
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from config import SONG_EXTENSION, SONGS_DIR
from errors import NotFoundError, StorageError, ValidationError
from library_db import CatalogDatabase
from models import Playlist, Song, SongsConfig
from storage import AssetFileSystem
from utils import utc_now

logger = logging.getLogger(__name__)

RemovalGuard = Callable[[str], Optional[str]]


class CatalogStore:
    """
    Owner of the SongsConfig aggregate.

    The only writer of songs and playlists. Playlists may only reference
    songs that exist; violations found on load are reported as corruption.
    """

    def __init__(self, db: CatalogDatabase, files: Optional[AssetFileSystem] = None):
        """
        Initialize the catalog store.

        Args:
            db: Database the catalog is persisted to.
            files: Asset filesystem used to resolve song source paths.
        """
        self._db = db
        self._files = files
        self._config = SongsConfig()
        self._removal_guards: List[RemovalGuard] = []
        self._loaded = False

    @property
    def db(self) -> CatalogDatabase:
        return self._db

    @property
    def loaded(self) -> bool:
        return self._loaded

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self) -> SongsConfig:
        """Read the catalog from the database and validate it."""
        with self._storage("load catalog"):
            songs = self._db.load_songs()
            playlists = self._db.load_playlists()
            last_updated = self._db.get_last_updated()
        config = SongsConfig(
            songs={song.id: song for song in songs},
            playlists={playlist.id: playlist for playlist in playlists},
            last_updated=last_updated or utc_now(),
        )
        config.check_integrity()
        self._config = config
        self._loaded = True
        logger.info(
            "Catalog loaded: %d songs, %d playlists",
            len(config.songs),
            len(config.playlists),
        )
        return self.get_songs_data()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_songs(self) -> List[Song]:
        return list(self._config.songs.values())

    def get_playlists(self) -> List[Playlist]:
        return list(self._config.playlists.values())

    def get_songs_data(self) -> SongsConfig:
        return copy.deepcopy(self._config)

    def get_last_updated(self) -> datetime:
        return self._config.last_updated

    def has_song(self, song_id: Optional[str]) -> bool:
        return song_id is not None and song_id in self._config.songs

    def get_song_by_id(self, song_id: str) -> Song:
        song = self._config.songs.get(song_id)
        if song is None:
            raise NotFoundError("Song", song_id)
        return song

    def get_playlist_by_id(self, playlist_id: str) -> Playlist:
        playlist = self._config.playlists.get(playlist_id)
        if playlist is None:
            raise NotFoundError("Playlist", playlist_id)
        return playlist

    def source_path(self, song_id: str) -> str:
        """Absolute path of the audio file backing a song."""
        song = self.get_song_by_id(song_id)
        relative = song.path or f"{SONGS_DIR}/{song.id}.{SONG_EXTENSION}"
        if self._files is None:
            return os.path.abspath(relative)
        return self._files.resolve(relative)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_song_data(self, song: Song) -> None:
        if not song.id:
            raise ValidationError("Song id must not be empty")
        touched = utc_now()
        with self._storage(f"add song {song.id}"):
            self._db.add_song(song, touched)
        self._config.songs[song.id] = song
        self._config.last_updated = touched

    def create_playlist(self, playlist: Playlist) -> None:
        if not playlist.id:
            raise ValidationError("Playlist id must not be empty")
        if playlist.id in self._config.playlists:
            raise ValidationError(f"Playlist already exists: {playlist.id}")
        for song_id in playlist.songs:
            self.get_song_by_id(song_id)
        touched = utc_now()
        with self._storage(f"create playlist {playlist.id}"):
            self._db.add_playlist(playlist, touched)
        self._config.playlists[playlist.id] = playlist
        self._config.last_updated = touched

    def add_song_to_playlist(self, playlist_id: str, song_id: str) -> None:
        playlist = self.get_playlist_by_id(playlist_id)
        self.get_song_by_id(song_id)
        touched = utc_now()
        with self._storage(f"add song {song_id} to playlist {playlist_id}"):
            self._db.add_song_to_playlist(playlist_id, song_id, touched)
        playlist.songs.append(song_id)
        self._config.last_updated = touched

    def rename_playlist(self, playlist_id: str, new_name: str) -> None:
        playlist = self.get_playlist_by_id(playlist_id)
        if not new_name or not new_name.strip():
            raise ValidationError("Playlist name must not be empty")
        touched = utc_now()
        with self._storage(f"rename playlist {playlist_id}"):
            self._db.rename_playlist(playlist_id, new_name, touched)
        playlist.name = new_name
        self._config.last_updated = touched

    def set_playlist_cover(self, playlist_id: str, cover_path: str) -> None:
        playlist = self.get_playlist_by_id(playlist_id)
        touched = utc_now()
        with self._storage(f"update cover of playlist {playlist_id}"):
            self._db.update_playlist_cover(playlist_id, cover_path, touched)
        playlist.cover = cover_path
        self._config.last_updated = touched

    def add_removal_guard(self, guard: RemovalGuard) -> None:
        """
        Register a veto for song removal.

        The guard returns a reason string to refuse, or None to allow.
        """
        self._removal_guards.append(guard)

    def remove_song(self, song_id: str) -> None:
        self.get_song_by_id(song_id)
        owners = [p.id for p in self._config.playlists.values() if song_id in p.songs]
        if owners:
            raise ValidationError(
                f"Song {song_id} is still referenced by playlists: {', '.join(owners)}"
            )
        for guard in self._removal_guards:
            reason = guard(song_id)
            if reason:
                raise ValidationError(f"Cannot remove song {song_id}: {reason}")
        touched = utc_now()
        with self._storage(f"remove song {song_id}"):
            self._db.remove_song(song_id, touched)
        del self._config.songs[song_id]
        self._config.last_updated = touched

    @contextmanager
    def _storage(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            logger.warning("Catalog write failed (%s): %s", action, e)
            raise StorageError(f"Failed to {action}: {e}") from e

    def close(self) -> None:
        self._db.close()
