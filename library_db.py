"""
SQLite-based catalog database layer.

Provides persistent storage for songs, playlists (with their ordered
track lists and cover pointers) and the catalog's last-updated stamp.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from errors import NotFoundError
from models import Playlist, Song
from utils import utc_now

logger = logging.getLogger(__name__)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO format datetime string."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None


def _row_to_song(row: sqlite3.Row) -> Song:
    """Convert a database row to a Song object."""
    try:
        extra = json.loads(row["extra"]) if row["extra"] else {}
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable metadata for song %s", row["id"])
        extra = {}
    return Song(
        id=row["id"],
        title=row["title"] or "",
        artist=row["artist"] or "",
        length=row["length"] or 0.0,
        cover=row["cover"] or "",
        date_added=_parse_datetime(row["date_added"]) or utc_now(),
        path=row["path"],
        extra=extra,
    )


class CatalogDatabase:
    """
    SQLite database for the song and playlist catalog.

    Thread-safe with one connection per thread.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str):
        """
        Initialize the catalog database.

        Args:
            db_path: Path to the SQLite database file. Parent directories
                     are created on demand.
        """
        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)
        self._db_path = db_path
        self._local = threading.local()
        self._init_schema()

    @property
    def path(self) -> str:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            self._local.connection = conn
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor with auto-commit."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
                """
            )
            cur.execute("SELECT version FROM schema_version LIMIT 1")
            row = cur.fetchone()
            current_version = row["version"] if row else 0

            if current_version < 1:
                logger.info("Creating catalog schema v%d in %s", self.SCHEMA_VERSION, self._db_path)
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS songs (
                        id TEXT PRIMARY KEY,
                        title TEXT,
                        artist TEXT,
                        length REAL,
                        cover TEXT,
                        date_added TEXT,
                        path TEXT,
                        extra TEXT
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS playlists (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        cover TEXT,
                        date_created TEXT
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS playlist_songs (
                        playlist_id TEXT NOT NULL REFERENCES playlists(id) ON DELETE CASCADE,
                        position INTEGER NOT NULL,
                        song_id TEXT NOT NULL,
                        PRIMARY KEY (playlist_id, position)
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS catalog_meta (
                        key TEXT PRIMARY KEY,
                        value TEXT
                    )
                    """
                )
                cur.execute("CREATE INDEX IF NOT EXISTS idx_playlist_songs_song ON playlist_songs(song_id)")

                cur.execute("DELETE FROM schema_version")
                cur.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (self.SCHEMA_VERSION,),
                )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load_songs(self) -> List[Song]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM songs ORDER BY date_added, id")
            return [_row_to_song(row) for row in cur.fetchall()]

    def load_playlists(self) -> List[Playlist]:
        """Load every playlist with its ordered song ids."""
        with self._cursor() as cur:
            cur.execute("SELECT * FROM playlists ORDER BY date_created, id")
            playlists = {
                row["id"]: Playlist(
                    id=row["id"],
                    name=row["name"],
                    cover=row["cover"],
                    date_created=_parse_datetime(row["date_created"]) or utc_now(),
                )
                for row in cur.fetchall()
            }
            cur.execute("SELECT playlist_id, song_id FROM playlist_songs ORDER BY playlist_id, position")
            for row in cur.fetchall():
                playlist = playlists.get(row["playlist_id"])
                if playlist is not None:
                    playlist.songs.append(row["song_id"])
            return list(playlists.values())

    def get_last_updated(self) -> Optional[datetime]:
        with self._cursor() as cur:
            cur.execute("SELECT value FROM catalog_meta WHERE key = 'last_updated'")
            row = cur.fetchone()
            return _parse_datetime(row["value"]) if row else None

    # -------------------------------------------------------------------------
    # Songs
    # -------------------------------------------------------------------------

    def add_song(self, song: Song, touched: datetime) -> None:
        """Insert a song, replacing the stored row if the id already exists."""
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT OR REPLACE INTO songs (
                    id, title, artist, length, cover, date_added, path, extra
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    song.id,
                    song.title,
                    song.artist,
                    song.length,
                    song.cover,
                    song.date_added.isoformat() if song.date_added else None,
                    song.path,
                    json.dumps(song.extra) if song.extra else None,
                ),
            )
            self._touch(cur, touched)

    def remove_song(self, song_id: str, touched: datetime) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM songs WHERE id = ?", (song_id,))
            if cur.rowcount == 0:
                raise NotFoundError("Song", song_id)
            self._touch(cur, touched)

    # -------------------------------------------------------------------------
    # Playlists
    # -------------------------------------------------------------------------

    def add_playlist(self, playlist: Playlist, touched: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO playlists (id, name, cover, date_created) VALUES (?, ?, ?, ?)",
                (
                    playlist.id,
                    playlist.name,
                    playlist.cover,
                    playlist.date_created.isoformat() if playlist.date_created else None,
                ),
            )
            cur.executemany(
                "INSERT INTO playlist_songs (playlist_id, position, song_id) VALUES (?, ?, ?)",
                [(playlist.id, pos, song_id) for pos, song_id in enumerate(playlist.songs)],
            )
            self._touch(cur, touched)

    def rename_playlist(self, playlist_id: str, name: str, touched: datetime) -> None:
        with self._cursor() as cur:
            cur.execute("UPDATE playlists SET name = ? WHERE id = ?", (name, playlist_id))
            if cur.rowcount == 0:
                raise NotFoundError("Playlist", playlist_id)
            self._touch(cur, touched)

    def add_song_to_playlist(self, playlist_id: str, song_id: str, touched: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) AS next_pos FROM playlist_songs WHERE playlist_id = ?",
                (playlist_id,),
            )
            next_pos = cur.fetchone()["next_pos"]
            cur.execute(
                "INSERT INTO playlist_songs (playlist_id, position, song_id) VALUES (?, ?, ?)",
                (playlist_id, next_pos, song_id),
            )
            self._touch(cur, touched)

    def update_playlist_cover(self, playlist_id: str, cover_path: str, touched: datetime) -> None:
        """Point a playlist at its cover file. Single-row transactional write."""
        with self._cursor() as cur:
            cur.execute("UPDATE playlists SET cover = ? WHERE id = ?", (cover_path, playlist_id))
            if cur.rowcount == 0:
                raise NotFoundError("Playlist", playlist_id)
            self._touch(cur, touched)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    @staticmethod
    def _touch(cur: sqlite3.Cursor, touched: datetime) -> None:
        cur.execute(
            "INSERT OR REPLACE INTO catalog_meta (key, value) VALUES ('last_updated', ?)",
            (touched.isoformat(),),
        )

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
