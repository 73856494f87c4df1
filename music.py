"""
Service object handed to the UI layer.

Thin facade over the catalog, cover resolver, equalizer and playback
controller. It is built explicitly with ``create_music_service``; there is no
module-level instance.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from PySide6 import QtCore

from audio.engine import AudioElement
from config import DEFAULT_COVER, default_asset_root, default_db_path
from controller import PlaybackController
from covers import CoverResolver
from dsp import AnalyserNode, AudioContext
from equalizer import EqualizerGraph
from library import CatalogStore
from library_db import CatalogDatabase
from models import CoverArt, EqSettings, Playlist, Song, SongsConfig
from settings import EngineSettings
from storage import AssetFileSystem

logger = logging.getLogger(__name__)


class MusicService:
    def __init__(
        self,
        catalog: CatalogStore,
        covers: CoverResolver,
        files: AssetFileSystem,
        controller: PlaybackController,
        settings: EngineSettings,
    ):
        self.catalog = catalog
        self.covers = covers
        self.files = files
        self.controller = controller
        self.settings = settings

    def init(self) -> None:
        """Load the catalog and restore the persisted volume and EQ gains."""
        self.catalog.load()
        self.controller.set_volume(self.settings.volume())
        self.controller.apply_eq_settings(self.settings.eq_settings())

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def get_songs(self) -> List[Song]:
        return self.catalog.get_songs()

    def get_playlists(self) -> List[Playlist]:
        return self.catalog.get_playlists()

    def get_songs_data(self) -> SongsConfig:
        return self.catalog.get_songs_data()

    def get_song_by_id(self, song_id: str) -> Song:
        return self.catalog.get_song_by_id(song_id)

    def get_playlist_by_id(self, playlist_id: str) -> Playlist:
        return self.catalog.get_playlist_by_id(playlist_id)

    def get_last_updated(self) -> datetime:
        return self.catalog.get_last_updated()

    def add_song_data(self, song: Song) -> None:
        self.catalog.add_song_data(song)

    def create_playlist(self, playlist: Playlist) -> None:
        self.catalog.create_playlist(playlist)

    def add_song_to_playlist(self, playlist_id: str, song_id: str) -> None:
        self.catalog.add_song_to_playlist(playlist_id, song_id)

    def rename_playlist(self, playlist_id: str, new_name: str) -> None:
        self.catalog.rename_playlist(playlist_id, new_name)

    # -------------------------------------------------------------------------
    # Covers
    # -------------------------------------------------------------------------

    def update_playlist_cover(self, playlist_id: str, cover: object) -> str:
        return self.covers.update_cover(playlist_id, cover)

    def get_cover_url_from_id(self, item_id: str) -> str:
        """``file://`` URL of the first cover in probe order, else the placeholder."""
        path = self.covers.find_cover_path(item_id)
        if path is None:
            return DEFAULT_COVER
        return QtCore.QUrl.fromLocalFile(self.files.resolve(path)).toString()

    def search_cover_by_playlist_id(self, playlist_id: str) -> CoverArt:
        return self.covers.resolve(playlist_id)

    def get_cover_from_id(self, song_id: str) -> bytes:
        return self.covers.song_cover(song_id)

    # -------------------------------------------------------------------------
    # Playback
    # -------------------------------------------------------------------------

    def set_song(self, song_id: str) -> None:
        self.controller.set_song(song_id)

    def play(self) -> None:
        self.controller.play()

    def pause(self) -> None:
        self.controller.pause()

    def play_pause(self) -> None:
        self.controller.play_pause()

    def get_audio(self):
        return self.controller.element

    def set_volume(self, level: int) -> None:
        self.controller.set_volume(level)

    def get_current_song(self) -> Optional[Song]:
        return self.controller.current_song()

    def set_queue(self, song_ids: Iterable[str]) -> None:
        self.controller.set_queue(song_ids)

    def skip(self) -> None:
        self.controller.skip()

    def rewind(self) -> None:
        self.controller.rewind()

    # -------------------------------------------------------------------------
    # Equalizer and graph
    # -------------------------------------------------------------------------

    def apply_eq_settings(self, settings: Optional[EqSettings] = None) -> None:
        self.controller.apply_eq_settings(settings)

    def set_eq_gain(self, band_index: int, gain_db: float) -> None:
        self.controller.set_eq_gain(band_index, gain_db)

    def ensure_audio_context_and_filters(self) -> None:
        self.controller.equalizer.ensure_graph(self.controller.element)

    def get_audio_context(self) -> Optional[AudioContext]:
        return self.controller.equalizer.context

    def get_analyser(self) -> Optional[AnalyserNode]:
        return self.controller.equalizer.analyser

    def set_analyser(self, analyser: AnalyserNode) -> None:
        self.controller.equalizer.set_analyser(analyser)

    def close(self) -> None:
        element = self.controller.element
        if hasattr(element, "stop"):
            element.stop()
        self.settings.sync()
        self.catalog.close()


def create_music_service(
    asset_root: Optional[str] = None,
    db_path: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
    element=None,
) -> MusicService:
    """
    Wire the default collaborators.

    Args:
        asset_root: Directory holding ``Vleer/Covers`` and ``Vleer/Songs``.
        db_path: sqlite file for the catalog.
        settings: Preference store; defaults to the platform QSettings scope.
        element: Audio element to drive; defaults to a sounddevice-backed one.
    """
    files = AssetFileSystem(asset_root or default_asset_root())
    catalog = CatalogStore(CatalogDatabase(db_path or default_db_path()), files)
    covers = CoverResolver(files, catalog)
    if settings is None:
        settings = EngineSettings()
    if element is None:
        element = AudioElement()
    equalizer = EqualizerGraph(store=settings)
    controller = PlaybackController(catalog, element, equalizer, settings=settings)
    logger.debug("Music service created (assets: %s)", files.root)
    return MusicService(catalog, covers, files, controller, settings)
