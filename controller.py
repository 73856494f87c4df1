"""
Playback transport: the single owner of player state.

Idle -> (set_song) -> Paused <-> Playing. Track completion arrives from the
audio element over a queued connection and advances the queue; at most one
completion handler runs at a time.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from PySide6 import QtCore

from config import DEFAULT_VOLUME, REWIND_RESTART_THRESHOLD_SEC
from equalizer import EqualizerGraph
from errors import MediaError, NotFoundError
from library import CatalogStore
from models import EqSettings, PlaybackState, PlayerSnapshot, Song
from play_queue import PlayQueue
from settings import EngineSettings
from utils import clamp
from volume import volume_curve

logger = logging.getLogger(__name__)


class PlaybackController(QtCore.QObject):
    stateChanged = QtCore.Signal(object)    # PlaybackState
    songChanged = QtCore.Signal(object)     # Song | None
    volumeChanged = QtCore.Signal(int)
    mediaError = QtCore.Signal(object)      # MediaError

    def __init__(
        self,
        catalog: CatalogStore,
        element,
        equalizer: EqualizerGraph,
        queue: Optional[PlayQueue] = None,
        settings: Optional[EngineSettings] = None,
        parent=None,
    ):
        super().__init__(parent)
        self._catalog = catalog
        self._element = element
        self._equalizer = equalizer
        self._queue = queue if queue is not None else PlayQueue(
            restart_threshold_sec=REWIND_RESTART_THRESHOLD_SEC
        )
        self._settings = settings

        self._state = PlaybackState.IDLE
        self._current_song_id: Optional[str] = None
        self._volume = settings.volume() if settings is not None else DEFAULT_VOLUME

        self._completing = False
        self._pending_completions = 0

        element.ended.connect(self._on_track_ended, QtCore.Qt.ConnectionType.QueuedConnection)
        element.errorOccurred.connect(self._on_media_error)
        catalog.add_removal_guard(self._guard_song_removal)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def current_song_id(self) -> Optional[str]:
        return self._current_song_id

    @property
    def queue(self) -> PlayQueue:
        return self._queue

    @property
    def element(self):
        return self._element

    @property
    def equalizer(self) -> EqualizerGraph:
        return self._equalizer

    @property
    def volume(self) -> int:
        return self._volume

    def current_song(self) -> Optional[Song]:
        if self._current_song_id is None:
            return None
        try:
            return self._catalog.get_song_by_id(self._current_song_id)
        except NotFoundError:
            return None

    def snapshot(self) -> PlayerSnapshot:
        return PlayerSnapshot(
            state=self._state,
            current_song_id=self._current_song_id,
            volume=self._volume,
            queue=self._queue.ids,
            cursor=self._queue.cursor,
        )

    def _set_state(self, state: PlaybackState) -> None:
        if self._state != state:
            self._state = state
            self.stateChanged.emit(state)

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def set_song(self, song_id: str) -> None:
        self._load(song_id)
        if song_id in self._queue.ids:
            self._queue.select(song_id)

    def _load(self, song_id: str) -> None:
        song = self._catalog.get_song_by_id(song_id)
        source = self._catalog.source_path(song_id)
        self._element.load(source)
        self._current_song_id = song.id
        self._set_state(PlaybackState.PAUSED)
        self.songChanged.emit(song)

    def play(self) -> None:
        if self._state == PlaybackState.PLAYING and not self._element.paused:
            return
        if self._current_song_id is None:
            queued = self._queue.current()
            if queued is None:
                return
            self._load(queued)
        self._equalizer.ensure_graph(self._element)
        self._apply_volume()
        self._element.play()
        # play() reports a missing source synchronously and stays paused.
        if self._element.paused:
            self._set_state(PlaybackState.PAUSED)
        else:
            self._set_state(PlaybackState.PLAYING)

    def pause(self) -> None:
        if self._state == PlaybackState.IDLE:
            return
        self._element.pause()
        self._set_state(PlaybackState.PAUSED)

    def play_pause(self) -> None:
        self._apply_volume()
        if self._element.paused:
            self.play()
        else:
            self.pause()

    def set_volume(self, level: int) -> None:
        level = int(clamp(int(level), 0, 100))
        self._volume = level
        if self._settings is not None:
            self._settings.set_volume(level)
        self._apply_volume()
        self.volumeChanged.emit(level)

    def _apply_volume(self) -> None:
        self._element.volume = volume_curve(self._volume)

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    def set_queue(self, song_ids: Iterable[str]) -> None:
        ids = list(song_ids)
        for song_id in ids:
            self._catalog.get_song_by_id(song_id)
        self._queue.set_queue(ids)

    def skip(self) -> None:
        if not self._queue:
            return
        self._queue.skip()
        self._load_and_play(self._queue.current())

    def rewind(self) -> None:
        if not self._queue:
            if self._current_song_id is not None:
                self._element.seek(0.0)
            return
        if self._queue.rewind(self._element.current_time):
            self._load_and_play(self._queue.current())
        else:
            self._element.seek(0.0)

    def _load_and_play(self, song_id: Optional[str]) -> None:
        if song_id is None:
            self._go_idle()
            return
        self._load(song_id)
        self.play()

    def _go_idle(self) -> None:
        self._element.pause()
        self._current_song_id = None
        self._set_state(PlaybackState.IDLE)
        self.songChanged.emit(None)

    # -------------------------------------------------------------------------
    # Equalizer
    # -------------------------------------------------------------------------

    def set_eq_gain(self, band_index: int, gain_db: float) -> None:
        self._equalizer.set_gain(band_index, gain_db)

    def apply_eq_settings(self, settings: Optional[EqSettings] = None) -> None:
        if settings is None:
            if self._settings is None:
                return
            settings = self._settings.eq_settings()
        self._equalizer.apply_settings(settings)

    # -------------------------------------------------------------------------
    # Audio element events
    # -------------------------------------------------------------------------

    @QtCore.Slot()
    def _on_track_ended(self) -> None:
        if self._completing:
            self._pending_completions += 1
            return
        self._completing = True
        try:
            self._advance_after_completion()
            while self._pending_completions:
                self._pending_completions -= 1
                self._advance_after_completion()
        finally:
            # Completions that arrived before a failure stay counted for the next run.
            self._completing = False

    def _advance_after_completion(self) -> None:
        self._queue.skip()
        next_id = self._queue.current()
        if next_id is None:
            self._go_idle()
            return
        try:
            self._load(next_id)
        except NotFoundError:
            logger.warning("Queued song %s vanished from the catalog; stopping", next_id)
            self._go_idle()
            return
        self.play()

    @QtCore.Slot(object)
    def _on_media_error(self, error: MediaError) -> None:
        logger.warning("Error with audio element: %s", error.describe())
        if self._state == PlaybackState.PLAYING:
            self._set_state(PlaybackState.PAUSED)
        self.mediaError.emit(error)

    def _guard_song_removal(self, song_id: str) -> Optional[str]:
        if song_id == self._current_song_id:
            return "it is the current song"
        if song_id in self._queue.ids:
            return "it is in the play queue"
        return None
