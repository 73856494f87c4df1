from __future__ import annotations

import os

import pytest
from PySide6 import QtCore

from library import CatalogStore
from library_db import CatalogDatabase
from models import Playlist, Song
from settings import EngineSettings
from storage import AssetFileSystem


@pytest.fixture(scope="session")
def qapp():
    app = QtCore.QCoreApplication.instance()
    if app is None:
        app = QtCore.QCoreApplication([])
    return app


class FakeAudioElement(QtCore.QObject):
    """Scripted stand-in for audio.engine.AudioElement."""

    ended = QtCore.Signal()
    errorOccurred = QtCore.Signal(object)
    playingChanged = QtCore.Signal(bool)

    def __init__(self):
        super().__init__()
        self.src = None
        self.paused = True
        self.volume = 1.0
        self.current_time = 0.0
        self.source_node = None
        self.loads = []
        self.seeks = []
        self.play_calls = 0
        self.stopped = False

    def attach_source(self, node):
        self.source_node = node

    def load(self, path):
        self.src = path
        self.paused = True
        self.current_time = 0.0
        self.loads.append(path)

    def play(self):
        if self.src is None:
            return
        self.play_calls += 1
        self.paused = False

    def pause(self):
        self.paused = True

    def seek(self, target_sec):
        self.current_time = float(target_sec)
        self.seeks.append(float(target_sec))

    def stop(self):
        self.stopped = True
        self.paused = True

    def finish(self):
        """Simulate the natural end of the current track."""
        self.paused = True
        self.ended.emit()


@pytest.fixture
def element(qapp):
    return FakeAudioElement()


@pytest.fixture
def asset_root(tmp_path):
    root = tmp_path / "assets"
    root.mkdir()
    return str(root)


@pytest.fixture
def files(asset_root):
    return AssetFileSystem(asset_root)


@pytest.fixture
def db(tmp_path):
    database = CatalogDatabase(str(tmp_path / "data.db"))
    yield database
    database.close()


@pytest.fixture
def catalog(db, files):
    store = CatalogStore(db, files)
    store.load()
    return store


@pytest.fixture
def songs(catalog):
    items = [Song(id=sid, title=f"Title {sid}", artist="Artist", length=180.0) for sid in ("a", "b", "c")]
    for song in items:
        catalog.add_song_data(song)
    return items


@pytest.fixture
def playlist(catalog, songs):
    pl = Playlist(id="p1", name="Mix", songs=["a", "b"])
    catalog.create_playlist(pl)
    return pl


@pytest.fixture
def settings_path(tmp_path):
    return str(tmp_path / "settings.ini")


@pytest.fixture
def engine_settings(qapp, settings_path):
    return EngineSettings(settings_path)


def write_file(root, relative, data=b"x"):
    full = os.path.join(root, *relative.split("/"))
    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, "wb") as f:
        f.write(data)
    return full


@pytest.fixture
def write_asset(asset_root):
    def _write(relative, data=b"x"):
        return write_file(asset_root, relative, data)
    return _write
