from __future__ import annotations

import os

from PySide6 import QtCore

from utils import env_flag

APP_DIR_NAME = "Vleer"
COVERS_DIR = f"{APP_DIR_NAME}/Covers"
SONGS_DIR = f"{APP_DIR_NAME}/Songs"
SONG_EXTENSION = "webm"

# Probe order doubles as the tie-break when stale covers share an id.
COVER_EXTENSIONS: tuple[str, ...] = ("png", "jpg", "jpeg", "gif")
DEFAULT_COVER = "/cover.png"

EQ_CENTER_FREQS: tuple[float, ...] = (
    31.0, 62.0, 125.0, 250.0, 500.0, 1000.0, 2000.0, 4000.0, 8000.0, 16000.0,
)
EQ_BAND_COUNT = len(EQ_CENTER_FREQS)
EQ_Q = 1.0
EQ_GAIN_LIMIT_DB = 12.0

ANALYSER_FFT_SIZE = 256
ANALYSER_SMOOTHING = 0.8
ANALYSER_MIN_DB = -100.0
ANALYSER_MAX_DB = -30.0

REWIND_RESTART_THRESHOLD_SEC = 3.0

DEFAULT_VOLUME = 50

SAMPLE_RATE = 44100
CHANNELS = 2
BLOCKSIZE_FRAMES = 1024
OUTPUT_LATENCY = "high"
RING_MAX_SECONDS = 2.0
PREBUFFER_SEC = 0.3

SETTINGS_ORGANIZATION = "Vleer"
SETTINGS_APPLICATION = "VleerEngine"

DEBUG_AUDIO = env_flag("VLEER_DEBUG_AUDIO")


def default_asset_root() -> str:
    override = os.environ.get("VLEER_ASSET_ROOT")
    if override:
        return override
    base = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.StandardLocation.MusicLocation)
    return base or os.path.expanduser("~")


def default_db_path() -> str:
    override = os.environ.get("VLEER_DB_PATH")
    if override:
        return override
    base = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.StandardLocation.AppDataLocation)
    if not base:
        base = os.path.join(os.path.expanduser("~"), f".{APP_DIR_NAME.lower()}")
    os.makedirs(base, exist_ok=True)
    return os.path.join(base, "data.db")
