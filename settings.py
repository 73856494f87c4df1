from __future__ import annotations

import logging
from typing import Optional

from PySide6 import QtCore

from config import (
    DEFAULT_VOLUME,
    EQ_BAND_COUNT,
    SETTINGS_APPLICATION,
    SETTINGS_ORGANIZATION,
)
from models import EqSettings
from utils import clamp, safe_float

logger = logging.getLogger(__name__)


class EngineSettings:
    """
    Persisted playback preferences (volume level and EQ gains).

    Backed by QSettings; pass ``path`` to use an ini file instead of the
    platform's default store.
    """

    VOLUME_KEY = "audio/volume"
    EQ_GAINS_KEY = "eq/gains"

    def __init__(self, path: Optional[str] = None, band_count: int = EQ_BAND_COUNT):
        if path is None:
            self._qsettings = QtCore.QSettings(SETTINGS_ORGANIZATION, SETTINGS_APPLICATION)
        else:
            self._qsettings = QtCore.QSettings(path, QtCore.QSettings.Format.IniFormat)
        self.band_count = band_count

    @property
    def qsettings(self) -> QtCore.QSettings:
        return self._qsettings

    def volume(self) -> int:
        raw = self._qsettings.value(self.VOLUME_KEY, DEFAULT_VOLUME)
        return int(clamp(round(safe_float(str(raw), DEFAULT_VOLUME)), 0, 100))

    def set_volume(self, level: int) -> None:
        self._qsettings.setValue(self.VOLUME_KEY, int(clamp(int(level), 0, 100)))

    def eq_settings(self) -> EqSettings:
        values = self._qsettings.value(self.EQ_GAINS_KEY, [])
        return EqSettings.from_gains(self._normalize_eq_gains(values, self.band_count), self.band_count)

    def set_eq_settings(self, settings: EqSettings) -> None:
        self._qsettings.setValue(self.EQ_GAINS_KEY, [float(g) for g in settings.gains()])

    def sync(self) -> None:
        self._qsettings.sync()
        if self._qsettings.status() != QtCore.QSettings.Status.NoError:
            logger.warning("Failed to write settings to %s", self._qsettings.fileName())

    @staticmethod
    def _normalize_eq_gains(values: object, band_count: int) -> list[float]:
        if isinstance(values, str):
            values = [values]
        if isinstance(values, (tuple, list)):
            gains = [safe_float(str(v), 0.0) for v in values]
        else:
            gains = []
        if len(gains) < band_count:
            gains.extend([0.0] * (band_count - len(gains)))
        return [float(g) for g in gains[:band_count]]
