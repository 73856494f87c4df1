"""
Lazily built equalizer graph.

source -> peaking filter per band (ascending frequency) -> analyser -> output.
Built once per process on the first ``ensure_graph``; afterwards only gains
change. The live filters and the stored EqSettings are always written
together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

from PySide6 import QtCore

from config import EQ_CENTER_FREQS, EQ_GAIN_LIMIT_DB, EQ_Q
from dsp import (
    CONTEXT_RUNNING,
    CONTEXT_SUSPENDED,
    AnalyserNode,
    AudioContext,
    MediaElementSourceNode,
    PeakingFilterNode,
)
from errors import ValidationError
from models import EqSettings, GraphState
from settings import EngineSettings
from utils import clamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphHandle:
    context: AudioContext
    source: MediaElementSourceNode
    filters: tuple[PeakingFilterNode, ...]
    analyser: AnalyserNode


class EqualizerGraph(QtCore.QObject):
    graphStateChanged = QtCore.Signal(object)   # GraphState

    def __init__(
        self,
        settings: Optional[EqSettings] = None,
        store: Optional[EngineSettings] = None,
        context_factory: Callable[[], AudioContext] = AudioContext,
        center_freqs: tuple[float, ...] = EQ_CENTER_FREQS,
        parent=None,
    ):
        super().__init__(parent)
        self.center_freqs = tuple(center_freqs)
        if settings is None:
            settings = store.eq_settings() if store is not None else EqSettings.flat(len(self.center_freqs))
        self._check_cardinality(settings)
        self._settings = settings.copy()
        self._store = store
        self._context_factory = context_factory
        self._handle: Optional[GraphHandle] = None

    @property
    def band_count(self) -> int:
        return len(self.center_freqs)

    @property
    def handle(self) -> Optional[GraphHandle]:
        return self._handle

    @property
    def context(self) -> Optional[AudioContext]:
        return self._handle.context if self._handle else None

    @property
    def analyser(self) -> Optional[AnalyserNode]:
        return self._handle.analyser if self._handle else None

    @property
    def settings(self) -> EqSettings:
        return self._settings.copy()

    @property
    def state(self) -> GraphState:
        if self._handle is None:
            return GraphState.UNINITIALIZED
        if self._handle.context.state == CONTEXT_RUNNING:
            return GraphState.ACTIVE
        return GraphState.SUSPENDED

    def ensure_graph(self, element) -> GraphHandle:
        if self._handle is None:
            self._handle = self._build(element)
            self._write_filters()
            logger.debug("Equalizer graph built with %d bands", self.band_count)
        if self._handle.context.state == CONTEXT_SUSPENDED:
            self._handle.context.resume()
        return self._handle

    def set_gain(self, band_index: int, gain_db: float) -> None:
        if not 0 <= band_index < self.band_count:
            raise ValidationError(f"EQ band index {band_index} out of range 0..{self.band_count - 1}")
        gain_db = clamp(float(gain_db), -EQ_GAIN_LIMIT_DB, EQ_GAIN_LIMIT_DB)
        self._settings.set_gain(band_index, gain_db)
        if self._handle is not None:
            self._handle.filters[band_index].gain = gain_db
        self._persist()

    def apply_settings(self, settings: EqSettings) -> None:
        self._check_cardinality(settings)
        self._settings = EqSettings.from_gains(
            [clamp(g, -EQ_GAIN_LIMIT_DB, EQ_GAIN_LIMIT_DB) for g in settings.gains()],
            self.band_count,
        )
        self._write_filters()

    def set_analyser(self, analyser: AnalyserNode) -> None:
        """Put ``analyser`` between the last filter and the output in place of the current one."""
        if self._handle is None:
            raise ValidationError("Audio graph has not been built yet")
        if analyser.context is not self._handle.context:
            raise ValidationError("Analyser belongs to a different audio context")
        if analyser is self._handle.analyser:
            return
        last = self._handle.filters[-1] if self._handle.filters else self._handle.source
        last.disconnect()
        self._handle.analyser.disconnect()
        last.connect(analyser)
        analyser.connect(self._handle.context.destination)
        self._handle = replace(self._handle, analyser=analyser)

    def _build(self, element) -> GraphHandle:
        context = self._context_factory()
        context.stateChanged.connect(self._on_context_state_changed)
        source = context.create_media_element_source(element)
        filters = tuple(
            context.create_peaking_filter(freq, EQ_Q, 0.0) for freq in self.center_freqs
        )
        analyser = context.create_analyser()

        node = source
        for flt in filters:
            node = node.connect(flt)
        node.connect(analyser)
        analyser.connect(context.destination)
        return GraphHandle(context=context, source=source, filters=filters, analyser=analyser)

    def _write_filters(self) -> None:
        if self._handle is None:
            return
        for flt, band in zip(self._handle.filters, self._settings.bands):
            flt.gain = band.gain_db

    def _persist(self) -> None:
        if self._store is not None:
            self._store.set_eq_settings(self._settings)

    def _check_cardinality(self, settings: EqSettings) -> None:
        if len(settings) != self.band_count:
            raise ValidationError(f"Expected {self.band_count} EQ bands, got {len(settings)}")

    @QtCore.Slot(str)
    def _on_context_state_changed(self, _state: str) -> None:
        self.graphStateChanged.emit(self.state)
