from __future__ import annotations

import logging
import math
import threading
from typing import Optional

import numpy as np
from PySide6 import QtCore
from scipy.signal import sosfilt

from config import (
    ANALYSER_FFT_SIZE,
    ANALYSER_MAX_DB,
    ANALYSER_MIN_DB,
    ANALYSER_SMOOTHING,
    CHANNELS,
    SAMPLE_RATE,
)
from errors import ValidationError

logger = logging.getLogger(__name__)

CONTEXT_SUSPENDED = "suspended"
CONTEXT_RUNNING = "running"
CONTEXT_CLOSED = "closed"


# -----------------------------
# Graph nodes
# -----------------------------

class AudioNode:
    """
    A processing stage in the render graph.

    Blocks are float32 arrays shaped (frames, channels). ``render`` processes
    a block and pushes the result through every connected output; the value
    reaching the destination is returned.
    """
    name = "AudioNode"

    def __init__(self, context: "AudioContext"):
        self.context = context
        self._outputs: list[AudioNode] = []

    @property
    def outputs(self) -> tuple["AudioNode", ...]:
        return tuple(self._outputs)

    def connect(self, node: "AudioNode") -> "AudioNode":
        if node.context is not self.context:
            raise ValidationError("Cannot connect nodes from different audio contexts")
        if node not in self._outputs:
            self._outputs.append(node)
        return node

    def disconnect(self) -> None:
        self._outputs.clear()

    def process(self, x: np.ndarray) -> np.ndarray:
        return x

    def render(self, x: np.ndarray) -> Optional[np.ndarray]:
        y = self.process(x)
        mixed: Optional[np.ndarray] = None
        for node in self._outputs:
            out = node.render(y)
            if out is None:
                continue
            mixed = out if mixed is None else mixed + out
        return mixed


class MediaElementSourceNode(AudioNode):
    name = "MediaElementSource"

    def __init__(self, context: "AudioContext", element):
        super().__init__(context)
        self.element = element


class AudioDestinationNode(AudioNode):
    name = "Destination"

    def render(self, x: np.ndarray) -> Optional[np.ndarray]:
        return x


def peaking_coeffs(f0: float, gain_db: float, q: float, sample_rate: int) -> tuple[float, float, float, float, float]:
    A = 10.0 ** (gain_db / 40.0)
    w0 = 2.0 * math.pi * f0 / float(sample_rate)
    cos_w0 = math.cos(w0)
    sin_w0 = math.sin(w0)
    alpha = sin_w0 / (2.0 * q)

    b0 = 1.0 + alpha * A
    b1 = -2.0 * cos_w0
    b2 = 1.0 - alpha * A
    a0 = 1.0 + alpha / A
    a1 = -2.0 * cos_w0
    a2 = 1.0 - alpha / A

    b0 /= a0
    b1 /= a0
    b2 /= a0
    a1 /= a0
    a2 /= a0
    return b0, b1, b2, a1, a2


class PeakingFilterNode(AudioNode):
    """Biquad peaking filter for one EQ band."""
    name = "Peaking"

    def __init__(self, context: "AudioContext", frequency: float, q: float, gain_db: float = 0.0):
        super().__init__(context)
        self.frequency = float(frequency)
        self.q = float(q)
        self._gain_db = float(gain_db)
        self._lock = threading.Lock()
        self._sos = self._make_sos(self._gain_db)
        self._zi = np.zeros((1, context.channels, 2), dtype=np.float64)

    def _make_sos(self, gain_db: float) -> np.ndarray:
        b0, b1, b2, a1, a2 = peaking_coeffs(self.frequency, gain_db, self.q, self.context.sample_rate)
        return np.array([[b0, b1, b2, 1.0, a1, a2]], dtype=np.float64)

    @property
    def gain(self) -> float:
        return self._gain_db

    @gain.setter
    def gain(self, gain_db: float) -> None:
        sos = self._make_sos(float(gain_db))
        with self._lock:
            self._gain_db = float(gain_db)
            self._sos = sos

    def process(self, x: np.ndarray) -> np.ndarray:
        if x.size == 0:
            return x
        with self._lock:
            if abs(self._gain_db) <= 1e-3:
                return x
            y = np.empty_like(x)
            for ch in range(min(x.shape[1], self._zi.shape[1])):
                out, zi = sosfilt(self._sos, x[:, ch], zi=self._zi[:, ch, :])
                y[:, ch] = out
                self._zi[:, ch, :] = zi
        return y


class AnalyserNode(AudioNode):
    """
    Pass-through node exposing the spectrum of the most recent samples.
    """
    name = "Analyser"

    def __init__(self, context: "AudioContext", fft_size: int = ANALYSER_FFT_SIZE):
        super().__init__(context)
        self.smoothing_time_constant = ANALYSER_SMOOTHING
        self.min_decibels = ANALYSER_MIN_DB
        self.max_decibels = ANALYSER_MAX_DB
        self._lock = threading.Lock()
        self.fft_size = fft_size

    @property
    def fft_size(self) -> int:
        return self._fft_size

    @fft_size.setter
    def fft_size(self, size: int) -> None:
        size = int(size)
        if size < 32 or size > 32768 or size & (size - 1):
            raise ValidationError(f"fft_size must be a power of two in 32..32768, got {size}")
        with self._lock:
            self._fft_size = size
            self._window = np.blackman(size).astype(np.float32)
            self._samples = np.zeros(size, dtype=np.float32)
            self._smoothed = np.zeros(size // 2, dtype=np.float32)

    @property
    def frequency_bin_count(self) -> int:
        return self._fft_size // 2

    def process(self, x: np.ndarray) -> np.ndarray:
        if x.size == 0:
            return x
        mono = x.mean(axis=1) if x.ndim == 2 else x
        with self._lock:
            n = self._fft_size
            if mono.shape[0] >= n:
                self._samples[:] = mono[-n:]
            else:
                self._samples = np.roll(self._samples, -mono.shape[0])
                self._samples[-mono.shape[0]:] = mono
        return x

    def get_float_time_domain_data(self) -> np.ndarray:
        with self._lock:
            return self._samples.copy()

    def get_float_frequency_data(self) -> np.ndarray:
        with self._lock:
            spectrum = np.abs(np.fft.rfft(self._samples * self._window))[: self.frequency_bin_count]
            spectrum /= float(self._fft_size)
            tau = self.smoothing_time_constant
            self._smoothed = tau * self._smoothed + (1.0 - tau) * spectrum.astype(np.float32)
            smoothed = self._smoothed.copy()
        with np.errstate(divide="ignore"):
            return (20.0 * np.log10(smoothed)).astype(np.float32)

    def get_byte_frequency_data(self) -> np.ndarray:
        db = self.get_float_frequency_data()
        span = self.max_decibels - self.min_decibels
        scaled = (db - self.min_decibels) * (255.0 / span)
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)


# -----------------------------
# Context
# -----------------------------

class AudioContext(QtCore.QObject):
    """
    Owner of a render graph.

    Starts suspended; ``resume`` lets audio through and ``suspend`` is
    called by the host when the output goes away. While not running the
    graph renders silence.
    """
    stateChanged = QtCore.Signal(str)

    def __init__(self, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS, parent=None):
        super().__init__(parent)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self._state = CONTEXT_SUSPENDED
        self.destination = AudioDestinationNode(self)
        self._sources: dict[int, MediaElementSourceNode] = {}

    @property
    def state(self) -> str:
        return self._state

    def _set_state(self, state: str) -> None:
        if self._state != state:
            self._state = state
            logger.debug("Audio context %s", state)
            self.stateChanged.emit(state)

    def resume(self) -> None:
        if self._state == CONTEXT_CLOSED:
            raise ValidationError("Cannot resume a closed audio context")
        self._set_state(CONTEXT_RUNNING)

    def suspend(self) -> None:
        if self._state == CONTEXT_RUNNING:
            self._set_state(CONTEXT_SUSPENDED)

    def close(self) -> None:
        self._set_state(CONTEXT_CLOSED)

    def create_media_element_source(self, element) -> MediaElementSourceNode:
        key = id(element)
        if key in self._sources:
            raise ValidationError("Media element is already connected to a source node")
        node = MediaElementSourceNode(self, element)
        self._sources[key] = node
        element.attach_source(node)
        return node

    def create_analyser(self) -> AnalyserNode:
        return AnalyserNode(self)

    def create_peaking_filter(self, frequency: float, q: float, gain_db: float = 0.0) -> PeakingFilterNode:
        return PeakingFilterNode(self, frequency, q, gain_db)

    def render(self, source: MediaElementSourceNode, x: np.ndarray) -> np.ndarray:
        if self._state != CONTEXT_RUNNING:
            return np.zeros_like(x)
        y = source.render(x)
        if y is None:
            return np.zeros_like(x)
        return y
