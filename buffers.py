from __future__ import annotations

import threading
from collections import deque
from typing import Optional

import numpy as np


class PcmRingBuffer:
    """
    Bounded PCM queue for one track: decoder thread in, output callback out.

    Besides the frames themselves it tracks how much has been played (the
    element derives ``current_time`` from it) and whether the decoder has
    reached the end of the stream, so the element can tell a drained track
    from a momentary underrun.
    """

    def __init__(self, channels: int, max_seconds: float, sample_rate: int):
        self.channels = channels
        self.sample_rate = sample_rate
        self.max_frames = max(1, int(max_seconds * sample_rate))
        self._chunks: deque[np.ndarray] = deque()
        self._queued = 0
        self._played = 0
        self._eof = False
        self._cond = threading.Condition()

    def clear(self) -> None:
        """Forget queued audio and start a new track."""
        with self._cond:
            self._chunks.clear()
            self._queued = 0
            self._played = 0
            self._eof = False
            self._cond.notify_all()

    def frames_available(self) -> int:
        with self._cond:
            return self._queued

    def frames_played(self) -> int:
        with self._cond:
            return self._played

    def mark_eof(self) -> None:
        with self._cond:
            self._eof = True

    def drained(self) -> bool:
        with self._cond:
            return self._eof and self._queued == 0

    def push_blocking(self, frames: np.ndarray, stop_event: Optional[threading.Event] = None) -> None:
        """Queue ``frames`` (n, channels), waiting for room; gives up once ``stop_event`` is set."""
        if frames.size == 0:
            return
        if frames.ndim != 2 or frames.shape[1] != self.channels:
            raise ValueError(f"expected (n, {self.channels}) frames, got {frames.shape}")
        frames = frames.astype(np.float32, copy=False)

        pos = 0
        with self._cond:
            while pos < frames.shape[0]:
                room = self.max_frames - self._queued
                if room <= 0:
                    if stop_event is not None and stop_event.is_set():
                        return
                    self._cond.wait(timeout=0.05)
                    continue
                chunk = frames[pos : pos + room]
                self._chunks.append(chunk)
                self._queued += chunk.shape[0]
                pos += chunk.shape[0]

    def pop_into(self, out: np.ndarray) -> int:
        """Fill ``out`` from the queue; the unfilled tail is silence. Returns frames copied."""
        want = out.shape[0]
        got = 0
        with self._cond:
            while got < want and self._chunks:
                head = self._chunks.popleft()
                n = min(want - got, head.shape[0])
                out[got : got + n] = head[:n]
                if n < head.shape[0]:
                    self._chunks.appendleft(head[n:])
                got += n
            self._queued -= got
            self._played += got
            self._cond.notify_all()
        out[got:].fill(0)
        return got
