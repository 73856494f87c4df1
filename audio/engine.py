from __future__ import annotations

import logging
import os
import subprocess
import threading
from typing import List, Optional

import numpy as np
from PySide6 import QtCore

try:
    import sounddevice as sd
    _sounddevice_import_error = None
except Exception as e:
    sd = None
    _sounddevice_import_error = e

from buffers import PcmRingBuffer
from config import (
    BLOCKSIZE_FRAMES,
    CHANNELS,
    DEBUG_AUDIO,
    OUTPUT_LATENCY,
    PREBUFFER_SEC,
    RING_MAX_SECONDS,
    SAMPLE_RATE,
)
from dsp import MediaElementSourceNode
from errors import MediaError, MediaErrorCode
from utils import clamp, have_exe

logger = logging.getLogger(__name__)


def make_ffmpeg_cmd(path: str, start_sec: float, sample_rate: int, channels: int) -> List[str]:
    return [
        "ffmpeg", "-hide_banner", "-loglevel", "error",
        "-ss", str(max(0.0, start_sec)),
        "-i", path,
        "-vn",
        "-ac", str(channels),
        "-ar", str(sample_rate),
        "-f", "f32le",
        "pipe:1"
    ]


# Decoder thread
# -----------------------------

class DecoderThread(threading.Thread):
    """
    Reads float32 PCM from ffmpeg and pushes it into the ring buffer.

    Reports back through ``event_cb(kind, payload)``: "ready" once the
    prebuffer is filled, "error" with a MediaError, "eof" when the stream
    ended on its own. Nothing is reported after stop().
    """
    def __init__(self,
                 track_path: str,
                 start_sec: float,
                 sample_rate: int,
                 channels: int,
                 ring: PcmRingBuffer,
                 event_cb):
        super().__init__(daemon=True)
        self.track_path = track_path
        self.start_sec = float(start_sec)
        self.sample_rate = sample_rate
        self.channels = channels
        self.ring = ring
        self._event_cb = event_cb
        self._stop_event = threading.Event()
        self._proc: Optional[subprocess.Popen] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._stderr_lines: List[str] = []
        self._read_bytes = BLOCKSIZE_FRAMES * 2 * channels * 4
        self._frame_bytes = channels * 4
        self._byte_buffer = bytearray()

    def stop(self):
        self._stop_event.set()
        self._terminate()

    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _terminate(self) -> None:
        proc = self._proc
        if proc is not None and proc.poll() is None:
            try:
                proc.terminate()
            except OSError as e:
                logger.debug("ffmpeg terminate failed: %s", e)

    def _emit(self, kind: str, payload=None) -> None:
        if not self._stop_event.is_set():
            self._event_cb(kind, payload)

    def _stderr_reader(self, stderr) -> None:
        # Keeps ffmpeg from blocking on a full stderr pipe; the tail is kept for error reports.
        try:
            for raw_line in iter(stderr.readline, b""):
                self._stderr_lines.append(raw_line.decode("utf-8", errors="replace"))
                del self._stderr_lines[:-20]
        except (OSError, ValueError):
            return

    def _stderr_text(self) -> str:
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)
        return "".join(self._stderr_lines).strip()

    def _read_pcm_chunk(self, stdout) -> Optional[np.ndarray]:
        while len(self._byte_buffer) < self._frame_bytes:
            chunk = stdout.read(self._read_bytes)
            if not chunk:
                break
            self._byte_buffer.extend(chunk)
        usable = (len(self._byte_buffer) // self._frame_bytes) * self._frame_bytes
        if usable == 0:
            return None
        data = bytes(self._byte_buffer[:usable])
        del self._byte_buffer[:usable]
        return np.frombuffer(data, dtype=np.float32).reshape((-1, self.channels))

    def run(self):
        cmd = make_ffmpeg_cmd(self.track_path, self.start_sec, self.sample_rate, self.channels)
        try:
            self._proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            self._emit("error", MediaError(MediaErrorCode.SRC_NOT_SUPPORTED, f"Failed to start ffmpeg: {e}"))
            return

        self._stderr_thread = threading.Thread(target=self._stderr_reader, args=(self._proc.stderr,), daemon=True)
        self._stderr_thread.start()

        stdout = self._proc.stdout
        prebuffer_frames = int(PREBUFFER_SEC * self.sample_rate)
        frames_read = 0
        ready = False
        try:
            while not self._stop_event.is_set():
                x = self._read_pcm_chunk(stdout)
                if x is None:
                    break
                frames_read += x.shape[0]
                self.ring.push_blocking(x, stop_event=self._stop_event)
                if not ready and frames_read >= prebuffer_frames:
                    ready = True
                    self._emit("ready")
        except (OSError, ValueError) as e:
            self._terminate()
            self._emit("error", MediaError(MediaErrorCode.DECODE, f"Decoder error: {e}"))
            return

        if self._stop_event.is_set():
            self._terminate()
            return

        # stdout is closed; let ffmpeg exit on its own before judging the run.
        returncode = self._proc.wait()
        stderr = self._stderr_text()
        if returncode != 0 and frames_read == 0:
            self._emit("error", MediaError(MediaErrorCode.SRC_NOT_SUPPORTED, stderr or f"ffmpeg exited with {returncode}"))
            return
        if returncode != 0:
            self._emit("error", MediaError(MediaErrorCode.DECODE, stderr or f"ffmpeg exited with {returncode}"))
            return
        if not ready:
            self._emit("ready")
        self.ring.mark_eof()
        self._emit("eof")


# -----------------------------
# Media element
# -----------------------------

class AudioElement(QtCore.QObject):
    """
    Plays one source file at a time: ffmpeg decodes, sounddevice renders.

    Once a MediaElementSourceNode is attached, every output block is routed
    through that node's context graph before the volume is applied.
    """
    ended = QtCore.Signal()
    errorOccurred = QtCore.Signal(object)   # MediaError
    playingChanged = QtCore.Signal(bool)

    # kind, origin (decoder thread or output stream), payload
    _decoderEvent = QtCore.Signal(str, object, object)

    def __init__(self, sample_rate: int = SAMPLE_RATE, channels: int = CHANNELS, parent=None):
        super().__init__(parent)
        self.sample_rate = sample_rate
        self.channels = channels

        self._src: Optional[str] = None
        self._paused = True
        self._volume = 1.0
        self._seek_offset_sec = 0.0
        self._ended_reported = False

        self._ring = PcmRingBuffer(channels, max_seconds=RING_MAX_SECONDS, sample_rate=sample_rate)
        self._decoder: Optional[DecoderThread] = None
        self._stream = None
        self._source_node: Optional[MediaElementSourceNode] = None
        self._callback_calls = 0

        self._decoderEvent.connect(self._on_decoder_event)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def src(self) -> Optional[str]:
        return self._src

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def volume(self) -> float:
        return self._volume

    @volume.setter
    def volume(self, v: float) -> None:
        self._volume = clamp(float(v), 0.0, 1.0)

    @property
    def current_time(self) -> float:
        return self._seek_offset_sec + self._ring.frames_played() / float(self.sample_rate)

    @property
    def source_node(self) -> Optional[MediaElementSourceNode]:
        return self._source_node

    def attach_source(self, node: MediaElementSourceNode) -> None:
        self._source_node = node

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def load(self, path: str) -> None:
        self._stop_decoder()
        self._set_paused(True)
        self._src = path
        self._seek_offset_sec = 0.0
        self._ended_reported = False
        self._ring.clear()

    def play(self) -> None:
        if self._src is None:
            return
        if sd is None:
            self._report_error(MediaError(MediaErrorCode.ABORTED, f"sounddevice not available: {_sounddevice_import_error}"))
            return
        if not have_exe("ffmpeg"):
            self._report_error(MediaError(MediaErrorCode.SRC_NOT_SUPPORTED, "ffmpeg not found in PATH."))
            return
        if not os.path.exists(self._src):
            self._report_error(MediaError(MediaErrorCode.SRC_NOT_SUPPORTED, f"File not found: {self._src}"))
            return

        if self._decoder is None or self._ended_reported:
            if self._ended_reported:
                self._seek_offset_sec = 0.0
                self._ended_reported = False
            self._start_decoder(self._seek_offset_sec)
        self._set_paused(False)
        self._ensure_stream()

    def pause(self) -> None:
        self._set_paused(True)

    def seek(self, target_sec: float) -> None:
        target_sec = max(0.0, float(target_sec))
        self._stop_decoder()
        self._ring.clear()
        self._seek_offset_sec = target_sec
        self._ended_reported = False
        if self._src is not None and not self._paused:
            self._start_decoder(target_sec)

    def stop(self) -> None:
        decoder = self._decoder
        self._stop_decoder()
        if decoder is not None and decoder.is_alive():
            decoder.join(timeout=1.0)
        self._set_paused(True)
        self._close_stream()
        self._ring.clear()

    def _set_paused(self, paused: bool) -> None:
        if self._paused != paused:
            self._paused = paused
            self.playingChanged.emit(not paused)

    # -------------------------------------------------------------------------
    # Decoder
    # -------------------------------------------------------------------------

    def _start_decoder(self, start_sec: float) -> None:
        self._stop_decoder()
        self._ring.clear()
        self._seek_offset_sec = start_sec
        holder: dict = {}
        decoder = DecoderThread(
            track_path=self._src,
            start_sec=start_sec,
            sample_rate=self.sample_rate,
            channels=self.channels,
            ring=self._ring,
            event_cb=lambda kind, payload: self._decoderEvent.emit(kind, holder.get("decoder"), payload),
        )
        holder["decoder"] = decoder
        self._decoder = decoder
        decoder.start()

    def _stop_decoder(self) -> None:
        if self._decoder is not None:
            self._decoder.stop()
            self._decoder = None

    @QtCore.Slot(str, object, object)
    def _on_decoder_event(self, kind: str, origin, payload) -> None:
        if kind == "stream_finished":
            if origin is None or origin is not self._stream:
                return
            # The output went away (device lost, host sleep): the graph stops.
            self._stream = None
            if self._source_node is not None:
                self._source_node.context.suspend()
            return

        if origin is None or origin is not self._decoder:
            return
        if kind == "error":
            self._stop_decoder()
            self._report_error(payload)
        elif kind == "drained":
            if self._ended_reported:
                return
            self._ended_reported = True
            self._decoder = None
            self._set_paused(True)
            self.ended.emit()
        elif kind in ("ready", "eof"):
            logger.debug("Decoder %s: %s", kind, self._src)

    def _report_error(self, error: MediaError) -> None:
        self._set_paused(True)
        self.errorOccurred.emit(error)

    # -------------------------------------------------------------------------
    # Output stream
    # -------------------------------------------------------------------------

    def _render_block(self, outdata: np.ndarray) -> None:
        self._callback_calls += 1
        if self._paused:
            outdata.fill(0)
            return
        block = np.zeros(outdata.shape, dtype=np.float32)
        filled = self._ring.pop_into(block)
        node = self._source_node
        if node is not None:
            block = node.context.render(node, block)
        vol = self._volume
        if vol == 0.0:
            outdata.fill(0)
        else:
            outdata[:] = block * vol if vol != 1.0 else block
        if DEBUG_AUDIO and self._callback_calls % 200 == 0:
            logger.debug("Rendered %d/%d frames (ring %d)", filled, outdata.shape[0], self._ring.frames_available())
        decoder = self._decoder
        if decoder is not None and not self._ended_reported and self._ring.drained():
            self._decoderEvent.emit("drained", decoder, None)

    def _ensure_stream(self) -> None:
        if self._stream is not None:
            if not self._stream.active:
                self._stream.start()
            return

        holder: dict = {}

        def callback(outdata, frames, time_info, status):
            self._render_block(outdata)

        def finished():
            self._decoderEvent.emit("stream_finished", holder.get("stream"), None)

        try:
            self._stream = holder["stream"] = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=BLOCKSIZE_FRAMES,
                latency=OUTPUT_LATENCY,
                callback=callback,
                finished_callback=finished,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            self._report_error(MediaError(MediaErrorCode.ABORTED, f"Audio output error: {e}"))

    def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                logger.debug("Closing output stream failed: %s", e)
