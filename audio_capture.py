"""
UltraECG - Audio Capture
Microphone capture via sounddevice. Keeps only the newest analyser frame.
"""

import threading
import time
from typing import Optional

import numpy as np
import sounddevice as sd

from config import AudioConfig
from logging_utils import log_event


def list_input_devices() -> list[dict]:
    """Input-capable devices as dicts with index, name, inputs and default rate."""
    devices = []
    for i, d in enumerate(sd.query_devices()):
        if d['max_input_channels'] <= 0:
            continue
        devices.append({
            'index': i,
            'name': d['name'],
            'inputs': d['max_input_channels'],
            'sample_rate': d['default_samplerate'],
        })
    return devices


class AudioCapture:
    """Mono input stream feeding a lock-protected rolling frame.

    The PortAudio callback only copies samples in; the tick timer reads a
    copy of the newest ``fft_size`` samples with ``latest_frame``.
    """

    def __init__(self, config: AudioConfig):
        self.config = config
        self.stream: Optional[sd.InputStream] = None
        self.running = False
        self.sample_rate = int(config.sample_rate)
        self._frame = np.zeros(config.fft_size, dtype=np.float32)
        self._frame_lock = threading.Lock()
        self._overflow_count = 0
        self._started_at = 0.0

    def start(self) -> bool:
        """Open the input stream. Returns False (and logs) when the device fails."""
        if self.running:
            return True
        try:
            self.stream = sd.InputStream(
                device=self.config.device_index,
                channels=1,
                samplerate=self.config.sample_rate,
                blocksize=self.config.block_size,
                dtype='float32',
                callback=self._callback,
            )
            self.sample_rate = int(self.stream.samplerate)
            self.stream.start()
        except (sd.PortAudioError, ValueError) as e:
            log_event("ERROR", "Audio", "Failed to start capture", error=e)
            if self.stream is not None:
                self.stream.close()
            self.stream = None
            self.running = False
            return False

        with self._frame_lock:
            self._frame[:] = 0.0
        self._overflow_count = 0
        self._started_at = time.monotonic()
        self.running = True
        log_event("INFO", "Audio", "Capture started",
                  device=self.config.device_index, sample_rate=self.sample_rate,
                  block=self.config.block_size)
        return True

    def stop(self) -> None:
        """Stop and close the stream."""
        self.running = False
        if self.stream is not None:
            self.stream.stop()
            self.stream.close()
            self.stream = None
            log_event("INFO", "Audio", "Capture stopped",
                      seconds=f"{time.monotonic() - self._started_at:.1f}",
                      overflows=self._overflow_count)

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            if status.input_overflow:
                self._overflow_count += 1
            else:
                log_event("WARNING", "Audio", "Stream status", status=status)
        mono = indata[:, 0]
        n = min(len(mono), self._frame.size)
        if n == 0:
            return
        with self._frame_lock:
            self._frame = np.roll(self._frame, -n)
            self._frame[-n:] = mono[-n:]

    def latest_frame(self) -> np.ndarray:
        with self._frame_lock:
            return self._frame.copy()
