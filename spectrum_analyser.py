"""
UltraECG - Spectrum Analyser
Turns raw audio frames into the byte magnitude spectrum the pipeline consumes,
and replays WAV files as a stream of analyser frames.
"""

from pathlib import Path
from typing import Iterator, Optional

import numpy as np
from scipy.io import wavfile

from config import PROCESS_RATE_HZ, AudioConfig


class SpectrumAnalyser:
    """
    Byte-scaled magnitude spectrum in the style of a browser AnalyserNode.

    Each frame is Blackman-windowed, transformed, normalised by the FFT size,
    optionally smoothed against the previous frame, converted to dB and mapped
    linearly from [min_decibels, max_decibels] onto 0..255.
    """

    def __init__(self, config: AudioConfig):
        self.fft_size = int(config.fft_size)
        self.min_decibels = float(config.min_decibels)
        self.max_decibels = float(config.max_decibels)
        self.smoothing = float(np.clip(config.smoothing, 0.0, 1.0))
        self.sample_rate = float(config.sample_rate)
        self._window = np.blackman(self.fft_size)
        self._previous: Optional[np.ndarray] = None

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    @property
    def bin_hz(self) -> float:
        return self.sample_rate / self.fft_size

    def set_sample_rate(self, sample_rate: float) -> None:
        self.sample_rate = float(sample_rate)

    def reset(self) -> None:
        self._previous = None

    def magnitudes(self, frame: np.ndarray) -> np.ndarray:
        """Linear magnitudes (|X| / N) of the newest `fft_size` samples."""
        samples = np.asarray(frame, dtype=np.float64)
        if samples.size < self.fft_size:
            samples = np.concatenate([np.zeros(self.fft_size - samples.size), samples])
        elif samples.size > self.fft_size:
            samples = samples[-self.fft_size:]

        spectrum = np.abs(np.fft.rfft(samples * self._window))[:self.bin_count] / self.fft_size
        if self.smoothing > 0 and self._previous is not None:
            spectrum = self.smoothing * self._previous + (1.0 - self.smoothing) * spectrum
        self._previous = spectrum
        return spectrum

    def byte_frequency_data(self, frame: np.ndarray) -> np.ndarray:
        """Magnitudes mapped onto 0..255 over the configured dB range."""
        mags = self.magnitudes(frame)
        with np.errstate(divide='ignore'):
            db = 20.0 * np.log10(mags)
        scale = 255.0 / (self.max_decibels - self.min_decibels)
        scaled = np.floor(scale * (db - self.min_decibels))
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0, 255).astype(np.uint8)


def load_wav_mono(path: Path) -> tuple[int, np.ndarray]:
    """Read a WAV file as mono float64 in [-1, 1]."""
    sample_rate, data = wavfile.read(str(path))
    if np.issubdtype(data.dtype, np.integer):
        info = np.iinfo(data.dtype)
        if info.min == 0:
            # unsigned 8-bit PCM is offset binary
            data = (data.astype(np.float64) - (info.max + 1) / 2) / ((info.max + 1) / 2)
        else:
            data = data.astype(np.float64) / max(abs(info.min), info.max)
    else:
        data = data.astype(np.float64)
    if data.ndim > 1:
        data = np.mean(data, axis=1)
    return int(sample_rate), data


def iter_frames(
    samples: np.ndarray,
    sample_rate: int,
    fft_size: int,
    tick_rate: float = PROCESS_RATE_HZ,
) -> Iterator[tuple[float, np.ndarray]]:
    """Yield (timestamp, frame) every tick: the `fft_size` samples ending at that time."""
    total = samples.size
    if total == 0 or sample_rate <= 0:
        return
    duration = total / sample_rate
    num_ticks = int(duration * tick_rate)
    padded = np.concatenate([np.zeros(fft_size), samples])
    for k in range(1, num_ticks + 1):
        timestamp = k / tick_rate
        end = min(total, int(round(timestamp * sample_rate)))
        yield timestamp, padded[end:end + fft_size]


def iter_wav_ticks(
    path: Path,
    analyser: SpectrumAnalyser,
    tick_rate: float = PROCESS_RATE_HZ,
) -> Iterator[tuple[float, np.ndarray]]:
    """Replay a WAV file as (timestamp, byte spectrum) pairs at the tick rate."""
    sample_rate, samples = load_wav_mono(path)
    analyser.set_sample_rate(sample_rate)
    analyser.reset()
    for timestamp, frame in iter_frames(samples, sample_rate, analyser.fft_size, tick_rate):
        yield timestamp, analyser.byte_frequency_data(frame)
