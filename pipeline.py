"""
UltraECG - Pipeline
One tick: demodulate -> shape -> gate -> detect -> estimate.
"""

import math
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from beat_detector import BeatDetector
from config import PROCESS_RATE_HZ, Config
from logging_utils import log_event
from rate_estimator import RateEstimator
from ring_buffer import RingBuffer
from signal_shaper import SignalShaper
from spectral_demodulator import DemodulatedSample, SpectralDemodulator
from training_state import TrainingPhase, TrainingStateMachine


@dataclass(frozen=True)
class TickInput:
    spectrum: Sequence[float] | np.ndarray  # Byte/linear magnitudes per bin
    bin_hz: float                           # Frequency resolution of the spectrum
    timestamp: float                        # Monotonic tick time (s)


@dataclass(frozen=True)
class TickOutput:
    timestamp: float
    sample: float                  # Shaped signal value
    value: float                   # Demodulated value before shaping
    frequency_hz: float
    snr_db: Optional[float]
    beats: tuple[float, ...]       # Beat times finalised on this tick
    phase: TrainingPhase
    notice: Optional[str]
    heart_rate: Optional[float]
    hrv_ms: Optional[float]
    beat_count: Optional[int]


@dataclass(frozen=True)
class MetricsReadout:
    peak_magnitude: float
    frequency_hz: float
    snr_db: Optional[float]


class MetricsAccumulator:
    """Averages per-tick levels between readout refreshes."""

    def __init__(self, interval_sec: float = 0.1):
        self.interval_sec = interval_sec
        self.reset(0.0)

    def reset(self, now: float) -> None:
        self._magnitude_sum = 0.0
        self._freq_sum = 0.0
        self._snr_sum = 0.0
        self._snr_count = 0
        self._count = 0
        self._last_flush = now

    def add(self, sample: DemodulatedSample) -> None:
        self._magnitude_sum += sample.peak_magnitude
        self._freq_sum += sample.frequency_hz
        # Silent ticks carry -inf SNR
        if math.isfinite(sample.snr_db):
            self._snr_sum += sample.snr_db
            self._snr_count += 1
        self._count += 1

    def flush(self, now: float) -> Optional[MetricsReadout]:
        """Return averaged levels once per interval, None in between."""
        if now - self._last_flush < self.interval_sec or self._count == 0:
            return None
        readout = MetricsReadout(
            peak_magnitude=self._magnitude_sum / self._count,
            frequency_hz=self._freq_sum / self._count,
            snr_db=self._snr_sum / self._snr_count if self._snr_count else None,
        )
        self.reset(now)
        return readout


class HeartbeatPipeline:
    """Composes the signal core and keeps the read-only display state.

    All mutation happens inside ``step``/``restart``/``stop``, which the host
    calls from a single thread. Display consumers only read ``latest``,
    ``display_samples()`` and the metrics accumulator.
    """

    def __init__(self, config: Config, sample_rate: float = PROCESS_RATE_HZ):
        self.config = config
        self.sample_rate = sample_rate
        self.demodulator = SpectralDemodulator(config.demod)
        self.shaper = SignalShaper(config.shaper, sample_rate)
        self.detector = BeatDetector(sample_rate, config.detector)
        self.rate = RateEstimator(config.rate)
        self.training = TrainingStateMachine(self.detector, self.rate, config.training)
        self.metrics = MetricsAccumulator(config.display.metrics_interval_sec)

        display = config.display
        self._display_v = RingBuffer(display.max_samples)
        self._display_t = RingBuffer(display.max_samples)

        self.latest: Optional[TickOutput] = None
        self._reset_session_stats()

    @property
    def phase(self) -> TrainingPhase:
        return self.training.phase

    def restart(self, now: float) -> None:
        """Monitoring (re)started: clear filters, detector, training and displays."""
        self.shaper.reset()
        self.training.restart(now)
        self.metrics.reset(now)
        self._display_v.clear()
        self._display_t.clear()
        self.latest = None
        self._reset_session_stats()

    def retrain(self, now: float) -> None:
        """Force a retrain from a clean slate without touching the shaping filters."""
        self.training.restart(now)

    def stop(self) -> None:
        """Monitoring stopped. Readings stay frozen on ``latest``."""
        self._log_shutdown_summary()
        self.training.stop()

    def step(self, tick: TickInput) -> Optional[TickOutput]:
        demod = self.demodulator.step(tick.spectrum, tick.bin_hz, tick.timestamp)
        if demod is None:
            return None

        shaped = self.shaper.step(demod.value)
        self._push_display(shaped, tick.timestamp)
        self.metrics.add(demod)

        beats = self.training.step(shaped, demod.snr_db, tick.timestamp)
        self._update_session_stats(demod)
        for beat_time in beats:
            self.rate.add_beat(beat_time)

        output = TickOutput(
            timestamp=tick.timestamp,
            sample=shaped,
            value=demod.value,
            frequency_hz=demod.frequency_hz,
            snr_db=demod.snr_db,
            beats=tuple(beats),
            phase=self.training.phase,
            notice=self.training.current_notice(tick.timestamp),
            heart_rate=self.rate.heart_rate,
            hrv_ms=self.rate.hrv_ms,
            beat_count=self.rate.beat_count,
        )
        self.latest = output
        return output

    def _push_display(self, value: float, timestamp: float) -> None:
        self._display_v.append(value)
        self._display_t.append(timestamp)

    def display_samples(self) -> tuple[np.ndarray, np.ndarray]:
        """(times, values) within the visible window, oldest first."""
        times = self._display_t.to_array()
        values = self._display_v.to_array()
        if times.size == 0:
            return times, values
        keep = times >= times[-1] - self.config.display.window_sec
        return times[keep], values[keep]

    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_frame_count = 0
        self._session_snr_min: float | None = None
        self._session_snr_max: float | None = None
        self._session_snr_sum = 0.0
        self._session_snr_count = 0
        self._session_magnitude_min: float | None = None
        self._session_magnitude_max: float | None = None
        self._session_magnitude_sum = 0.0
        self._session_retrains = 0
        self._session_last_phase = TrainingPhase.WAIT_STABLE

    def _update_session_stats(self, demod: DemodulatedSample) -> None:
        self._session_frame_count += 1
        magnitude = demod.peak_magnitude
        self._session_magnitude_sum += magnitude
        if self._session_magnitude_min is None or magnitude < self._session_magnitude_min:
            self._session_magnitude_min = magnitude
        if self._session_magnitude_max is None or magnitude > self._session_magnitude_max:
            self._session_magnitude_max = magnitude

        snr = demod.snr_db
        if math.isfinite(snr):
            self._session_snr_sum += snr
            self._session_snr_count += 1
            if self._session_snr_min is None or snr < self._session_snr_min:
                self._session_snr_min = snr
            if self._session_snr_max is None or snr > self._session_snr_max:
                self._session_snr_max = snr

        phase = self.training.phase
        if phase is TrainingPhase.WAIT_STABLE and self._session_last_phase is not TrainingPhase.WAIT_STABLE:
            self._session_retrains += 1
        self._session_last_phase = phase

    def _log_shutdown_summary(self) -> None:
        if self._session_frame_count <= 0:
            return

        elapsed_s = max(0.0, time.time() - self._session_started_at)
        frame_count = float(self._session_frame_count)
        snr_min = float(self._session_snr_min if self._session_snr_min is not None else 0.0)
        snr_max = float(self._session_snr_max if self._session_snr_max is not None else 0.0)
        snr_mean = (self._session_snr_sum / self._session_snr_count) if self._session_snr_count else 0.0
        mag_min = float(self._session_magnitude_min or 0.0)
        mag_max = float(self._session_magnitude_max or 0.0)
        mag_mean = self._session_magnitude_sum / frame_count

        log_event(
            "INFO",
            "Pipeline",
            "Shutdown levels summary",
            frames=self._session_frame_count,
            seconds=f"{elapsed_s:.1f}",
            snr_min=f"{snr_min:.1f}",
            snr_max=f"{snr_max:.1f}",
            snr_mean=f"{snr_mean:.1f}",
            magnitude_min=f"{mag_min:.1f}",
            magnitude_max=f"{mag_max:.1f}",
            magnitude_mean=f"{mag_mean:.1f}",
            retrains=self._session_retrains,
            beats=len(self.rate.beats),
        )
