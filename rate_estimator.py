"""
UltraECG - Rate Estimator
Heart rate, SDNN heart-rate variability and trailing beat count from beat times.
"""

from collections import deque
from typing import Optional

import numpy as np

from config import RateConfig


class RateEstimator:
    """Owns the beat history and the displayed HR / HRV / beat count.

    Every reading is None when it is undefined ("--" on screen).
    """

    def __init__(self, config: Optional[RateConfig] = None):
        self.config = config if config is not None else RateConfig()
        self.beats: deque[float] = deque()
        self.heart_rate: Optional[float] = None   # Smoothed BPM
        self.hrv_ms: Optional[float] = None       # SDNN (ms)
        self.beat_count: Optional[int] = None     # Beats in the trailing window

    def reset(self) -> None:
        self.beats.clear()
        self.heart_rate = None
        self.hrv_ms = None
        self.beat_count = None

    @property
    def last_beat_time(self) -> Optional[float]:
        return self.beats[-1] if self.beats else None

    def add_beat(self, beat_time: float) -> bool:
        """Record one beat and refresh all readings. Out-of-order beats are ignored."""
        if self.beats and beat_time < self.beats[-1]:
            return False

        self.beats.append(beat_time)
        self._trim(beat_time)
        self.beat_count = self.count_recent(beat_time)
        self._update_heart_rate()
        self.hrv_ms = self.compute_sdnn()
        return True

    def _trim(self, newest: float) -> None:
        cfg = self.config
        max_span = cfg.beat_count_window_sec + cfg.history_margin_sec
        while (len(self.beats) > cfg.max_history
               or (len(self.beats) > 1 and newest - self.beats[0] > max_span)):
            self.beats.popleft()

    def count_recent(self, newest: float) -> int:
        """Beats within the counting window of `newest`, scanned newest-first."""
        window = self.config.beat_count_window_sec
        count = 0
        for t in reversed(self.beats):
            if newest - t > window:
                break
            count += 1
        return count

    def instantaneous_bpm(self) -> Optional[float]:
        """Mean-interval BPM over the last few intervals, before range checks."""
        n = len(self.beats)
        if n < 2:
            return None
        start = max(1, n - self.config.hr_max_intervals)
        recent = [self.beats[i] for i in range(start - 1, n)]
        intervals = np.diff(recent)
        intervals = intervals[intervals > 0]
        if intervals.size == 0:
            return None
        return 60.0 / float(np.mean(intervals))

    def _update_heart_rate(self) -> None:
        bpm = self.instantaneous_bpm()
        if bpm is None:
            return
        cfg = self.config
        if not (cfg.min_heart_rate <= bpm <= cfg.max_heart_rate):
            return
        if self.heart_rate is None:
            self.heart_rate = bpm
        else:
            self.heart_rate = (1.0 - cfg.hr_smooth) * self.heart_rate + cfg.hr_smooth * bpm

    def compute_sdnn(self) -> Optional[float]:
        """Population SD of plausible recent intervals (ms), or None."""
        cfg = self.config
        n = len(self.beats)
        if n < cfg.hrv_min_beats:
            return None
        start = max(1, n - cfg.hrv_max_beats)
        recent = np.array([self.beats[i] for i in range(start - 1, n)], dtype=np.float64)
        rr = np.diff(recent) * 1000.0
        rr = rr[(rr > cfg.hrv_min_interval_ms) & (rr < cfg.hrv_max_interval_ms)]
        if rr.size < cfg.hrv_min_intervals:
            return None
        sdnn = float(np.std(rr))
        return sdnn if np.isfinite(sdnn) else None

    def decay_heart_rate(self, factor: float) -> None:
        """Let the displayed HR fade while no trustworthy beats arrive."""
        if self.heart_rate is None:
            return
        self.heart_rate *= factor
        if self.heart_rate < self.config.min_heart_rate / 2.0:
            self.heart_rate = None
            self.hrv_ms = None
