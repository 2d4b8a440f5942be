"""
UltraECG - Beat Detector
Pan-Tompkins style QRS detection on the shaped 200 Hz signal.

Pipeline per sample:
1) slow DC tracker + QRS bandpass (approx 5-15 Hz)  -> y
2) 5-point derivative, centred two samples back     -> d
3) square                                           -> s
4) 150 ms moving-window integration                 -> mwi
5) local-max picking on mwi + adaptive threshold + 250 ms refractory
6) refine to the R peak: max |y| within +/-80 ms of the mwi peak

The filters are causal, so the mwi peak lags the R wave; the refinement step
pulls the reported time back onto the filtered waveform.
"""

import math
from typing import Optional

import numpy as np

from config import PROCESS_RATE_HZ, DetectorConfig
from logging_utils import log_event
from ring_buffer import RingBuffer


class Biquad:
    """Direct Form II transposed biquad section."""
    __slots__ = ('b0', 'b1', 'b2', 'a1', 'a2', 'z1', 'z2')

    def __init__(self, b0: float, b1: float, b2: float, a1: float, a2: float):
        self.b0 = b0
        self.b1 = b1
        self.b2 = b2
        self.a1 = a1
        self.a2 = a2
        self.z1 = 0.0
        self.z2 = 0.0

    def process(self, x: float) -> float:
        y = self.b0 * x + self.z1
        self.z1 = self.b1 * x - self.a1 * y + self.z2
        self.z2 = self.b2 * x - self.a2 * y
        return y

    def reset(self) -> None:
        self.z1 = 0.0
        self.z2 = 0.0


def make_bandpass_biquad(f1: float, f2: float, fs: float) -> Biquad:
    """RBJ bandpass (0 dB peak gain) centred on sqrt(f1*f2) with Q = f0/(f2-f1)."""
    f0 = math.sqrt(max(1e-9, f1 * f2))
    bw = max(1e-6, f2 - f1)
    q = max(0.1, f0 / bw)

    w0 = 2.0 * math.pi * (f0 / fs)
    cos_w0 = math.cos(w0)
    alpha = math.sin(w0) / (2.0 * q)

    a0 = 1.0 + alpha
    return Biquad(
        b0=alpha / a0,
        b1=0.0,
        b2=-alpha / a0,
        a1=(-2.0 * cos_w0) / a0,
        a2=(1.0 - alpha) / a0,
    )


class BeatDetector:
    """
    Streaming Pan-Tompkins detector.

    After ``reset()`` the detector spends ``warmup_sec`` letting the DC
    tracker and bandpass settle, then ``learning_sec`` collecting integrated
    values to seed SPKI/NPKI from percentiles. Only after that
    (``init_done``) are candidates compared against the adaptive threshold
    and turned into beats.

    ``process`` returns the refined beat times that became final on this
    sample; usually empty, occasionally one, rarely more.
    """

    def __init__(self, sample_rate: float = PROCESS_RATE_HZ, config: Optional[DetectorConfig] = None):
        self.fs = float(sample_rate)
        self.config = config if config is not None else DetectorConfig()
        cfg = self.config

        self.window = max(1, int(round(cfg.integration_sec * self.fs)))
        keep = int(math.ceil(self.fs * cfg.keep_sec))
        self.dc_alpha = (1.0 / self.fs) / (cfg.dc_time_constant_sec + 1.0 / self.fs)

        # Filtered samples + timestamps kept for refinement
        self._y = RingBuffer(keep)
        self._t = RingBuffer(keep)
        # Squared derivative values inside the integration window
        self._sq = RingBuffer(self.window)
        # Last three integrated values for local-max picking
        self._mwi_v = RingBuffer(3)
        self._mwi_t = RingBuffer(3)
        # Threshold learning stores
        self._init_cand = RingBuffer(cfg.candidate_cap)
        self._init_mwi = RingBuffer(self.window * cfg.integrated_cap_factor)

        self.reset()

    def reset(self) -> None:
        """Clear every piece of detector state, including filter memory."""
        cfg = self.config
        self.bandpass = make_bandpass_biquad(cfg.qrs_low_hz, cfg.qrs_high_hz, self.fs)

        self._y.clear()
        self._t.clear()
        self._sq.clear()
        self._sq_sum = 0.0
        self._mwi_v.clear()
        self._mwi_t.clear()
        self._init_cand.clear()
        self._init_mwi.clear()

        self.warmup_until: Optional[float] = None
        self.learning_started_at: Optional[float] = None
        self.init_done = False
        self.dc = 0.0

        self.spki = 0.0
        self.npki = 0.0
        self.threshold = 0.0

        self._pending: list[tuple[float, float]] = []  # (center_time, finalize_at)
        self.last_accepted_candidate_time = -1e9
        self.last_emitted_time = -1e9

    def learning_progress(self, now: float) -> Optional[float]:
        """Fraction of the learning window elapsed, None while still warming up."""
        if self.learning_started_at is None:
            return None
        return min(1.0, (now - self.learning_started_at) / self.config.learning_sec)

    def _filter(self, sample: float, time: float) -> float:
        self.dc = self.dc + self.dc_alpha * (sample - self.dc)
        y = self.bandpass.process(sample - self.dc)
        self._y.append(y)
        self._t.append(time)
        return y

    def _start_learning(self, time: float) -> None:
        self.learning_started_at = time
        self.init_done = False
        self._init_cand.clear()
        self._init_mwi.clear()
        self._mwi_v.clear()
        self._mwi_t.clear()
        self._sq.clear()
        self._sq_sum = 0.0
        self._pending = []
        self.last_accepted_candidate_time = -1e9
        self.last_emitted_time = -1e9

    def process(self, sample: float, time: float) -> list[float]:
        """Feed one shaped sample. Returns refined beat times finalised on this tick."""
        if self.warmup_until is None:
            self.warmup_until = time + self.config.warmup_sec
            self.dc = sample  # seed the baseline to avoid a DC step

        if time < self.warmup_until:
            self._filter(sample, time)
            return []

        if self.learning_started_at is None:
            self._start_learning(time)

        self._filter(sample, time)

        if len(self._y) < 5:
            return self._flush_pending(time)

        y = self._y
        # [1, 2, 0, -2, -1] over the five newest samples, stamped at the middle one
        d = y[-5] + 2.0 * y[-4] - 2.0 * y[-2] - y[-1]
        d_time = self._t[-3]

        sq = d * d
        evicted = self._sq.append(sq)
        self._sq_sum += sq
        if evicted is not None:
            self._sq_sum -= evicted
        mwi = self._sq_sum / self.window

        self._init_mwi.append(mwi)
        self._mwi_v.append(mwi)
        self._mwi_t.append(d_time)

        self._maybe_init_thresholds(time)

        if len(self._mwi_v) == 3:
            a, b, c = self._mwi_v[0], self._mwi_v[1], self._mwi_v[2]
            if b > a and b > c:
                if not self.init_done:
                    self._init_cand.append(b)
                else:
                    self._handle_candidate(self._mwi_t[1], b)

        return self._flush_pending(time)

    def _maybe_init_thresholds(self, now: float) -> None:
        if self.init_done or self.learning_started_at is None:
            return
        if now - self.learning_started_at < self.config.learning_sec:
            return

        base = self._init_cand.to_array() if len(self._init_cand) > 0 else self._init_mwi.to_array()
        # Drop startup transients so they don't set the threshold too high
        if base.size >= 30:
            p99 = np.percentile(base, 99)
            trimmed = base[base <= p99]
            if trimmed.size >= 10:
                base = trimmed

        if base.size == 0:
            self.spki = 0.0
            self.npki = 0.0
            self.threshold = 0.0
        else:
            self.spki = float(np.percentile(base, 90))
            self.npki = float(np.percentile(base, 10))
            self.threshold = self.npki + 0.25 * (self.spki - self.npki)
        self.init_done = True

        log_event(
            "INFO",
            "Detector",
            "Thresholds initialized",
            samples=base.size,
            spki=f"{self.spki:.6g}",
            npki=f"{self.npki:.6g}",
            threshold=f"{self.threshold:.6g}",
        )

    def _handle_candidate(self, cand_time: float, cand_value: float) -> None:
        if cand_time - self.last_accepted_candidate_time < self.config.refractory_sec:
            return

        if cand_value > self.threshold:
            self.last_accepted_candidate_time = cand_time
            self.spki = 0.125 * cand_value + 0.875 * self.spki
            self._pending.append((cand_time, cand_time + self.config.refine_half_window_sec))
        else:
            self.npki = 0.125 * cand_value + 0.875 * self.npki

        self.threshold = self.npki + 0.25 * (self.spki - self.npki)

    def _refine_peak(self, center_time: float) -> float:
        half = self.config.refine_half_window_sec
        times = self._t.to_array()
        mask = (times >= center_time - half) & (times <= center_time + half)
        if not np.any(mask):
            return center_time
        values = np.abs(self._y.to_array()[mask])
        return float(times[mask][int(np.argmax(values))])

    def _flush_pending(self, now: float) -> list[float]:
        if not self._pending:
            return []

        out: list[float] = []
        keep: list[tuple[float, float]] = []
        for center_time, finalize_at in self._pending:
            if now < finalize_at:
                keep.append((center_time, finalize_at))
                continue
            refined = self._refine_peak(center_time)
            # Refinement can pull two candidates onto nearly the same sample
            if refined - self.last_emitted_time >= self.config.dedup_sec:
                out.append(refined)
                self.last_emitted_time = refined
        self._pending = keep
        return out
