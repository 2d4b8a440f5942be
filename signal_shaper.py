"""
UltraECG - Signal Shaper
Single-pole high-pass / low-pass cascade applied to the demodulated stream.
"""

import math

from config import PROCESS_RATE_HZ, ShaperConfig


class HighPassFilter:
    """First-order RC high-pass. A cutoff <= 0 passes samples through untouched."""
    __slots__ = ('dt', 'prev_in', 'prev_out')

    def __init__(self, dt: float):
        self.dt = dt
        self.prev_in = 0.0
        self.prev_out = 0.0

    def process(self, x: float, cutoff_hz: float) -> float:
        if cutoff_hz <= 0:
            return x
        rc = 1.0 / (2.0 * math.pi * cutoff_hz)
        alpha = rc / (rc + self.dt)
        y = alpha * (self.prev_out + x - self.prev_in)
        self.prev_in = x
        self.prev_out = y
        return y

    def reset(self) -> None:
        self.prev_in = 0.0
        self.prev_out = 0.0


class LowPassFilter:
    """First-order RC low-pass. A cutoff <= 0 passes samples through untouched."""
    __slots__ = ('dt', 'prev_out')

    def __init__(self, dt: float):
        self.dt = dt
        self.prev_out = 0.0

    def process(self, x: float, cutoff_hz: float) -> float:
        if cutoff_hz <= 0:
            return x
        rc = 1.0 / (2.0 * math.pi * cutoff_hz)
        alpha = self.dt / (rc + self.dt)
        self.prev_out = self.prev_out + alpha * (x - self.prev_out)
        return self.prev_out

    def reset(self) -> None:
        self.prev_out = 0.0


class SignalShaper:
    """High-pass -> low-pass -> optional inversion (y' = 1 - y)."""

    def __init__(self, config: ShaperConfig, sample_rate: float = PROCESS_RATE_HZ):
        self.config = config
        self.dt = 1.0 / sample_rate
        self.high_pass = HighPassFilter(self.dt)
        self.low_pass = LowPassFilter(self.dt)

    def set_cutoffs(self, high_pass_hz: float, low_pass_hz: float) -> None:
        self.config.high_pass_hz = float(high_pass_hz)
        self.config.low_pass_hz = float(low_pass_hz)

    def set_invert(self, invert: bool) -> None:
        self.config.invert = bool(invert)

    def step(self, value: float) -> float:
        y = self.high_pass.process(value, self.config.high_pass_hz)
        y = self.low_pass.process(y, self.config.low_pass_hz)
        if self.config.invert:
            y = 1.0 - y
        return y

    def reset(self) -> None:
        self.high_pass.reset()
        self.low_pass.reset()
