"""
UltraECG - Spectral Demodulator
Recovers the encoded signal from the position of the ultrasonic carrier peak.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from config import DemodConfig
from frequency_utils import (
    band_to_bins,
    noise_floor,
    normalize_frequency,
    refine_peak_bin,
    snr_db,
)


@dataclass(frozen=True)
class DemodulatedSample:
    """One demodulated tick"""
    value: float              # Carrier position mapped onto [0, 1]
    frequency_hz: float       # Interpolated carrier frequency
    snr_db: float             # Peak vs adjacent noise floor (-inf when no peak)
    timestamp: float          # Tick time (s)
    peak_magnitude: float     # Raw magnitude of the peak bin


class SpectralDemodulator:
    """Turns one magnitude spectrum into one DemodulatedSample.

    The band is read from ``config`` on every step so it can be retuned
    between ticks; nothing else is kept between calls.
    """

    def __init__(self, config: DemodConfig):
        self.config = config

    def set_band(self, min_freq: float, max_freq: float) -> None:
        self.config.min_freq = float(min_freq)
        self.config.max_freq = float(max_freq)

    def step(
        self,
        spectrum: Sequence[float] | np.ndarray,
        bin_hz: float,
        timestamp: float,
    ) -> Optional[DemodulatedSample]:
        """Demodulate one spectrum. Returns None when the band is degenerate."""
        mags = np.asarray(spectrum, dtype=np.float64)
        if mags.ndim != 1 or mags.size == 0:
            return None

        min_freq = self.config.min_freq
        max_freq = self.config.max_freq
        bins = band_to_bins(min_freq, max_freq, bin_hz, mags.size)
        if bins is None:
            return None
        start_bin, end_bin = bins

        band = mags[start_bin:end_bin + 1]
        peak_bin = start_bin + int(np.argmax(band))
        peak_magnitude = float(mags[peak_bin])

        refined_bin = refine_peak_bin(mags, peak_bin, start_bin, end_bin)
        peak_frequency = refined_bin * bin_hz

        noise_level = noise_floor(mags, start_bin, end_bin, self.config.noise_guard_bins)

        return DemodulatedSample(
            value=normalize_frequency(peak_frequency, min_freq, max_freq),
            frequency_hz=peak_frequency,
            snr_db=snr_db(peak_magnitude, noise_level),
            timestamp=timestamp,
            peak_magnitude=peak_magnitude,
        )
