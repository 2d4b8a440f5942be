import math

import numpy as np


def band_to_bins(
    min_freq: float,
    max_freq: float,
    bin_hz: float,
    num_bins: int,
) -> tuple[int, int] | None:
    """Convert a Hz band to inclusive bin indices.

    Returns None when the band covers fewer than two bins.
    """
    if num_bins <= 0 or bin_hz <= 0:
        return None

    start_bin = max(0, int(math.floor(min_freq / bin_hz)))
    end_bin = min(int(math.ceil(max_freq / bin_hz)), num_bins - 1)
    if end_bin <= start_bin:
        return None
    return start_bin, end_bin


def parabolic_offset(left: float, center: float, right: float) -> float:
    """Fractional peak offset from a 3-point parabola, clamped to +/-0.5 bin."""
    denom = left - 2.0 * center + right
    if denom == 0:
        return 0.0
    delta = 0.5 * (left - right) / denom
    return max(-0.5, min(0.5, delta))


def refine_peak_bin(spectrum: np.ndarray, peak_bin: int, start_bin: int, end_bin: int) -> float:
    """Sub-bin peak position; edge peaks are not interpolated."""
    if start_bin < peak_bin < end_bin:
        return peak_bin + parabolic_offset(
            float(spectrum[peak_bin - 1]),
            float(spectrum[peak_bin]),
            float(spectrum[peak_bin + 1]),
        )
    return float(peak_bin)


def noise_floor(spectrum: np.ndarray, start_bin: int, end_bin: int, guard_bins: int = 100) -> float:
    """Mean magnitude of up to `guard_bins` bins on each side of the band.

    Falls back to 1.0 when there are no bins outside the band.
    """
    below = spectrum[max(0, start_bin - guard_bins):start_bin]
    above = spectrum[end_bin + 1:end_bin + 1 + guard_bins]
    count = len(below) + len(above)
    if count == 0:
        return 1.0
    return float((np.sum(below) + np.sum(above)) / count)


def snr_db(peak_magnitude: float, noise_level: float) -> float:
    """Peak-to-noise ratio in dB; the noise level is floored at 1."""
    if peak_magnitude <= 0:
        return float('-inf')
    return 20.0 * math.log10(peak_magnitude / max(noise_level, 1.0))


def normalize_frequency(freq: float, min_freq: float, max_freq: float) -> float:
    """Map a frequency onto [0, 1] across the band (0.5 for a zero-width band)."""
    freq_range = max_freq - min_freq
    if freq_range <= 0:
        return 0.5
    return max(0.0, min(1.0, (freq - min_freq) / freq_range))
