# UltraECG Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

PROCESS_RATE_HZ = 200             # Fixed pipeline tick rate (Hz)


@dataclass
class DemodConfig:
    """Ultrasonic carrier band and noise-floor guard bands"""
    min_freq: float = 18000.0         # Carrier band start (Hz)
    max_freq: float = 20000.0         # Carrier band end (Hz)
    noise_guard_bins: int = 100       # Bins sampled on each side of the band for the noise floor


@dataclass
class ShaperConfig:
    """Single-pole shaping filters applied to the demodulated signal"""
    high_pass_hz: float = 0.5         # High-pass cutoff (Hz), <= 0 disables
    low_pass_hz: float = 40.0         # Low-pass cutoff (Hz), <= 0 disables
    invert: bool = False              # Flip polarity: y' = 1 - y


@dataclass
class DetectorConfig:
    """Pan-Tompkins QRS detector parameters"""
    qrs_low_hz: float = 5.0           # QRS bandpass lower edge (Hz)
    qrs_high_hz: float = 15.0         # QRS bandpass upper edge (Hz)
    warmup_sec: float = 0.5           # Filter/DC settling time after reset
    learning_sec: float = 2.0         # Threshold learning window after warm-up
    dc_time_constant_sec: float = 0.75  # Baseline tracker time constant
    keep_sec: float = 3.0             # Filtered history kept for peak refinement
    integration_sec: float = 0.150    # Moving-window integration length
    refractory_sec: float = 0.250     # Min spacing between accepted candidates
    refine_half_window_sec: float = 0.080  # +/- search window for the R peak
    dedup_sec: float = 0.200          # Min spacing between emitted beats
    candidate_cap: int = 200          # Max candidate values kept for threshold init
    integrated_cap_factor: int = 40   # Integrated values kept = window length * this


@dataclass
class TrainingConfig:
    """Stability gating for detector (re)training"""
    stable_snr_db: float = 12.0       # Smoothed SNR required to count as stable
    stable_hold_sec: float = 1.0      # Stable this long before training starts
    lost_hold_sec: float = 0.7        # Unstable this long forces a retrain
    notice_sec: float = 2.0           # How long transition notices stay visible
    snr_ema_alpha: float = 0.12       # Smoothing for the stability decision
    min_snr_for_hr: float = 8.0       # Below this instantaneous SNR detection is suppressed
    hr_decay: float = 0.98            # Per-tick decay of displayed HR while suppressed


@dataclass
class RateConfig:
    """Heart rate / HRV estimation"""
    min_heart_rate: float = 30.0      # BPM
    max_heart_rate: float = 200.0     # BPM
    hr_smooth: float = 0.2            # EMA weight of each new HR estimate
    hr_max_intervals: int = 8         # Intervals averaged for HR
    hrv_min_beats: int = 5            # Beats required before HRV is reported
    hrv_max_beats: int = 20           # Beats used for SDNN
    hrv_min_interval_ms: float = 250.0
    hrv_max_interval_ms: float = 3500.0
    hrv_min_intervals: int = 3        # Surviving intervals required for SDNN
    beat_count_window_sec: float = 600.0
    history_margin_sec: float = 5.0   # Extra span kept beyond the count window
    max_history: int = 6000           # Hard cap on stored beats


@dataclass
class AudioConfig:
    """Microphone capture and analyser settings"""
    sample_rate: int = 48000
    device_index: int | None = None   # None means use system default
    fft_size: int = 512               # Analyser FFT size
    min_decibels: float = -100.0      # Byte scale floor
    max_decibels: float = -10.0       # Byte scale ceiling
    smoothing: float = 0.0            # Analyser time smoothing (0 = off)
    block_size: int = 256             # Capture callback block size


@dataclass
class RecordingConfig:
    """Timed recording session"""
    duration_sec: float = 30.0        # Length of the recorded strip
    countdown_sec: float = 3.0        # "Get ready" pre-roll once trained
    acquire_timeout_sec: float = 25.0  # Give up waiting for a trained detector after this
    export_rate_hz: int = PROCESS_RATE_HZ  # CSV resampling rate
    export_dir: str = ""              # Empty = config directory / recordings


@dataclass
class DisplayConfig:
    """Live waveform window"""
    window_sec: float = 3.0           # Seconds visible in the live plot
    max_samples: int = 5000           # Hard cap on buffered display samples
    metrics_interval_sec: float = 0.1  # Readout refresh cadence
    redraw_ms: int = 16               # Redraw timer interval


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    demod: DemodConfig = field(default_factory=DemodConfig)
    shaper: ShaperConfig = field(default_factory=ShaperConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    rate: RateConfig = field(default_factory=RateConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)

    # Global
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; a None value never replaces a nested section."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if is_dataclass(current):
            log_event("WARNING", "Config", "Ignoring non-object value for section", key=key)
            continue

        setattr(target, key, value)


def _clamped_float(value, default: float, low: float, high: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        result = default
    return max(low, min(high, result))


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Fills defaults for missing fields, clamps unsafe values and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    config.demod.min_freq = _clamped_float(config.demod.min_freq, DemodConfig.min_freq, 0.0, 24000.0)
    config.demod.max_freq = _clamped_float(config.demod.max_freq, DemodConfig.max_freq, 0.0, 24000.0)

    if version < 1:
        if getattr(config.shaper, 'invert', None) is None:
            config.shaper.invert = False

    if config.demod.max_freq < config.demod.min_freq:
        config.demod.min_freq, config.demod.max_freq = config.demod.max_freq, config.demod.min_freq

    config.shaper.high_pass_hz = _clamped_float(config.shaper.high_pass_hz, 0.5, 0.0, 50.0)
    config.shaper.low_pass_hz = _clamped_float(config.shaper.low_pass_hz, 40.0, 0.0, 99.0)
    config.training.snr_ema_alpha = _clamped_float(config.training.snr_ema_alpha, 0.12, 0.001, 1.0)
    config.rate.hr_smooth = _clamped_float(config.rate.hr_smooth, 0.2, 0.0, 1.0)

    if getattr(config, 'log_level', None) is None:
        config.log_level = "INFO"

    config.version = CURRENT_CONFIG_VERSION
