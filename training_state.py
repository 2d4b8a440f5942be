"""
UltraECG - Training State Machine
Gates the beat detector on carrier stability and retrains it after dropouts.

Phases:
- WAIT_STABLE: smoothed SNR must stay above threshold for a hold time
- TRAINING:    detector warm-up + threshold learning
- RUNNING:     beats are detected and reported
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from beat_detector import BeatDetector
from config import TrainingConfig
from logging_utils import log_event
from rate_estimator import RateEstimator


class TrainingPhase(Enum):
    WAIT_STABLE = "WAIT_STABLE"
    TRAINING = "TRAINING"
    RUNNING = "RUNNING"


class TrainingEvent(Enum):
    STABLE_HELD = "stable_held"      # carrier stable for the hold time
    TRAINED = "trained"              # detector finished threshold init
    SIGNAL_LOST = "signal_lost"      # carrier unstable for the lost-hold time
    RESTART = "restart"              # monitoring (re)started or recording armed


TRANSITIONS: dict[tuple[TrainingPhase, TrainingEvent], TrainingPhase] = {
    (TrainingPhase.WAIT_STABLE, TrainingEvent.STABLE_HELD): TrainingPhase.TRAINING,
    (TrainingPhase.TRAINING, TrainingEvent.TRAINED): TrainingPhase.RUNNING,
    (TrainingPhase.TRAINING, TrainingEvent.SIGNAL_LOST): TrainingPhase.WAIT_STABLE,
    (TrainingPhase.RUNNING, TrainingEvent.SIGNAL_LOST): TrainingPhase.WAIT_STABLE,
    (TrainingPhase.WAIT_STABLE, TrainingEvent.RESTART): TrainingPhase.WAIT_STABLE,
    (TrainingPhase.TRAINING, TrainingEvent.RESTART): TrainingPhase.WAIT_STABLE,
    (TrainingPhase.RUNNING, TrainingEvent.RESTART): TrainingPhase.WAIT_STABLE,
}

NOTICES: dict[TrainingEvent, str] = {
    TrainingEvent.STABLE_HELD: "Stable signal detected. Training peak detector…",
    TrainingEvent.TRAINED: "Peak detector trained. Running…",
    TrainingEvent.SIGNAL_LOST: "Signal unstable. Retraining peak detector…",
    TrainingEvent.RESTART: "Listening… waiting for stable signal.",
}


def next_phase(phase: TrainingPhase, event: TrainingEvent) -> TrainingPhase:
    """Look up a transition; raises ValueError for a transition that is not allowed."""
    try:
        return TRANSITIONS[(phase, event)]
    except KeyError:
        raise ValueError(f"illegal transition {phase.value} --{event.value}-->") from None


@dataclass(frozen=True)
class StatusNotice:
    text: str
    expires_at: float

    def active(self, now: float) -> bool:
        return now < self.expires_at


class TrainingStateMachine:
    """Drives the detector from per-tick SNR and shaped samples.

    ``step`` is called once per tick with the instantaneous SNR; it updates
    stability tracking, applies transitions (resetting the detector and the
    rate readings where required) and forwards the sample to the detector
    only while TRAINING or RUNNING. It returns the beats finalised this tick.
    """

    def __init__(self, detector: BeatDetector, rate: RateEstimator, config: Optional[TrainingConfig] = None):
        self.detector = detector
        self.rate = rate
        self.config = config if config is not None else TrainingConfig()
        self.phase = TrainingPhase.WAIT_STABLE
        self.snr_ema = float('-inf')
        self.last_snr = float('-inf')
        self.stable_since: Optional[float] = None
        self.unstable_since: Optional[float] = None
        self.notice: Optional[StatusNotice] = None

    def restart(self, now: float) -> None:
        """Return to WAIT_STABLE from a clean slate (monitor start / recording armed)."""
        self._apply(TrainingEvent.RESTART, now)
        self.snr_ema = float('-inf')
        self.last_snr = float('-inf')
        self.stable_since = None
        self.unstable_since = None

    def stop(self) -> None:
        """Monitoring stopped: clear every field without posting a notice."""
        self.phase = TrainingPhase.WAIT_STABLE
        self.snr_ema = float('-inf')
        self.last_snr = float('-inf')
        self.stable_since = None
        self.unstable_since = None
        self.notice = None

    def current_notice(self, now: float) -> Optional[str]:
        if self.notice is not None and self.notice.active(now):
            return self.notice.text
        return None

    def _apply(self, event: TrainingEvent, now: float) -> None:
        previous = self.phase
        self.phase = next_phase(self.phase, event)
        if event in (TrainingEvent.STABLE_HELD, TrainingEvent.SIGNAL_LOST, TrainingEvent.RESTART):
            self.detector.reset()
            self.rate.reset()
        self.notice = StatusNotice(NOTICES[event], now + self.config.notice_sec)
        log_event(
            "INFO",
            "Training",
            NOTICES[event],
            phase_from=previous.value,
            phase_to=self.phase.value,
            snr_ema=f"{self.snr_ema:.1f}",
        )

    def _update_stability(self, snr_db: float, now: float) -> bool:
        cfg = self.config
        if math.isfinite(snr_db):
            if not math.isfinite(self.snr_ema):
                self.snr_ema = snr_db
            else:
                self.snr_ema = (1.0 - cfg.snr_ema_alpha) * self.snr_ema + cfg.snr_ema_alpha * snr_db

        snr_for_decision = self.snr_ema if math.isfinite(self.snr_ema) else snr_db
        stable_now = math.isfinite(snr_for_decision) and snr_for_decision >= cfg.stable_snr_db

        if stable_now:
            if self.stable_since is None:
                self.stable_since = now
            self.unstable_since = None
        else:
            self.stable_since = None
            if self.unstable_since is None:
                self.unstable_since = now
        return stable_now

    def step(self, sample: float, snr_db: float, now: float) -> list[float]:
        cfg = self.config
        self.last_snr = snr_db
        stable_now = self._update_stability(snr_db, now)

        if (self.phase in (TrainingPhase.TRAINING, TrainingPhase.RUNNING)
                and self.unstable_since is not None
                and now - self.unstable_since >= cfg.lost_hold_sec):
            self._apply(TrainingEvent.SIGNAL_LOST, now)
            return []

        if (self.phase is TrainingPhase.WAIT_STABLE
                and stable_now
                and self.stable_since is not None
                and now - self.stable_since >= cfg.stable_hold_sec):
            self._apply(TrainingEvent.STABLE_HELD, now)

        if not math.isfinite(snr_db) or snr_db < cfg.min_snr_for_hr:
            self.rate.decay_heart_rate(cfg.hr_decay)
            return []

        if self.phase is TrainingPhase.WAIT_STABLE:
            return []

        beats = self.detector.process(sample, now)

        if self.phase is TrainingPhase.TRAINING and self.detector.init_done:
            self._apply(TrainingEvent.TRAINED, now)

        return beats

    def status_text(self, now: float, prefix: str = "Listening…") -> str:
        """Human-readable status line for the current phase."""
        notice = self.current_notice(now)
        if notice is not None:
            return notice if prefix == "Listening…" else f"{prefix} {notice}"

        if self.phase is TrainingPhase.WAIT_STABLE:
            if math.isfinite(self.snr_ema):
                snr_str = f"{self.snr_ema:.1f}"
            elif math.isfinite(self.last_snr):
                snr_str = f"{self.last_snr:.1f}"
            else:
                snr_str = "--"
            if self.stable_since is not None:
                progress = min(1.0, (now - self.stable_since) / self.config.stable_hold_sec)
                return f"{prefix} waiting for stable signal ({round(progress * 100)}%, SNR {snr_str} dB)"
            return f"{prefix} waiting for stable signal (SNR {snr_str} dB)"

        if self.phase is TrainingPhase.TRAINING:
            progress = self.detector.learning_progress(now)
            if progress is None:
                return f"{prefix} training peak detector (warmup…)"
            return f"{prefix} training peak detector ({round(progress * 100)}%)"

        return prefix
