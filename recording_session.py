"""
UltraECG - Recording Session
Timed capture of the shaped signal: wait for a trained detector, count down,
then record a fixed-length strip with its beat times.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from config import Config, RecordingConfig
from logging_utils import log_event
from pipeline import TickOutput
from training_state import TrainingPhase


class RecordingPhase(Enum):
    IDLE = "idle"
    ACQUIRE = "acquire"        # waiting for a stable, trained detector
    COUNTDOWN = "countdown"    # "get ready" pre-roll
    RECORDING = "recording"
    CANCELLED = "cancelled"    # gave up waiting for a stable signal


CANCEL_NOTICE = "Could not get a stable signal. Try again."


@dataclass(frozen=True)
class RecordingSettings:
    """Band/filter settings in force for one recording."""
    min_freq: float
    max_freq: float
    high_pass_hz: float
    low_pass_hz: float
    invert: bool

    @classmethod
    def from_config(cls, config: Config) -> "RecordingSettings":
        return cls(
            min_freq=config.demod.min_freq,
            max_freq=config.demod.max_freq,
            high_pass_hz=config.shaper.high_pass_hz,
            low_pass_hz=config.shaper.low_pass_hz,
            invert=config.shaper.invert,
        )


@dataclass
class Recording:
    started_at: datetime
    settings: RecordingSettings
    duration_sec: float
    times: list[float] = field(default_factory=list)       # Seconds since first sample
    values: list[float] = field(default_factory=list)
    beat_times: list[float] = field(default_factory=list)  # Seconds since first sample


class RecordingSession:
    """Tick-driven recording timeline; ``update`` is called once per pipeline tick."""

    def __init__(self, config: RecordingConfig):
        self.config = config
        self.phase = RecordingPhase.IDLE
        self.notice: Optional[str] = None
        self._armed_at = 0.0
        self._countdown_until = 0.0
        self._record_start: Optional[float] = None
        self._current: Optional[Recording] = None
        self._settings: Optional[RecordingSettings] = None

    @property
    def active(self) -> bool:
        return self.phase not in (RecordingPhase.IDLE, RecordingPhase.CANCELLED)

    @property
    def inputs_locked(self) -> bool:
        """Band/filter inputs must not change while a recording is armed."""
        return self.active

    def arm(self, now: float, settings: RecordingSettings) -> bool:
        """Start preparing a recording. The caller forces the detector to retrain."""
        if self.active:
            return False
        self.phase = RecordingPhase.ACQUIRE
        self.notice = None
        self._armed_at = now
        self._settings = settings
        self._record_start = None
        self._current = None
        log_event("INFO", "Recording", "Preparing, waiting for trained detector",
                  timeout_s=self.config.acquire_timeout_sec)
        return True

    def cancel(self) -> None:
        if self.active:
            log_event("INFO", "Recording", "Cancelled", phase=self.phase.value)
        self._clear()

    def _clear(self) -> None:
        self.phase = RecordingPhase.IDLE
        self._record_start = None
        self._current = None
        self._settings = None

    def update(self, now: float, training_phase: TrainingPhase,
               output: Optional[TickOutput] = None) -> Optional[Recording]:
        """Advance the timeline. Returns the finished Recording on its last tick."""
        cfg = self.config

        if self.phase is RecordingPhase.ACQUIRE:
            if training_phase is TrainingPhase.RUNNING:
                self.phase = RecordingPhase.COUNTDOWN
                self._countdown_until = now + cfg.countdown_sec
                log_event("INFO", "Recording", "Detector ready, counting down",
                          countdown_s=cfg.countdown_sec)
            elif now - self._armed_at >= cfg.acquire_timeout_sec:
                self.notice = CANCEL_NOTICE
                log_event("WARNING", "Recording", "No stable signal before timeout",
                          waited_s=f"{now - self._armed_at:.1f}")
                self._clear()
                self.phase = RecordingPhase.CANCELLED
            return None

        if self.phase is RecordingPhase.COUNTDOWN:
            if now >= self._countdown_until:
                self.phase = RecordingPhase.RECORDING
                self._current = Recording(
                    started_at=datetime.now(),
                    settings=self._settings,
                    duration_sec=cfg.duration_sec,
                )
                self._record_start = None
                log_event("INFO", "Recording", "Recording started", duration_s=cfg.duration_sec)
            return None

        if self.phase is RecordingPhase.RECORDING and output is not None:
            return self._record(output)
        return None

    def _record(self, output: TickOutput) -> Optional[Recording]:
        recording = self._current
        if self._record_start is None:
            self._record_start = output.timestamp
        rel_t = output.timestamp - self._record_start
        recording.times.append(rel_t)
        recording.values.append(output.sample)
        for beat_time in output.beats:
            recording.beat_times.append(beat_time - self._record_start)

        if rel_t < self.config.duration_sec:
            return None

        log_event("INFO", "Recording", "Recording finished",
                  samples=len(recording.times), beats=len(recording.beat_times))
        self._clear()
        return recording

    def button_text(self, now: float) -> str:
        if self.phase is RecordingPhase.ACQUIRE:
            return "Preparing…"
        if self.phase is RecordingPhase.COUNTDOWN:
            remaining = max(1, math.ceil(self._countdown_until - now))
            return f"Get ready {remaining} s"
        if self.phase is RecordingPhase.RECORDING:
            elapsed = 0.0
            if self._current is not None and self._current.times:
                elapsed = self._current.times[-1]
            remaining = max(1, math.ceil(self.config.duration_sec - elapsed))
            return f"Recording {remaining} s"
        return f"Record {self.config.duration_sec:g} seconds"

    def status_prefix(self) -> str:
        return "Preparing recording…" if self.phase is RecordingPhase.ACQUIRE else "Listening…"
