"""
UltraECG - Monitor Window
PyQt6 front end: live waveform, readouts, band/filter inputs and recording.
"""

import time
from typing import Optional

import numpy as np
import pyqtgraph as pg
from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtWidgets import (
    QCheckBox, QDoubleSpinBox, QGridLayout, QGroupBox, QHBoxLayout, QLabel,
    QMainWindow, QPushButton, QVBoxLayout, QWidget,
)

from audio_capture import AudioCapture
from config import PROCESS_RATE_HZ, Config
from config_persistence import get_recordings_dir, load_config, save_config
from logging_utils import log_event, set_log_level
from pipeline import HeartbeatPipeline, TickInput
from recording_export import save_snapshot, write_csv
from recording_session import Recording, RecordingSession, RecordingSettings
from spectrum_analyser import SpectrumAnalyser
from training_state import StatusNotice

pg.setConfigOptions(antialias=True, useOpenGL=False)

TRACE_COLOR = '#2dd4bf'


class WaveformPlot(pg.PlotWidget):
    """Scrolling view of the last few seconds of shaped signal."""

    def __init__(self, window_sec: float, parent=None):
        super().__init__(parent=parent, background='#020617')
        self.window_sec = window_sec
        self.setMenuEnabled(False)
        self.setMouseEnabled(x=False, y=False)
        self.hideButtons()
        self.showGrid(x=True, y=True, alpha=0.25)
        self.getAxis('left').setTextPen(pg.mkPen('#888888'))
        self.getAxis('bottom').setTextPen(pg.mkPen('#888888'))
        self.setXRange(-window_sec, 0, padding=0)
        self.curve = self.plot(pen=pg.mkPen(TRACE_COLOR, width=2))

    def update_trace(self, times: np.ndarray, values: np.ndarray) -> None:
        if times.size < 2:
            self.curve.setData([], [])
            return
        self.curve.setData(times - times[-1], values)
        lo = float(values.min())
        hi = float(values.max())
        if hi - lo < 1e-6:
            mid = (hi + lo) / 2
            lo, hi = mid - 0.5, mid + 0.5
        pad = (hi - lo) * 0.1
        self.setYRange(lo - pad, hi + pad, padding=0)


class MonitorWindow(QMainWindow):
    """Main application window"""

    def __init__(self, config: Optional[Config] = None):
        super().__init__()
        self.setWindowTitle("UltraECG")
        self.setMinimumSize(640, 420)
        self.resize(960, 620)

        self.config = config if config is not None else load_config()
        set_log_level(self.config.log_level)

        self.capture = AudioCapture(self.config.audio)
        self.analyser = SpectrumAnalyser(self.config.audio)
        self.pipeline = HeartbeatPipeline(self.config, PROCESS_RATE_HZ)
        self.session = RecordingSession(self.config.recording)
        self._t0 = time.monotonic()
        self.last_recording: Optional[Recording] = None
        self._notice: Optional[StatusNotice] = None

        self._setup_ui()
        self._apply_config_to_ui()

        # Tick timer drives the pipeline; redraw timer only reads its state
        self.tick_timer = QTimer(self)
        self.tick_timer.setInterval(int(1000 / PROCESS_RATE_HZ))
        self.tick_timer.setTimerType(Qt.TimerType.PreciseTimer)
        self.tick_timer.timeout.connect(self._on_tick)

        self.redraw_timer = QTimer(self)
        self.redraw_timer.setInterval(self.config.display.redraw_ms)
        self.redraw_timer.timeout.connect(self._on_redraw)

    # ----- UI -----

    def _setup_ui(self) -> None:
        central = QWidget()
        layout = QVBoxLayout(central)

        self.plot = WaveformPlot(self.config.display.window_sec)
        layout.addWidget(self.plot, stretch=1)

        readouts = QGroupBox("Readings")
        grid = QGridLayout(readouts)
        self.hr_label = QLabel("--")
        self.hrv_label = QLabel("--")
        self.count_label = QLabel("--")
        self.peak_label = QLabel("--")
        self.freq_label = QLabel("--")
        self.snr_label = QLabel("--")
        for col, (name, value_label) in enumerate([
            ("Heart rate (BPM)", self.hr_label),
            ("HRV SDNN (ms)", self.hrv_label),
            ("Beats (10 min)", self.count_label),
            ("Peak level", self.peak_label),
            ("Peak freq (Hz)", self.freq_label),
            ("SNR (dB)", self.snr_label),
        ]):
            caption = QLabel(name)
            caption.setStyleSheet("color: #aaa;")
            value_label.setStyleSheet("color: #0af; font-size: 18px; font-weight: bold;")
            grid.addWidget(caption, 0, col)
            grid.addWidget(value_label, 1, col)
        layout.addWidget(readouts)

        self.status_label = QLabel("Stopped")
        self.status_label.setStyleSheet("color: #ccc;")
        layout.addWidget(self.status_label)

        settings = QGroupBox("Band / Filters")
        row = QHBoxLayout(settings)
        self.min_freq_spin = self._spin(0, 24000, 100, " Hz")
        self.max_freq_spin = self._spin(0, 24000, 100, " Hz")
        self.hp_spin = self._spin(0, 50, 0.1, " Hz")
        self.lp_spin = self._spin(0, 99, 1, " Hz")
        self.invert_check = QCheckBox("Invert")
        for caption, widget in [
            ("Ultrasound from", self.min_freq_spin),
            ("to", self.max_freq_spin),
            ("High-pass", self.hp_spin),
            ("Low-pass", self.lp_spin),
        ]:
            row.addWidget(QLabel(caption))
            row.addWidget(widget)
        row.addWidget(self.invert_check)
        layout.addWidget(settings)
        self.settings_group = settings

        buttons = QHBoxLayout()
        self.start_button = QPushButton("Start")
        self.stop_button = QPushButton("Stop")
        self.record_button = QPushButton(self.session.button_text(0.0))
        self.stop_button.setEnabled(False)
        self.record_button.setEnabled(False)
        buttons.addWidget(self.start_button)
        buttons.addWidget(self.stop_button)
        buttons.addWidget(self.record_button)
        layout.addLayout(buttons)

        self.setCentralWidget(central)

        self.start_button.clicked.connect(self.start_monitoring)
        self.stop_button.clicked.connect(self.stop_monitoring)
        self.record_button.clicked.connect(self.start_recording)
        self.min_freq_spin.valueChanged.connect(self._on_band_changed)
        self.max_freq_spin.valueChanged.connect(self._on_band_changed)
        self.hp_spin.valueChanged.connect(self._on_cutoffs_changed)
        self.lp_spin.valueChanged.connect(self._on_cutoffs_changed)
        self.invert_check.toggled.connect(self._on_invert_toggled)

    @staticmethod
    def _spin(lo: float, hi: float, step: float, suffix: str) -> QDoubleSpinBox:
        spin = QDoubleSpinBox()
        spin.setRange(lo, hi)
        spin.setSingleStep(step)
        spin.setDecimals(1)
        spin.setSuffix(suffix)
        spin.setKeyboardTracking(False)
        return spin

    def _apply_config_to_ui(self) -> None:
        widgets = (self.min_freq_spin, self.max_freq_spin, self.hp_spin, self.lp_spin, self.invert_check)
        for w in widgets:
            w.blockSignals(True)
        self.min_freq_spin.setValue(self.config.demod.min_freq)
        self.max_freq_spin.setValue(self.config.demod.max_freq)
        self.hp_spin.setValue(self.config.shaper.high_pass_hz)
        self.lp_spin.setValue(self.config.shaper.low_pass_hz)
        self.invert_check.setChecked(self.config.shaper.invert)
        for w in widgets:
            w.blockSignals(False)

    def _now(self) -> float:
        return time.monotonic() - self._t0

    # ----- settings -----

    def _on_band_changed(self, _value: float) -> None:
        lo = self.min_freq_spin.value()
        hi = self.max_freq_spin.value()
        self.pipeline.demodulator.set_band(min(lo, hi), max(lo, hi))

    def _on_cutoffs_changed(self, _value: float) -> None:
        self.pipeline.shaper.set_cutoffs(self.hp_spin.value(), self.lp_spin.value())

    def _on_invert_toggled(self, checked: bool) -> None:
        self.pipeline.shaper.set_invert(checked)

    def _set_inputs_locked(self, locked: bool) -> None:
        self.settings_group.setEnabled(not locked)

    # ----- monitoring -----

    def start_monitoring(self) -> None:
        if not self.capture.start():
            self.status_label.setText("Could not open the microphone.")
            return
        self.analyser.set_sample_rate(self.capture.sample_rate)
        self.analyser.reset()
        self._t0 = time.monotonic()
        self.pipeline.restart(self._now())
        self.tick_timer.start()
        self.redraw_timer.start()
        self.start_button.setEnabled(False)
        self.stop_button.setEnabled(True)
        self.record_button.setEnabled(True)
        log_event("INFO", "Monitor", "Monitoring started",
                  band=f"{self.config.demod.min_freq:g}-{self.config.demod.max_freq:g}")

    def stop_monitoring(self) -> None:
        # Tick timer first so no tick runs against a closed stream
        self.tick_timer.stop()
        self.redraw_timer.stop()
        self.capture.stop()
        self.session.cancel()
        self.pipeline.stop()
        self._set_inputs_locked(False)
        self.start_button.setEnabled(True)
        self.stop_button.setEnabled(False)
        self.record_button.setEnabled(False)
        self.record_button.setText(self.session.button_text(self._now()))
        self.status_label.setText("Stopped")

    def start_recording(self) -> None:
        now = self._now()
        settings = RecordingSettings.from_config(self.config)
        if not self.session.arm(now, settings):
            return
        self.pipeline.retrain(now)
        self._set_inputs_locked(True)
        self.record_button.setEnabled(False)

    def _on_tick(self) -> None:
        now = self._now()
        spectrum = self.analyser.byte_frequency_data(self.capture.latest_frame())
        output = self.pipeline.step(TickInput(spectrum, self.analyser.bin_hz, now))

        was_active = self.session.active
        recording = self.session.update(now, self.pipeline.phase, output)
        if recording is not None:
            self._finish_recording(recording)
        elif was_active and not self.session.active:
            # Timed out waiting for a stable signal
            self._post_notice(self.session.notice or "", now)

        if not self.session.active:
            self._set_inputs_locked(False)
            self.record_button.setEnabled(True)

    def _finish_recording(self, recording: Recording) -> None:
        self.last_recording = recording
        out_dir = get_recordings_dir(self.config)
        try:
            csv_path = write_csv(recording, out_dir, self.config.recording.export_rate_hz)
            png_path = save_snapshot(recording, out_dir)
        except (OSError, ValueError) as e:
            log_event("ERROR", "Export", "Failed to export recording", error=e)
            return
        self._post_notice(f"Saved {csv_path.name} and {png_path.name}", self._now())

    def _post_notice(self, text: str, now: float) -> None:
        self._notice = StatusNotice(text, now + self.config.training.notice_sec)

    def _on_redraw(self) -> None:
        now = self._now()
        times, values = self.pipeline.display_samples()
        self.plot.update_trace(times, values)

        readout = self.pipeline.metrics.flush(now)
        if readout is not None:
            self.peak_label.setText(f"{readout.peak_magnitude:.0f}")
            self.freq_label.setText(f"{readout.frequency_hz:.0f}")
            self.snr_label.setText(f"{readout.snr_db:.1f}" if readout.snr_db is not None else "--")

        latest = self.pipeline.latest
        if latest is not None:
            self.hr_label.setText(f"{latest.heart_rate:.0f}" if latest.heart_rate is not None else "--")
            self.hrv_label.setText(f"{latest.hrv_ms:.0f}" if latest.hrv_ms is not None else "--")
            self.count_label.setText(str(latest.beat_count) if latest.beat_count is not None else "--")

        self.record_button.setText(self.session.button_text(now))
        if self._notice is not None and self._notice.active(now):
            self.status_label.setText(self._notice.text)
        else:
            self.status_label.setText(
                self.pipeline.training.status_text(now, self.session.status_prefix()))

    def closeEvent(self, event):
        """Stop audio before the window goes away and persist settings."""
        if self.capture.running:
            self.stop_monitoring()
        save_config(self.config)
        event.accept()
