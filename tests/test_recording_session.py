import unittest

from config import Config, RecordingConfig
from pipeline import TickOutput
from recording_session import (
    CANCEL_NOTICE,
    RecordingPhase,
    RecordingSession,
    RecordingSettings,
)
from training_state import TrainingPhase

RUNNING = TrainingPhase.RUNNING
WAIT = TrainingPhase.WAIT_STABLE


def tick(timestamp, sample=0.5, beats=()):
    return TickOutput(
        timestamp=timestamp,
        sample=sample,
        value=sample,
        frequency_hz=19000.0,
        snr_db=25.0,
        beats=tuple(beats),
        phase=RUNNING,
        notice=None,
        heart_rate=60.0,
        hrv_ms=None,
        beat_count=1,
    )


class TestRecordingSession(unittest.TestCase):
    def setUp(self):
        self.config = Config()
        self.settings = RecordingSettings.from_config(self.config)
        self.session = RecordingSession(RecordingConfig())

    def test_idle_state(self):
        self.assertFalse(self.session.active)
        self.assertFalse(self.session.inputs_locked)
        self.assertEqual(self.session.button_text(0.0), "Record 30 seconds")
        self.assertIsNone(self.session.update(0.0, RUNNING, tick(0.0)))

    def test_arm_enters_acquire(self):
        self.assertTrue(self.session.arm(1.0, self.settings))
        self.assertIs(self.session.phase, RecordingPhase.ACQUIRE)
        self.assertTrue(self.session.inputs_locked)
        self.assertEqual(self.session.button_text(1.0), "Preparing…")
        self.assertEqual(self.session.status_prefix(), "Preparing recording…")
        self.assertFalse(self.session.arm(2.0, self.settings))

    def test_waits_for_running_detector(self):
        self.session.arm(0.0, self.settings)
        self.session.update(5.0, WAIT)
        self.assertIs(self.session.phase, RecordingPhase.ACQUIRE)
        self.session.update(6.0, RUNNING)
        self.assertIs(self.session.phase, RecordingPhase.COUNTDOWN)
        self.assertEqual(self.session.button_text(6.2), "Get ready 3 s")
        self.assertEqual(self.session.button_text(8.5), "Get ready 1 s")
        self.session.update(8.99, RUNNING, tick(8.99))
        self.assertIs(self.session.phase, RecordingPhase.COUNTDOWN)
        self.session.update(9.0, RUNNING, tick(9.0))
        self.assertIs(self.session.phase, RecordingPhase.RECORDING)

    def test_acquire_timeout_cancels(self):
        self.session.arm(0.0, self.settings)
        self.session.update(24.9, WAIT)
        self.assertIs(self.session.phase, RecordingPhase.ACQUIRE)
        self.session.update(25.0, WAIT)
        self.assertIs(self.session.phase, RecordingPhase.CANCELLED)
        self.assertFalse(self.session.active)
        self.assertFalse(self.session.inputs_locked)
        self.assertEqual(self.session.notice, CANCEL_NOTICE)
        self.assertEqual(self.session.button_text(25.0), "Record 30 seconds")
        # A new attempt can be armed straight away
        self.assertTrue(self.session.arm(26.0, self.settings))
        self.assertIsNone(self.session.notice)

    def test_records_thirty_seconds(self):
        self.session.arm(0.0, self.settings)
        self.session.update(1.0, RUNNING)
        self.session.update(4.0, RUNNING, tick(4.0))
        self.assertIs(self.session.phase, RecordingPhase.RECORDING)

        recording = None
        k = 1
        while recording is None and k < 7000:
            ts = 4.0 + k * 0.005
            beats = (ts - 0.1,) if k % 200 == 0 else ()
            recording = self.session.update(ts, RUNNING, tick(ts, sample=k * 1e-4, beats=beats))
            if recording is None and k == 1000:
                self.assertEqual(self.session.button_text(ts), "Recording 26 s")
            k += 1

        self.assertIsNotNone(recording)
        self.assertIs(self.session.phase, RecordingPhase.IDLE)
        self.assertEqual(recording.times[0], 0.0)
        self.assertGreaterEqual(recording.times[-1], 30.0)
        self.assertLess(recording.times[-1], 30.01)
        self.assertEqual(len(recording.times), len(recording.values))
        self.assertAlmostEqual(recording.values[0], 1e-4)
        # First beat was reported on the 200th recorded tick, 0.1 s before it
        self.assertAlmostEqual(recording.beat_times[0], 199 * 0.005 - 0.1)
        self.assertEqual(len(recording.beat_times), 30)
        self.assertEqual(recording.duration_sec, 30.0)
        self.assertEqual(recording.settings, self.settings)

    def test_cancel_during_recording(self):
        self.session.arm(0.0, self.settings)
        self.session.update(1.0, RUNNING)
        self.session.update(4.0, RUNNING)
        self.session.update(4.005, RUNNING, tick(4.005))
        self.session.cancel()
        self.assertIs(self.session.phase, RecordingPhase.IDLE)
        self.assertIsNone(self.session.update(4.01, RUNNING, tick(4.01)))

    def test_settings_snapshot(self):
        self.config.shaper.invert = True
        self.config.demod.min_freq = 17000.0
        snap = RecordingSettings.from_config(self.config)
        self.assertTrue(snap.invert)
        self.assertEqual(snap.min_freq, 17000.0)
        self.assertEqual(snap.max_freq, 20000.0)
        self.assertEqual((snap.high_pass_hz, snap.low_pass_hz), (0.5, 40.0))


if __name__ == "__main__":
    unittest.main()
