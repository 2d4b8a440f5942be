import math
import unittest

import numpy as np

from beat_detector import BeatDetector, make_bandpass_biquad

FS = 200.0


def pulse_train(duration_sec, period_sec=1.0, offset_sec=0.25, sigma_sec=0.015, noise=0.02, seed=7):
    """Gaussian pulses on a quiet baseline, sampled at 200 Hz."""
    t = np.arange(int(duration_sec * FS)) / FS
    x = np.zeros_like(t)
    for centre in np.arange(offset_sec, duration_sec, period_sec):
        x += np.exp(-0.5 * ((t - centre) / sigma_sec) ** 2)
    rng = np.random.default_rng(seed)
    return t, x + rng.normal(0.0, noise, size=t.size)


class TestBandpass(unittest.TestCase):
    def test_rejects_dc(self):
        bq = make_bandpass_biquad(5.0, 15.0, FS)
        y = 0.0
        for _ in range(2000):
            y = bq.process(1.0)
        self.assertLess(abs(y), 1e-6)

    def test_unity_gain_at_centre(self):
        bq = make_bandpass_biquad(5.0, 15.0, FS)
        f0 = math.sqrt(5.0 * 15.0)
        out = [bq.process(math.sin(2 * math.pi * f0 * n / FS)) for n in range(4000)]
        self.assertAlmostEqual(max(abs(v) for v in out[-400:]), 1.0, delta=0.03)

    def test_reset(self):
        bq = make_bandpass_biquad(5.0, 15.0, FS)
        first = bq.process(1.0)
        bq.process(0.5)
        bq.reset()
        self.assertEqual(bq.process(1.0), first)


class TestBeatDetector(unittest.TestCase):
    def setUp(self):
        self.detector = BeatDetector(FS)

    def test_integration_window_is_150ms(self):
        self.assertEqual(self.detector.window, 30)

    def test_warmup_then_learning(self):
        d = self.detector
        t, x = pulse_train(3.0)
        for ti, xi in zip(t, x):
            out = d.process(xi, ti)
            if ti < 0.5:
                self.assertEqual(out, [])
                self.assertIsNone(d.learning_started_at)
                self.assertIsNone(d.learning_progress(ti))
            elif ti < 2.5 - 1e-9:
                self.assertEqual(out, [])
                self.assertAlmostEqual(d.learning_started_at, 0.5)
                self.assertFalse(d.init_done)
        self.assertTrue(d.init_done)
        self.assertEqual(d.learning_progress(3.0), 1.0)
        self.assertAlmostEqual(d.learning_progress(1.5), 0.5)

    def test_thresholds_ordered_after_learning(self):
        d = self.detector
        t, x = pulse_train(3.0)
        for ti, xi in zip(t, x):
            d.process(xi, ti)
        self.assertTrue(d.init_done)
        self.assertGreaterEqual(d.spki, d.npki)
        self.assertAlmostEqual(d.threshold, d.npki + 0.25 * (d.spki - d.npki))

    def test_detects_regular_pulses(self):
        d = self.detector
        t, x = pulse_train(20.0)
        beats = []
        for ti, xi in zip(t, x):
            beats.extend(d.process(xi, ti))

        settled = [b for b in beats if b > 12.0]
        self.assertGreaterEqual(len(settled), 7)
        self.assertLessEqual(len(settled), 9)
        for interval in np.diff(settled):
            self.assertAlmostEqual(interval, 1.0, delta=0.05)
        # Beats come back in time order and never closer than the dedup gap
        self.assertTrue(all(b2 - b1 >= 0.2 for b1, b2 in zip(beats, beats[1:])))

    def _armed(self):
        d = self.detector
        d.init_done = True
        d.spki = 2.0
        d.npki = 0.5
        d.threshold = 0.875
        return d

    def test_candidate_above_threshold_is_accepted(self):
        d = self._armed()
        d._handle_candidate(10.0, 4.0)
        self.assertEqual(d._pending, [(10.0, 10.0 + 0.08)])
        self.assertAlmostEqual(d.spki, 0.125 * 4.0 + 0.875 * 2.0)
        self.assertAlmostEqual(d.threshold, d.npki + 0.25 * (d.spki - d.npki))
        self.assertEqual(d.last_accepted_candidate_time, 10.0)

    def test_candidate_below_threshold_updates_noise(self):
        d = self._armed()
        d._handle_candidate(10.0, 0.6)
        self.assertEqual(d._pending, [])
        self.assertAlmostEqual(d.npki, 0.125 * 0.6 + 0.875 * 0.5)
        self.assertEqual(d.spki, 2.0)

    def test_refractory_period(self):
        d = self._armed()
        d._handle_candidate(10.0, 4.0)
        spki = d.spki
        d._handle_candidate(10.1, 4.0)
        self.assertEqual(len(d._pending), 1)
        self.assertEqual(d.spki, spki)
        d._handle_candidate(10.3, 4.0)
        self.assertEqual(len(d._pending), 2)

    def _fill_waveform(self, peak_time):
        d = self.detector
        for k in range(800, 1041):
            time = k / FS
            d._t.append(time)
            d._y.append(1.0 if abs(time - peak_time) < 1e-9 else 0.01)

    def test_refinement_moves_to_waveform_peak(self):
        d = self.detector
        self._fill_waveform(5.05)
        d._pending = [(5.0, 5.08)]
        self.assertEqual(d._flush_pending(5.07), [])
        self.assertEqual(len(d._pending), 1)
        out = d._flush_pending(5.08)
        self.assertEqual(len(out), 1)
        self.assertAlmostEqual(out[0], 5.05)
        self.assertEqual(d._pending, [])

    def test_refined_duplicates_are_dropped(self):
        d = self.detector
        self._fill_waveform(5.05)
        d._pending = [(5.0, 5.08), (5.1, 5.18)]
        out = d._flush_pending(5.2)
        self.assertEqual(len(out), 1)
        self.assertAlmostEqual(out[0], 5.05)
        self.assertAlmostEqual(d.last_emitted_time, 5.05)

    def test_reset_clears_state(self):
        d = self.detector
        t, x = pulse_train(4.0)
        for ti, xi in zip(t, x):
            d.process(xi, ti)
        d.reset()
        self.assertFalse(d.init_done)
        self.assertIsNone(d.warmup_until)
        self.assertIsNone(d.learning_started_at)
        self.assertEqual((d.spki, d.npki, d.threshold, d.dc), (0.0, 0.0, 0.0, 0.0))
        self.assertEqual(len(d._y), 0)
        self.assertEqual(d._pending, [])


if __name__ == "__main__":
    unittest.main()
