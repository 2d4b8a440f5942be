import unittest

import numpy as np

from config import RateConfig
from rate_estimator import RateEstimator


class TestRateEstimator(unittest.TestCase):
    def setUp(self):
        self.rate = RateEstimator()

    def _feed(self, times):
        for t in times:
            self.rate.add_beat(t)

    def test_no_readings_before_two_beats(self):
        self.rate.add_beat(1.0)
        self.assertIsNone(self.rate.heart_rate)
        self.assertIsNone(self.rate.hrv_ms)
        self.assertEqual(self.rate.beat_count, 1)

    def test_first_reading_then_smoothing(self):
        self._feed([0.0, 1.0])
        self.assertAlmostEqual(self.rate.heart_rate, 60.0)
        # Mean interval over (1.0, 0.5) = 0.75 s -> 80 BPM, blended at 0.2
        self.rate.add_beat(1.5)
        self.assertAlmostEqual(self.rate.heart_rate, 0.8 * 60.0 + 0.2 * 80.0)

    def test_uses_last_eight_intervals(self):
        self._feed([0.0, 0.25])  # 240 BPM, out of range
        self.assertIsNone(self.rate.heart_rate)
        self._feed([1.25 + i for i in range(8)])
        self.assertAlmostEqual(self.rate.instantaneous_bpm(), 60.0)

    def test_out_of_range_rates_are_ignored(self):
        self._feed([0.0, 1.0])
        self.rate.add_beat(1.2)  # mean interval 0.6 s -> 100 BPM, accepted
        accepted = self.rate.heart_rate
        self.rate.reset()
        self._feed([0.0, 2.5])  # 24 BPM
        self.assertIsNone(self.rate.heart_rate)
        self.assertIsNotNone(accepted)

    def test_hrv_needs_five_beats(self):
        self._feed([0.0, 1.0, 2.1, 3.0])
        self.assertIsNone(self.rate.hrv_ms)
        self.rate.add_beat(4.1)
        expected = float(np.std([1000.0, 1100.0, 900.0, 1100.0]))
        self.assertAlmostEqual(self.rate.hrv_ms, expected, places=6)

    def test_hrv_rejects_implausible_intervals(self):
        # 4 s and 0.2 s gaps are outside (250, 3500) ms
        self._feed([0.0, 4.0, 5.0, 6.0, 6.2, 7.2])
        expected = float(np.std([1000.0, 1000.0, 1000.0]))
        self.assertAlmostEqual(self.rate.hrv_ms, expected)

    def test_hrv_needs_three_plausible_intervals(self):
        self._feed([0.0, 4.0, 8.0, 9.0, 10.0])
        self.assertIsNone(self.rate.hrv_ms)

    def test_hrv_uses_recent_beats_only(self):
        early = [0.5 * i for i in range(10)]           # 500 ms intervals
        late = [4.5 + 1.0 * i for i in range(1, 21)]   # 1000 ms intervals
        self._feed(early + late)
        self.assertAlmostEqual(self.rate.hrv_ms, 0.0)

    def test_beat_count_window(self):
        self._feed([0.0, 100.0, 599.0, 601.0])
        # 0.0 falls out of the 600 s window of 601.0
        self.assertEqual(self.rate.beat_count, 3)

    def test_history_is_trimmed_by_span(self):
        self._feed([0.0, 1.0, 606.0])
        self.assertEqual(list(self.rate.beats), [1.0, 606.0])

    def test_history_is_trimmed_by_size(self):
        rate = RateEstimator(RateConfig(max_history=5))
        for t in range(10):
            rate.add_beat(float(t))
        self.assertEqual(list(rate.beats), [5.0, 6.0, 7.0, 8.0, 9.0])

    def test_out_of_order_beat_is_ignored(self):
        self._feed([1.0, 2.0])
        self.assertFalse(self.rate.add_beat(1.5))
        self.assertEqual(list(self.rate.beats), [1.0, 2.0])
        self.assertEqual(self.rate.last_beat_time, 2.0)

    def test_decay_clears_below_half_minimum(self):
        self._feed([0.0, 1.0, 2.0, 3.0, 4.0])
        self.assertIsNotNone(self.rate.hrv_ms)
        self.rate.decay_heart_rate(0.5)
        self.assertAlmostEqual(self.rate.heart_rate, 30.0)
        self.rate.decay_heart_rate(0.49)
        self.assertIsNone(self.rate.heart_rate)
        self.assertIsNone(self.rate.hrv_ms)

    def test_reset(self):
        self._feed([0.0, 1.0, 2.0])
        self.rate.reset()
        self.assertEqual(len(self.rate.beats), 0)
        self.assertIsNone(self.rate.heart_rate)
        self.assertIsNone(self.rate.beat_count)
        self.assertIsNone(self.rate.last_beat_time)


if __name__ == "__main__":
    unittest.main()
