import tempfile
import unittest
from pathlib import Path

import numpy as np
from scipy.io import wavfile

from config import AudioConfig
from spectrum_analyser import SpectrumAnalyser, iter_frames, iter_wav_ticks, load_wav_mono

SR = 48000


def tone(freq, amplitude=0.5, n=512, sr=SR):
    return amplitude * np.sin(2 * np.pi * freq * np.arange(n) / sr)


class TestSpectrumAnalyser(unittest.TestCase):
    def setUp(self):
        self.analyser = SpectrumAnalyser(AudioConfig())

    def test_geometry(self):
        self.assertEqual(self.analyser.bin_count, 256)
        self.assertAlmostEqual(self.analyser.bin_hz, 93.75)

    def test_tone_lands_in_its_bin(self):
        data = self.analyser.byte_frequency_data(tone(200 * 93.75))
        self.assertEqual(data.dtype, np.uint8)
        self.assertEqual(data.size, 256)
        self.assertEqual(int(np.argmax(data)), 200)
        self.assertGreater(int(data[200]), 200)
        self.assertEqual(int(data[100]), 0)

    def test_linear_magnitude_scaling(self):
        # Blackman coherent gain is 0.42; a bin-centred tone of amplitude A gives A * 0.42 / 2
        mags = self.analyser.magnitudes(tone(200 * 93.75, amplitude=1.0))
        self.assertAlmostEqual(mags[200], 0.21, delta=0.005)

    def test_silence_maps_to_zero(self):
        data = self.analyser.byte_frequency_data(np.zeros(512))
        self.assertEqual(int(data.max()), 0)

    def test_short_and_long_frames(self):
        self.assertEqual(self.analyser.magnitudes(np.ones(10)).size, 256)
        long_frame = np.concatenate([np.zeros(1000), tone(200 * 93.75)])
        np.testing.assert_allclose(
            self.analyser.magnitudes(long_frame),
            self.analyser.magnitudes(tone(200 * 93.75)),
        )

    def test_smoothing_blends_frames(self):
        analyser = SpectrumAnalyser(AudioConfig(smoothing=0.5))
        loud = analyser.magnitudes(tone(200 * 93.75, amplitude=1.0))
        blended = analyser.magnitudes(np.zeros(512))
        self.assertAlmostEqual(blended[200], 0.5 * loud[200])
        analyser.reset()
        self.assertEqual(analyser.magnitudes(np.zeros(512))[200], 0.0)


class TestReplay(unittest.TestCase):
    def test_iter_frames_timing(self):
        samples = np.arange(SR, dtype=np.float64)
        frames = list(iter_frames(samples, SR, 512, tick_rate=200))
        self.assertEqual(len(frames), 200)
        t0, f0 = frames[0]
        self.assertAlmostEqual(t0, 0.005)
        self.assertEqual(f0.size, 512)
        np.testing.assert_array_equal(f0[-240:], samples[:240])
        np.testing.assert_array_equal(f0[:272], np.zeros(272))
        t_last, f_last = frames[-1]
        self.assertAlmostEqual(t_last, 1.0)
        np.testing.assert_array_equal(f_last, samples[-512:])

    def test_iter_frames_empty(self):
        self.assertEqual(list(iter_frames(np.array([]), SR, 512)), [])

    def test_load_wav_mono_int16_stereo(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "stereo.wav"
            left = np.full(100, 16384, dtype=np.int16)
            right = np.zeros(100, dtype=np.int16)
            wavfile.write(str(path), 44100, np.stack([left, right], axis=1))
            sr, mono = load_wav_mono(path)
        self.assertEqual(sr, 44100)
        self.assertEqual(mono.shape, (100,))
        self.assertAlmostEqual(mono[0], 0.25, places=4)

    def test_iter_wav_ticks(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tone.wav"
            wavfile.write(str(path), SR, tone(200 * 93.75, n=SR // 2).astype(np.float32))
            analyser = SpectrumAnalyser(AudioConfig(sample_rate=44100))
            ticks = list(iter_wav_ticks(path, analyser))
        self.assertEqual(analyser.sample_rate, SR)
        self.assertEqual(len(ticks), 100)
        timestamp, spectrum = ticks[-1]
        self.assertAlmostEqual(timestamp, 0.5)
        self.assertEqual(int(np.argmax(spectrum)), 200)


if __name__ == "__main__":
    unittest.main()
