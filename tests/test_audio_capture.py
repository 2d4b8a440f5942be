import unittest
from types import SimpleNamespace
from unittest import mock

import numpy as np

from config import AudioConfig

try:
    import audio_capture
except OSError:  # PortAudio shared library missing on this machine
    audio_capture = None


@unittest.skipIf(audio_capture is None, "PortAudio not available")
class TestAudioCapture(unittest.TestCase):
    def setUp(self):
        self.capture = audio_capture.AudioCapture(AudioConfig())

    def test_callback_rolls_newest_samples_in(self):
        block = np.arange(256, dtype=np.float32).reshape(-1, 1)
        self.capture._callback(block, 256, None, None)
        frame = self.capture.latest_frame()
        self.assertEqual(frame.size, 512)
        np.testing.assert_array_equal(frame[-256:], block[:, 0])
        np.testing.assert_array_equal(frame[:256], np.zeros(256))

        self.capture._callback(block + 1000, 256, None, None)
        frame = self.capture.latest_frame()
        np.testing.assert_array_equal(frame[:256], block[:, 0])

    def test_latest_frame_is_a_copy(self):
        frame = self.capture.latest_frame()
        frame[:] = 5.0
        self.assertEqual(float(self.capture.latest_frame().max()), 0.0)

    def test_overflow_is_counted(self):
        status = SimpleNamespace(input_overflow=True)
        self.capture._callback(np.zeros((8, 1), dtype=np.float32), 8, None, status)
        self.assertEqual(self.capture._overflow_count, 1)

    def test_start_failure_returns_false(self):
        error = audio_capture.sd.PortAudioError("no device")
        with mock.patch.object(audio_capture.sd, "InputStream", side_effect=error):
            self.assertFalse(self.capture.start())
        self.assertFalse(self.capture.running)
        self.assertIsNone(self.capture.stream)

    def test_stream_closed_when_start_fails(self):
        stream = mock.MagicMock(samplerate=48000.0)
        stream.start.side_effect = audio_capture.sd.PortAudioError("device busy")
        with mock.patch.object(audio_capture.sd, "InputStream", return_value=stream):
            self.assertFalse(self.capture.start())
        stream.close.assert_called_once_with()
        self.assertIsNone(self.capture.stream)
        self.assertFalse(self.capture.running)

    def test_list_input_devices_filters_outputs(self):
        devices = [
            {"name": "Speakers", "max_input_channels": 0, "default_samplerate": 48000.0},
            {"name": "Mic", "max_input_channels": 2, "default_samplerate": 44100.0},
        ]
        with mock.patch.object(audio_capture.sd, "query_devices", return_value=devices):
            found = audio_capture.list_input_devices()
        self.assertEqual(found, [{"index": 1, "name": "Mic", "inputs": 2, "sample_rate": 44100.0}])


if __name__ == "__main__":
    unittest.main()
