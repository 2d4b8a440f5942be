#!/usr/bin/env python3
"""
UltraECG - Ultrasonic carrier heartbeat monitor

Listens to a near-ultrasonic carrier through the microphone, demodulates
its frequency deviation into a pulse waveform and reports heart rate, HRV
and beat count. Can also replay a WAV recording headless.
"""

import argparse
import cProfile
import sys
import time
from pathlib import Path
from typing import Optional

from config import PROCESS_RATE_HZ, Config
from config_persistence import load_config
from logging_utils import add_file_handler, log_event, set_log_level


def run_app(app_argv: list[str], config: Config) -> int:
    # Qt and pyqtgraph are only needed for the monitor window
    t_pyqt = time.perf_counter()
    from PyQt6.QtWidgets import QApplication

    app = QApplication(app_argv)
    app.setStyle("Fusion")
    from monitor_window import MonitorWindow

    log_event("INFO", "Startup", "GUI modules loaded",
              ms=f"{(time.perf_counter() - t_pyqt) * 1000:.0f}")
    window = MonitorWindow(config)
    window.show()
    return app.exec()


def replay_wav(path: Path, config: Config, csv_out: Optional[Path] = None) -> int:
    """Run the pipeline over a WAV file, logging beats and the final readings."""
    from pipeline import HeartbeatPipeline, TickInput
    from recording_export import save_snapshot, write_csv
    from recording_session import RecordingSession, RecordingSettings
    from spectrum_analyser import SpectrumAnalyser, iter_wav_ticks

    analyser = SpectrumAnalyser(config.audio)
    pipeline = HeartbeatPipeline(config, PROCESS_RATE_HZ)
    pipeline.restart(0.0)

    session = RecordingSession(config.recording)
    recording = None
    if csv_out is not None:
        session.arm(0.0, RecordingSettings.from_config(config))

    try:
        ticks = iter_wav_ticks(path, analyser, PROCESS_RATE_HZ)
        for timestamp, spectrum in ticks:
            output = pipeline.step(TickInput(spectrum, analyser.bin_hz, timestamp))
            if output is not None:
                for beat_time in output.beats:
                    log_event("DEBUG", "Replay", "Beat", t=f"{beat_time:.3f}",
                              hr=f"{output.heart_rate:.1f}" if output.heart_rate is not None else "--")
            if session.active:
                finished = session.update(timestamp, pipeline.phase, output)
                if finished is not None:
                    recording = finished
    except (OSError, ValueError) as e:
        log_event("ERROR", "Replay", "Could not read WAV file", path=path, error=e)
        return 1

    latest = pipeline.latest
    log_event(
        "INFO",
        "Replay",
        "Replay finished",
        phase=pipeline.phase.value,
        heart_rate=f"{latest.heart_rate:.1f}" if latest and latest.heart_rate is not None else "--",
        hrv_ms=f"{latest.hrv_ms:.1f}" if latest and latest.hrv_ms is not None else "--",
        beat_count=latest.beat_count if latest and latest.beat_count is not None else "--",
    )
    pipeline.stop()

    if csv_out is not None:
        if recording is None:
            log_event("WARNING", "Replay", "No complete recording captured",
                      notice=session.notice or "file too short")
            return 1
        try:
            csv_out.mkdir(parents=True, exist_ok=True)
            write_csv(recording, csv_out, config.recording.export_rate_hz)
            save_snapshot(recording, csv_out)
        except (OSError, ValueError) as e:
            log_event("ERROR", "Export", "Failed to export recording", error=e)
            return 1
    return 0


def list_devices() -> int:
    from audio_capture import list_input_devices

    devices = list_input_devices()
    if not devices:
        print("No input devices found.")
        return 1
    print("=" * 60)
    print("INPUT DEVICES")
    print("=" * 60)
    for d in devices:
        print(f"[{d['index']}] {d['name']}")
        print(f"    Inputs: {d['inputs']}, Sample Rate: {d['sample_rate']:.0f}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run UltraECG")
    parser.add_argument("--wav", type=Path, help="Replay a WAV file headless instead of opening the monitor")
    parser.add_argument(
        "--csv-out",
        type=Path,
        help="With --wav: directory for the CSV/PNG of the first recording",
    )
    parser.add_argument("--log-file", type=Path, help="Also write log output to this file")
    parser.add_argument("--list-devices", action="store_true", help="List audio input devices and exit")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    args = parser.parse_args()

    if args.list_devices:
        sys.exit(list_devices())

    config = load_config()
    if args.log_level:
        config.log_level = args.log_level
    set_log_level(config.log_level)
    if args.log_file is not None:
        log_event("INFO", "Startup", "Logging to file", path=add_file_handler(args.log_file))

    # Keep Qt argument list clean; avoid passing our flags downstream
    app_argv = [sys.argv[0]]

    def target() -> int:
        if args.wav is not None:
            return replay_wav(args.wav, config, args.csv_out)
        return run_app(app_argv, config)

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = target()
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = target()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
