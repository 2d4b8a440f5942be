"""
UltraECG - Recording Export
CSV (uniform 200 Hz grid) and PNG paper-strip snapshot of a finished recording.
"""

import math
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from config import PROCESS_RATE_HZ
from logging_utils import log_event
from recording_session import Recording

CSV_DISCLAIMER = "The data must not be used to diagnose/monitor/treat any medical condition."
SNAPSHOT_DISCLAIMER = "The data must not be used to diagnose, monitor, or treat any medical condition."

SNAPSHOT_WIDTH = 900
SNAPSHOT_HEIGHT = 1150
SNAPSHOT_ROWS = 4
SMALL_GRID_PX = 5
BIG_GRID_PX = 25

_MARGIN_X = 40
_MARGIN_TOP = 60
_MARGIN_BOTTOM = 40
_ROW_PADDING_Y = 10
_GRID_SMALL_COLOR = (229, 231, 235)
_GRID_BIG_COLOR = (196, 181, 253)


def _require_samples(times: Sequence[float], values: Sequence[float]) -> None:
    if len(times) < 2 or len(values) != len(times):
        raise ValueError("Not enough data recorded to export")


def resample_to_uniform_grid(
    times: Sequence[float],
    values: Sequence[float],
    duration_sec: float,
    rate_hz: float = PROCESS_RATE_HZ,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Linear interpolation of an irregular series onto i / rate_hz, i < duration * rate.

    Points before the first sample take the first value, points past the last
    take the last value. An empty series resamples to zeros.
    """
    n = int(math.floor(duration_sec * rate_hz))
    grid = np.arange(n, dtype=np.float64) / rate_hz
    if len(times) == 0 or len(values) == 0:
        return grid, np.zeros(n)
    return grid, np.interp(grid, np.asarray(times, dtype=np.float64),
                           np.asarray(values, dtype=np.float64))


def compute_average_hr(beat_times: Sequence[float]) -> Optional[float]:
    """Beats per minute across the first and last beat, None if undefined."""
    if len(beat_times) < 2:
        return None
    duration = beat_times[-1] - beat_times[0]
    if duration <= 0:
        return None
    return (len(beat_times) - 1) * 60.0 / duration


def _file_stamp(started_at: datetime) -> str:
    return started_at.strftime("%Y%m%d_%H%M%S")


def csv_filename(started_at: datetime) -> str:
    return f"ecg_snapshot_{_file_stamp(started_at)}.csv"


def snapshot_filename(started_at: datetime) -> str:
    return f"ecg_snapshot_{_file_stamp(started_at)}.png"


def _fmt_hz(value: float) -> str:
    return f"{value:g}"


def format_csv(recording: Recording, rate_hz: float = PROCESS_RATE_HZ) -> str:
    """Render the CSV text: '#' comment header, then time_s,value rows."""
    _require_samples(recording.times, recording.values)
    grid, values = resample_to_uniform_grid(
        recording.times, recording.values, recording.duration_sec, rate_hz)
    settings = recording.settings

    lines = [
        "# ECG snapshot exported from UltraECG monitor",
        f"# {CSV_DISCLAIMER}",
        f"# StartTime: {recording.started_at.strftime('%d.%m.%Y %H:%M:%S')}",
        f"# UltrasoundBandHz: HP={_fmt_hz(settings.min_freq)} LP={_fmt_hz(settings.max_freq)}",
        f"# SignalBandHz: HP={_fmt_hz(settings.high_pass_hz)} LP={_fmt_hz(settings.low_pass_hz)}",
        f"# SignalInverted: {'yes' if settings.invert else 'no'}",
        "time_s,value",
    ]
    lines.extend(f"{t:.3f},{v:.4f}" for t, v in zip(grid, values))
    return "\n".join(lines) + "\n"


def write_csv(recording: Recording, directory: Path, rate_hz: float = PROCESS_RATE_HZ) -> Path:
    text = format_csv(recording, rate_hz)
    path = Path(directory) / csv_filename(recording.started_at)
    path.write_text(text, encoding="utf-8", newline="\n")
    log_event("INFO", "Export", "CSV written", path=path, rate_hz=rate_hz)
    return path


def _load_font(size: int) -> ImageFont.ImageFont:
    try:
        return ImageFont.truetype("arial.ttf", size)
    except OSError:
        return ImageFont.load_default(size=size)


def _draw_grid(draw: ImageDraw.ImageDraw, grid_width: int, row_top: float, row_height: float) -> None:
    for x in range(0, grid_width + 1, SMALL_GRID_PX):
        color = _GRID_BIG_COLOR if x % BIG_GRID_PX == 0 else _GRID_SMALL_COLOR
        draw.line([(_MARGIN_X + x, row_top), (_MARGIN_X + x, row_top + row_height)], fill=color)
    y = 0
    while y <= row_height:
        color = _GRID_BIG_COLOR if y % BIG_GRID_PX == 0 else _GRID_SMALL_COLOR
        draw.line([(_MARGIN_X, row_top + y), (_MARGIN_X + grid_width, row_top + y)], fill=color)
        y += SMALL_GRID_PX


def render_snapshot(recording: Recording) -> Image.Image:
    """
    Draw the recording as four rows of paper-style ECG strip.

    Each row covers a quarter of the recording on a 5/25 px grid; the
    waveform is scaled by its global min/max. The header carries the start
    time, average heart rate, inversion flag and duration.
    """
    _require_samples(recording.times, recording.values)
    duration = recording.duration_sec
    row_duration = duration / SNAPSHOT_ROWS

    image = Image.new("RGB", (SNAPSHOT_WIDTH, SNAPSHOT_HEIGHT), (255, 255, 255))
    draw = ImageDraw.Draw(image)
    header_font = _load_font(12)
    small_font = _load_font(10)

    grid_width = SNAPSHOT_WIDTH - 2 * _MARGIN_X
    grid_height = SNAPSHOT_HEIGHT - _MARGIN_TOP - _MARGIN_BOTTOM
    row_height = grid_height / SNAPSHOT_ROWS

    avg_hr = compute_average_hr(recording.beat_times)
    hr_label = f"{avg_hr:.0f} BPM" if avg_hr else "--"
    invert_label = "Inverted" if recording.settings.invert else "Not Inverted"
    recorded = recording.started_at.strftime("%d/%m/%Y %H:%M:%S")
    black = (0, 0, 0)
    draw.text((_MARGIN_X, 20), f"Recorded: {recorded}", fill=black, font=header_font)
    draw.text((SNAPSHOT_WIDTH / 2, 20), f"Heart Rate: {hr_label}", fill=black, font=header_font)
    draw.text((_MARGIN_X, 36), f"Signal: {invert_label}", fill=black, font=header_font)
    draw.text((SNAPSHOT_WIDTH / 2, 36), f"Duration: {duration:g}s", fill=black, font=header_font)

    for row in range(SNAPSHOT_ROWS):
        _draw_grid(draw, grid_width, _MARGIN_TOP + row * row_height, row_height)

    values = np.asarray(recording.values, dtype=np.float64)
    min_val = float(values.min())
    max_val = float(values.max())
    if max_val - min_val < 1e-6:
        mid = (max_val + min_val) / 2
        min_val, max_val = mid - 0.5, mid + 0.5
    value_range = max_val - min_val

    # One polyline per row; points outside the recording window are dropped
    rows: list[list[tuple[float, float]]] = [[] for _ in range(SNAPSHOT_ROWS)]
    for t, v in zip(recording.times, values):
        if t < 0 or t > duration:
            continue
        row = min(SNAPSHOT_ROWS - 1, int(t // row_duration))
        row_top = _MARGIN_TOP + row * row_height
        x = _MARGIN_X + ((t - row * row_duration) / row_duration) * grid_width
        y_top = row_top + _ROW_PADDING_Y
        y_bottom = row_top + row_height - _ROW_PADDING_Y
        y = y_bottom - ((v - min_val) / value_range) * (y_bottom - y_top)
        rows[row].append((x, y))
    for points in rows:
        if len(points) >= 2:
            draw.line(points, fill=black, width=1)

    draw.text((_MARGIN_X, SNAPSHOT_HEIGHT - 24), SNAPSHOT_DISCLAIMER, fill=black, font=small_font)
    return image


def save_snapshot(recording: Recording, directory: Path) -> Path:
    image = render_snapshot(recording)
    path = Path(directory) / snapshot_filename(recording.started_at)
    image.save(path, format="PNG")
    log_event("INFO", "Export", "Snapshot written", path=path,
              size=f"{image.width}x{image.height}")
    return path
