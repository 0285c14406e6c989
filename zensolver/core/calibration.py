"""Idle-window baseline calibration.

Captures a short window of per-cell luminance while the board is idle
and uses the per-cell mean as the starting baseline, so detection
begins from a clean, fully re-armed state.
"""

import time
from typing import Callable, Optional

import numpy as np

from .constants import CALIB_FRAME_INTERVAL_MS, CALIB_NOISE_WARN, CALIB_WINDOW_MS
from .model import CalibrationStats, GridConfig, Rect
from .sampler import GridSampler


class CalibrationSession:
    """Accumulates luminance frames over a fixed wall-clock window.

    The session is fed once per delivered frame and never blocks, so it
    can run inside the frame tick.
    """

    def __init__(
        self,
        cell_count: int,
        started_ms: float,
        window_ms: float = CALIB_WINDOW_MS,
    ) -> None:
        """Start a session.

        Args:
            cell_count: Number of grid cells
            started_ms: Timestamp the window starts at
            window_ms: Window length in milliseconds
        """
        self._sum = np.zeros(cell_count, dtype=np.float64)
        self._sum_sq = np.zeros(cell_count, dtype=np.float64)
        self._count = 0
        self._started_ms = started_ms
        self._last_ms = started_ms
        self._window_ms = window_ms

    @property
    def count(self) -> int:
        """Frames accumulated so far."""
        return self._count

    @property
    def started_ms(self) -> float:
        return self._started_ms

    def add(self, lums: Optional[np.ndarray], now_ms: float) -> None:
        """Accumulate one frame of luminance.

        A missing sample (the source produced no frame this tick) is
        skipped without counting.
        """
        self._last_ms = max(self._last_ms, now_ms)
        if lums is None:
            return
        values = np.asarray(lums, dtype=np.float64)
        if values.shape != self._sum.shape:
            return
        self._sum += values
        self._sum_sq += values * values
        self._count += 1

    def is_done(self, now_ms: float) -> bool:
        """True once the window has elapsed."""
        return now_ms - self._started_ms >= self._window_ms

    def finish(self) -> CalibrationStats:
        """Compute the per-cell mean and noise of the window."""
        count = max(1, self._count)
        mean = self._sum / count
        var = np.maximum(self._sum_sq / count - mean * mean, 0.0)
        sigma = np.sqrt(var)

        warning: Optional[str] = None
        if self._count == 0:
            warning = "no frames received during calibration"
        elif sigma.size and float(np.mean(sigma)) > CALIB_NOISE_WARN:
            warning = "board noise is high, check the ROI and keep the board idle"

        return CalibrationStats(
            baseline=mean,
            sigma=sigma,
            frames=self._count,
            elapsed_ms=self._last_ms - self._started_ms,
            warning=warning,
        )


def calibrate_baseline(
    grab_frame: Callable[[], Optional[np.ndarray]],
    sampler: GridSampler,
    roi: Rect,
    grid: GridConfig,
    padding_pct: float,
    window_ms: float = CALIB_WINDOW_MS,
    interval_ms: float = CALIB_FRAME_INTERVAL_MS,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> CalibrationStats:
    """Run a blocking calibration over window_ms.

    Grabs frames until the window elapses. Frames that are None are
    skipped and do not count towards the mean.

    Args:
        grab_frame: Returns the next frame, or None if none is available
        sampler: Grid sampler used for luminance
        roi: Normalized ROI of the grid
        grid: Grid shape
        padding_pct: Cell interior padding, percent
        window_ms: Calibration window in milliseconds
        interval_ms: Sleep between grabs in milliseconds
        clock: Monotonic clock in seconds
        sleep: Sleep function in seconds

    Returns:
        CalibrationStats with the per-cell mean baseline
    """
    start_ms = clock() * 1000.0
    session = CalibrationSession(grid.cell_count, start_ms, window_ms)

    while True:
        now_ms = clock() * 1000.0
        if session.is_done(now_ms):
            break
        frame = grab_frame()
        if frame is None:
            session.add(None, now_ms)
        else:
            session.add(sampler.sample_luminance(frame, roi, grid, padding_pct), now_ms)
        sleep(interval_ms / 1000.0)

    return session.finish()
