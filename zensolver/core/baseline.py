"""Per-cell baseline tracking with global drift removal.

Each cell keeps an exponential moving average of its luminance. The
per-cell deviation from that baseline is corrected by the median
deviation across all cells, which cancels scene-wide brightness changes
while a minority of cells flash, and then smoothed by a second EMA.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .constants import EMA_ALPHA_MAX, EMA_ALPHA_MIN


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp a value to the given range."""
    return max(min_val, min(max_val, value))


@dataclass
class TrackerUpdate:
    """Result of one tracker update.

    Attributes:
        delta_smooth: Snapshot of the smoothed corrected delta per cell
        hot_index: Cell with the largest smoothed delta, None if no cells
        hot_value: Smoothed delta of the hot cell
        drift: Median raw delta removed this tick
    """

    delta_smooth: np.ndarray
    hot_index: Optional[int]
    hot_value: float
    drift: float


class BaselineTracker:
    """Maintains the baseline and smoothed delta signal of every cell."""

    def __init__(self, cell_count: int) -> None:
        """Initialize the tracker.

        Args:
            cell_count: Number of grid cells (rows * cols)
        """
        self._baseline = np.zeros(cell_count, dtype=np.float64)
        self._delta_smooth = np.zeros(cell_count, dtype=np.float64)
        self._seeded = False

    @property
    def cell_count(self) -> int:
        return self._baseline.size

    @property
    def baseline(self) -> np.ndarray:
        """Copy of the current per-cell baseline."""
        return self._baseline.copy()

    @property
    def delta_smooth(self) -> np.ndarray:
        """Copy of the current smoothed delta per cell."""
        return self._delta_smooth.copy()

    @property
    def seeded(self) -> bool:
        """True once a baseline was calibrated or warm-started."""
        return self._seeded

    def seed(self, baseline: np.ndarray) -> None:
        """Replace the baseline (e.g. from calibration) and zero the deltas."""
        values = np.asarray(baseline, dtype=np.float64)
        if values.shape != self._baseline.shape:
            raise ValueError(
                f"Baseline shape {values.shape} does not match {self._baseline.shape}"
            )
        self._baseline[:] = values
        self._delta_smooth[:] = 0.0
        self._seeded = True

    def reset(self, cell_count: Optional[int] = None) -> None:
        """Clear all state, optionally resizing to a new cell count."""
        n = self.cell_count if cell_count is None else cell_count
        self._baseline = np.zeros(n, dtype=np.float64)
        self._delta_smooth = np.zeros(n, dtype=np.float64)
        self._seeded = False

    def update(self, raw: np.ndarray, alpha: float) -> TrackerUpdate:
        """Fold one tick of raw luminance into the baseline.

        Args:
            raw: Raw luminance per cell
            alpha: EMA factor, clamped to [0.01, 0.99]

        Returns:
            TrackerUpdate with the smoothed delta snapshot and hot cell
        """
        raw = np.asarray(raw, dtype=np.float64)
        if raw.shape != self._baseline.shape:
            raise ValueError(
                f"Sample shape {raw.shape} does not match {self._baseline.shape}"
            )
        if raw.size == 0:
            return TrackerUpdate(self._delta_smooth.copy(), None, 0.0, 0.0)

        a = clamp(float(alpha), EMA_ALPHA_MIN, EMA_ALPHA_MAX)

        if not self._seeded:
            # First frame without calibration becomes the baseline
            self._baseline[:] = raw
            self._seeded = True

        self._baseline += a * (raw - self._baseline)
        deltas = raw - self._baseline

        drift = float(np.median(deltas))
        corrected = deltas - drift
        self._delta_smooth = (1.0 - a) * self._delta_smooth + a * corrected

        hot_index = int(np.argmax(self._delta_smooth))
        hot_value = float(self._delta_smooth[hot_index])

        return TrackerUpdate(
            delta_smooth=self._delta_smooth.copy(),
            hot_index=hot_index,
            hot_value=hot_value,
            drift=drift,
        )
