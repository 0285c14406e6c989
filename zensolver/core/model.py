"""Core data models for zensolver.

Defines the ROI and grid geometry, detector configuration, confirmed
events and the round state shared between the detection pipeline,
the round state machine and the UI.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

import numpy as np

from .constants import (
    EMA_ALPHA_MAX,
    EMA_ALPHA_MIN,
    INPUT_TIMEOUT_MIN_MS,
)


class Phase(Enum):
    """Round phases of the hands-free state machine."""

    Idle = "idle"
    """Before the first round has been armed"""

    Armed = "armed"
    """Waiting for the first reveal flash of a round"""

    Reveal = "reveal"
    """The game is showing its pattern"""

    WaitingInput = "waiting-input"
    """Waiting for the player to repeat the pattern"""

    Rearming = "rearming"
    """Short pause before the next round is armed"""


class EventKind(Enum):
    """Semantic class of a confirmed flash."""

    Reveal = "reveal"
    Input = "input"


class RevealEnd(Enum):
    """Why a reveal phase ended."""

    ExpectedLength = "expected-length"
    HardTimeout = "hard-timeout"
    InputKind = "input-kind"
    Gap = "gap"
    Silence = "silence"


class Difficulty(Enum):
    """Game difficulty, which fixes the grid shape."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"

    @property
    def grid(self) -> "GridConfig":
        """Grid shape used at this difficulty."""
        if self is Difficulty.EASY:
            return GridConfig(rows=4, cols=4)
        if self is Difficulty.MEDIUM:
            return GridConfig(rows=5, cols=5)
        return GridConfig(rows=6, cols=6)


@dataclass(frozen=True)
class Rect:
    """A normalized rectangle inside the frame.

    Attributes:
        x: Left edge in [0, 1]
        y: Top edge in [0, 1]
        width: Width in (0, 1]
        height: Height in (0, 1]
    """

    x: float
    y: float
    width: float
    height: float

    def to_pixels(self, frame_w: int, frame_h: int) -> tuple[int, int, int, int]:
        """Convert to absolute (x, y, w, h) pixel bounds, rounded."""
        return (
            int(round(self.x * frame_w)),
            int(round(self.y * frame_h)),
            int(round(self.width * frame_w)),
            int(round(self.height * frame_h)),
        )

    def is_valid(self) -> bool:
        """Check that the rect has positive size and lies inside [0, 1]."""
        return (
            self.width > 0 and self.height > 0 and
            self.x >= 0 and self.y >= 0 and
            self.x + self.width <= 1.0 + 1e-9 and
            self.y + self.height <= 1.0 + 1e-9
        )


@dataclass(frozen=True)
class GridConfig:
    """Grid shape over the ROI, indexed row-major."""

    rows: int
    cols: int

    @property
    def cell_count(self) -> int:
        return self.rows * self.cols

    def index_of(self, row: int, col: int) -> int:
        return row * self.cols + col

    def cell_of(self, index: int) -> tuple[int, int]:
        """Return (row, col) for a cell index."""
        return divmod(index, self.cols)


@dataclass(frozen=True)
class DetectorConfig:
    """Tunable detector and round configuration.

    Every field carries a default so a config is always complete. The
    snapshot is treated as immutable for the duration of a tick; call
    sanitized() before use to clamp edge values.
    """

    # Detection signal
    thr_high: float = 10.0
    thr_low: float = 6.0
    hold_frames: int = 1
    refractory_frames: int = 6
    padding_pct: float = 16.0
    ema_alpha: float = 0.20
    refractory_bypass_when_armed: bool = False

    # Short flash energy accumulator
    quick_flash_enabled: bool = True
    energy_window: int = 5
    energy_scale: float = 2.5

    # Round behaviour
    append_across_rounds: bool = False
    auto_round_detect: bool = True
    reveal_max_isi_ms: float = 900.0
    cluster_gap_ms: float = 900.0
    input_timeout_ms: float = 12000.0
    rearm_delay_ms: float = 120.0
    use_expected_reveal_len: bool = True
    initial_reveal_len: int = 3
    reveal_hard_timeout_ms: float = 1800.0

    # Colour gate
    color_gate_enabled: bool = True
    color_reveal_hex: str = "#1aa085"
    color_input_hex: str = "#27ad61"
    color_hue_tol: float = 40.0
    color_sat_min: float = 0.15
    color_val_min: float = 0.15
    color_min_frac_reveal: float = 0.002
    color_min_frac_input: float = 0.002

    @property
    def energy_threshold(self) -> float:
        """Accumulated energy needed to confirm a short flash."""
        return (self.thr_high - self.thr_low) * self.energy_scale

    def sanitized(self) -> "DetectorConfig":
        """Return a copy with out-of-range values clamped."""
        thr_low = max(0.0, float(self.thr_low))
        thr_high = float(self.thr_high)
        if thr_high <= thr_low:
            thr_high = thr_low + 1.0
        return replace(
            self,
            thr_low=thr_low,
            thr_high=thr_high,
            hold_frames=max(1, int(self.hold_frames)),
            refractory_frames=max(0, int(self.refractory_frames)),
            padding_pct=min(90.0, max(0.0, float(self.padding_pct))),
            ema_alpha=min(EMA_ALPHA_MAX, max(EMA_ALPHA_MIN, float(self.ema_alpha))),
            energy_window=max(2, int(self.energy_window)),
            energy_scale=max(0.01, float(self.energy_scale)),
            reveal_max_isi_ms=max(0.0, float(self.reveal_max_isi_ms)),
            cluster_gap_ms=max(0.0, float(self.cluster_gap_ms)),
            input_timeout_ms=max(INPUT_TIMEOUT_MIN_MS, float(self.input_timeout_ms)),
            rearm_delay_ms=max(0.0, float(self.rearm_delay_ms)),
            initial_reveal_len=max(1, int(self.initial_reveal_len)),
            reveal_hard_timeout_ms=max(0.0, float(self.reveal_hard_timeout_ms)),
            color_hue_tol=min(180.0, max(0.0, float(self.color_hue_tol))),
            color_sat_min=min(1.0, max(0.0, float(self.color_sat_min))),
            color_val_min=min(1.0, max(0.0, float(self.color_val_min))),
            color_min_frac_reveal=min(1.0, max(0.0, float(self.color_min_frac_reveal))),
            color_min_frac_input=min(1.0, max(0.0, float(self.color_min_frac_input))),
        )


@dataclass(frozen=True)
class Detection:
    """A confirmed event on one cell during one tick.

    Attributes:
        index: Row-major cell index
        kind: Reveal or input classification
        confidence: Signal margin above threshold, in [0, 1]
        value: Smoothed delta that fired
        via_energy: True if only the energy accumulator confirmed it
    """

    index: int
    kind: EventKind
    confidence: float
    value: float
    via_energy: bool = False


@dataclass(frozen=True)
class Step:
    """One recorded flash in the visible sequence.

    Attributes:
        row: 0-based grid row
        col: 0-based grid column
        frame: Tick index the event fired on
        t: Timestamp in milliseconds
        confidence: Informational confidence in [0, 1]
        kind: Classification used by the round state machine
    """

    row: int
    col: int
    frame: int
    t: float
    confidence: float
    kind: EventKind = EventKind.Reveal

    @property
    def label(self) -> str:
        """1-based cell label, e.g. r1c3."""
        return f"r{self.row + 1}c{self.col + 1}"


@dataclass(frozen=True)
class RoundState:
    """Round tracking state owned by the round state machine."""

    phase: Phase = Phase.Idle
    round_index: int = 0
    reveal_indices: tuple[int, ...] = ()
    input_count: int = 0
    last_event_t: Optional[float] = None
    last_reveal_t: Optional[float] = None

    @property
    def reveal_len(self) -> int:
        return len(self.reveal_indices)

    @property
    def input_progress(self) -> int:
        return self.input_count


@dataclass
class CalibrationStats:
    """Result of an idle-window baseline calibration.

    Attributes:
        baseline: Mean luminance per cell
        sigma: Standard deviation of luminance per cell
        frames: Number of frames accumulated
        elapsed_ms: Wall-clock length of the window
        warning: Optional warning if noise is abnormal or no frames arrived
    """

    baseline: np.ndarray
    sigma: np.ndarray
    frames: int
    elapsed_ms: float
    warning: Optional[str] = None

    @property
    def noise(self) -> float:
        """Mean per-cell noise level."""
        if self.sigma.size == 0:
            return 0.0
        return float(np.mean(self.sigma))


@dataclass
class TickResult:
    """Outcome of processing one frame.

    Attributes:
        frame: Tick index
        detections: Events confirmed this tick, in cell order
        steps: Steps recorded this tick
        round_state: Round state after the tick
        hot_index: Cell with the largest smoothed delta (diagnostic)
        hot_confidence: Hot cell margin relative to thr_high (diagnostic)
        fps: Smoothed tick rate
        calibrating: True while the tick fed calibration
        calibration: Stats of a calibration that completed this tick
    """

    frame: int
    detections: list[Detection] = field(default_factory=list)
    steps: list[Step] = field(default_factory=list)
    round_state: RoundState = field(default_factory=RoundState)
    hot_index: Optional[int] = None
    hot_confidence: float = 0.0
    fps: float = 0.0
    calibrating: bool = False
    calibration: Optional[CalibrationStats] = None


def sequence_text(steps: list[Step]) -> str:
    """Space-separated step labels, e.g. 'r1c2 r3c4'."""
    return " ".join(step.label for step in steps)
