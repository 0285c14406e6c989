"""Per-cell flash confirmation.

Decides, for every cell and every tick, whether a confirmed event fires
from the smoothed delta signal. A cell fires when it is armed (it has
been observed below thr_low since its last event) and either holds the
signal at or above thr_high for hold_frames consecutive ticks, or, with
the quick-flash accumulator enabled, concentrates enough energy above
thr_low within the last energy_window ticks. After firing, a cell is
disarmed and serves a refractory cooldown.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .baseline import clamp
from .constants import COLOR_DOMINANCE_RATIO, HOLD_COUNT_MAX
from .model import Detection, DetectorConfig, EventKind, Phase


@dataclass
class CellState:
    """Hysteresis, refractory and energy state of every cell.

    Attributes:
        hold: Consecutive ticks at or above thr_high while armed
        refractory: Remaining cooldown ticks
        below_low: True once the cell was seen below thr_low (armed)
        energy_ring: Last energy_window positive excursions above thr_low
        energy_sum: Running sum of each cell's ring
        energy_pos: Next write slot in each cell's ring
    """

    hold: np.ndarray
    refractory: np.ndarray
    below_low: np.ndarray
    energy_ring: np.ndarray
    energy_sum: np.ndarray
    energy_pos: np.ndarray

    @classmethod
    def create(cls, cell_count: int, energy_window: int) -> "CellState":
        """Create fresh state; cells start disarmed until seen below thr_low."""
        window = max(2, int(energy_window))
        return cls(
            hold=np.zeros(cell_count, dtype=np.int32),
            refractory=np.zeros(cell_count, dtype=np.int32),
            below_low=np.zeros(cell_count, dtype=bool),
            energy_ring=np.zeros((cell_count, window), dtype=np.float64),
            energy_sum=np.zeros(cell_count, dtype=np.float64),
            energy_pos=np.zeros(cell_count, dtype=np.int32),
        )

    @property
    def cell_count(self) -> int:
        return self.hold.size

    @property
    def energy_window(self) -> int:
        return self.energy_ring.shape[1]

    def clear_energy(self, index: int) -> None:
        self.energy_ring[index, :] = 0.0
        self.energy_sum[index] = 0.0
        self.energy_pos[index] = 0

    def rearm_all(self) -> None:
        """Clear hold/refractory/energy and arm every cell."""
        self.hold[:] = 0
        self.refractory[:] = 0
        self.below_low[:] = True
        self.energy_ring[:, :] = 0.0
        self.energy_sum[:] = 0.0
        self.energy_pos[:] = 0


@dataclass(frozen=True)
class ColorFractions:
    """Colour-match fractions of one tick."""

    reveal: np.ndarray
    input: np.ndarray


def phase_kind(phase: Phase) -> EventKind:
    """Kind assumed for an ambiguous event in the given phase."""
    return EventKind.Input if phase is Phase.WaitingInput else EventKind.Reveal


def classify_color(
    reveal_frac: float,
    input_frac: float,
    config: DetectorConfig,
    phase: Phase,
) -> Optional[EventKind]:
    """Apply the colour gate to one cell.

    Returns:
        The event kind if the cell passes the gate, None if neither
        colour is present in sufficient quantity.
    """
    reveal_ok = reveal_frac > config.color_min_frac_reveal
    input_ok = input_frac > config.color_min_frac_input

    if reveal_ok and not input_ok:
        return EventKind.Reveal
    if input_ok and not reveal_ok:
        return EventKind.Input
    if not reveal_ok:
        return None

    # Both matched: only a clear majority decides
    if reveal_frac > input_frac * COLOR_DOMINANCE_RATIO:
        return EventKind.Reveal
    if input_frac > reveal_frac * COLOR_DOMINANCE_RATIO:
        return EventKind.Input
    return phase_kind(phase)


def _push_energy(cells: CellState, index: int, amount: float) -> float:
    pos = cells.energy_pos[index]
    cells.energy_sum[index] += amount - cells.energy_ring[index, pos]
    cells.energy_ring[index, pos] = amount
    cells.energy_pos[index] = (pos + 1) % cells.energy_window
    return float(cells.energy_sum[index])


def detect_events(
    cells: CellState,
    delta: np.ndarray,
    config: DetectorConfig,
    phase: Phase,
    colors: Optional[ColorFractions] = None,
) -> list[Detection]:
    """Run one tick of per-cell confirmation.

    Every cell is evaluated against the same delta snapshot; only the
    state of that cell is mutated.

    Args:
        cells: Per-cell state, mutated in place
        delta: Smoothed corrected delta per cell for this tick
        config: Sanitized detector config
        phase: Current round phase, used to classify ambiguous events
        colors: Colour fractions if the colour gate is enabled

    Returns:
        Detections in increasing cell order, at most one per cell.
    """
    thr_high = config.thr_high
    thr_low = config.thr_low
    energy_threshold = config.energy_threshold
    use_energy = config.quick_flash_enabled
    use_color = config.color_gate_enabled and colors is not None

    detections: list[Detection] = []

    for i in range(cells.cell_count):
        v = float(delta[i])

        if v < thr_low:
            cells.below_low[i] = True
            cells.hold[i] = 0

        if cells.refractory[i] > 0:
            cells.refractory[i] -= 1
            if not (config.refractory_bypass_when_armed and cells.below_low[i]):
                cells.hold[i] = 0
                continue

        # Only armed cells accumulate energy
        if not cells.below_low[i]:
            continue

        energy = 0.0
        if use_energy:
            energy = _push_energy(cells, i, max(0.0, v - thr_low))

        fired_hold = False
        if v >= thr_high:
            cells.hold[i] = min(HOLD_COUNT_MAX, cells.hold[i] + 1)
            fired_hold = cells.hold[i] >= config.hold_frames
        fired_energy = use_energy and energy > energy_threshold

        if not (fired_hold or fired_energy):
            continue

        if use_color:
            kind = classify_color(
                float(colors.reveal[i]), float(colors.input[i]), config, phase
            )
            if kind is None:
                continue
        else:
            kind = phase_kind(phase)

        confidence = clamp((v - thr_high) / max(1.0, thr_high), 0.0, 1.0)
        via_energy = fired_energy and not fired_hold
        if via_energy:
            excess = (energy - energy_threshold) / max(1.0, energy_threshold)
            confidence = max(confidence, clamp(excess, 0.0, 1.0))

        cells.hold[i] = 0
        cells.below_low[i] = False
        cells.refractory[i] = config.refractory_frames
        cells.clear_energy(i)

        detections.append(
            Detection(
                index=i,
                kind=kind,
                confidence=confidence,
                value=v,
                via_energy=via_energy,
            )
        )

    return detections
