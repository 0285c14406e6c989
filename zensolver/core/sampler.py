"""Per-cell grid sampling of video frames.

Reduces the ROI of a frame to one luminance value per grid cell and,
optionally, two colour-match fractions per cell (pixels close to the
reveal colour and to the input colour). Frames are BGR or BGRA uint8
arrays as delivered by mss.
"""

import math
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .constants import (
    LUMA_WEIGHT_B,
    LUMA_WEIGHT_G,
    LUMA_WEIGHT_R,
    SAMPLE_MAX_SIDE_PX,
    SAMPLES_PER_CELL_SIDE,
)
from .model import DetectorConfig, GridConfig, Rect


@dataclass(frozen=True)
class ColorTargets:
    """Colour gate parameters in HSV space.

    Attributes:
        reveal_hue: Hue of the reveal colour in degrees
        input_hue: Hue of the input colour in degrees
        hue_tol: Maximum hue distance in degrees
        sat_min: Minimum saturation in [0, 1]
        val_min: Minimum value in [0, 1]
    """

    reveal_hue: float
    input_hue: float
    hue_tol: float
    sat_min: float
    val_min: float

    @classmethod
    def from_config(cls, config: DetectorConfig) -> "ColorTargets":
        """Build targets from the hex colours of a detector config."""
        return cls(
            reveal_hue=rgb_to_hsv(*hex_to_rgb(config.color_reveal_hex))[0],
            input_hue=rgb_to_hsv(*hex_to_rgb(config.color_input_hex))[0],
            hue_tol=config.color_hue_tol,
            sat_min=config.color_sat_min,
            val_min=config.color_val_min,
        )


@dataclass
class GridSample:
    """Per-cell measurements for one frame.

    Attributes:
        luminance: Mean luminance per cell, shape (N,)
        reveal_frac: Fraction of samples matching the reveal colour, or None
        input_frac: Fraction of samples matching the input colour, or None
    """

    luminance: np.ndarray
    reveal_frac: Optional[np.ndarray] = None
    input_frac: Optional[np.ndarray] = None

    @property
    def has_color(self) -> bool:
        return self.reveal_frac is not None and self.input_frac is not None


def hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    """Parse #rgb or #rrggbb into an (r, g, b) tuple.

    Malformed strings parse as black.
    """
    s = hex_color.strip().lstrip("#")
    if len(s) == 3:
        s = "".join(c * 2 for c in s)
    try:
        n = int(s, 16) if len(s) == 6 else 0
    except ValueError:
        n = 0
    return (n >> 16) & 255, (n >> 8) & 255, n & 255


def rgb_to_hsv(r: int, g: int, b: int) -> tuple[float, float, float]:
    """Convert 8-bit RGB to (hue degrees, saturation, value)."""
    pixel = np.array([[[r, g, b]]], dtype=np.float32) / 255.0
    h, s, v = cv2.cvtColor(pixel, cv2.COLOR_RGB2HSV)[0, 0]
    return float(h), float(s), float(v)


def hue_distance(a: np.ndarray, b: float) -> np.ndarray:
    """Circular distance between hues in degrees, in [0, 180]."""
    d = np.abs(a - b) % 360.0
    return np.where(d > 180.0, 360.0 - d, d)


def luminance(rgb: np.ndarray) -> np.ndarray:
    """Rec.709 luma of a float RGB array with channels last."""
    return (
        LUMA_WEIGHT_R * rgb[..., 0] +
        LUMA_WEIGHT_G * rgb[..., 1] +
        LUMA_WEIGHT_B * rgb[..., 2]
    )


def cell_bounds(
    width: int,
    height: int,
    grid: GridConfig,
    padding_pct: float,
) -> list[tuple[int, int, int, int]]:
    """Compute padded interior bounds (x0, y0, x1, y1) of every cell.

    Each cell is shrunk by padding_pct/2 percent of its size on every
    side so grid lines and borders do not bleed into the sample.
    """
    cell_w = width / grid.cols
    cell_h = height / grid.rows
    pad_x = (padding_pct / 100.0) * cell_w * 0.5
    pad_y = (padding_pct / 100.0) * cell_h * 0.5

    bounds = []
    for row in range(grid.rows):
        y0 = max(0, math.floor(row * cell_h + pad_y))
        y1 = min(height, math.ceil((row + 1) * cell_h - pad_y))
        for col in range(grid.cols):
            x0 = max(0, math.floor(col * cell_w + pad_x))
            x1 = min(width, math.ceil((col + 1) * cell_w - pad_x))
            bounds.append((x0, y0, x1, y1))
    return bounds


class GridSampler:
    """Samples one scalar per grid cell from a frame's ROI.

    The ROI is downsampled so its longer side is at most max_side pixels
    before any pixel is read, bounding per-frame cost independent of the
    source resolution.
    """

    def __init__(self, max_side: int = SAMPLE_MAX_SIDE_PX) -> None:
        self._max_side = max(1, int(max_side))

    @property
    def max_side(self) -> int:
        return self._max_side

    def _working_image(self, frame: Optional[np.ndarray], roi: Rect) -> Optional[np.ndarray]:
        """Crop and downsample the ROI to a float32 RGB image.

        Returns None when there is no signal: no frame, a frame without
        pixel dimensions, or an ROI that covers no pixels.
        """
        if frame is None or frame.ndim < 2 or frame.size == 0:
            return None

        frame_h, frame_w = frame.shape[:2]
        x, y, w, h = roi.to_pixels(frame_w, frame_h)
        x0, y0 = max(0, x), max(0, y)
        x1, y1 = min(frame_w, x + w), min(frame_h, y + h)
        if x1 <= x0 or y1 <= y0:
            return None

        crop = frame[y0:y1, x0:x1]
        if crop.ndim == 2:
            crop = cv2.cvtColor(crop, cv2.COLOR_GRAY2BGR)
        elif crop.shape[2] == 4:
            crop = crop[:, :, :3]
        crop = np.ascontiguousarray(crop)

        ch, cw = crop.shape[:2]
        if max(cw, ch) > self._max_side:
            scale = self._max_side / max(cw, ch)
            dw = max(1, int(round(cw * scale)))
            dh = max(1, int(round(ch * scale)))
            crop = cv2.resize(crop, (dw, dh), interpolation=cv2.INTER_AREA)

        # BGR -> RGB, float for luma/HSV maths
        return np.ascontiguousarray(crop[:, :, ::-1], dtype=np.float32)

    def sample(
        self,
        frame: Optional[np.ndarray],
        roi: Rect,
        grid: GridConfig,
        padding_pct: float,
        colors: Optional[ColorTargets] = None,
    ) -> GridSample:
        """Sample luminance (and optionally colour fractions) per cell.

        Args:
            frame: BGR/BGRA frame, or None if the source has no frame yet
            roi: Normalized region containing the grid
            grid: Grid shape
            padding_pct: Interior margin per cell, percent
            colors: Colour targets; colour fractions are skipped if None

        Returns:
            GridSample with arrays of length rows*cols. All zeros when the
            frame carries no signal.
        """
        n = grid.cell_count
        lums = np.zeros(n, dtype=np.float64)
        reveal = np.zeros(n, dtype=np.float64) if colors is not None else None
        inputs = np.zeros(n, dtype=np.float64) if colors is not None else None

        image = self._working_image(frame, roi)
        if image is None:
            return GridSample(lums, reveal, inputs)

        height, width = image.shape[:2]
        luma = luminance(image)

        reveal_mask = input_mask = None
        if colors is not None:
            hsv = cv2.cvtColor(image / 255.0, cv2.COLOR_RGB2HSV)
            vivid = (hsv[..., 1] >= colors.sat_min) & (hsv[..., 2] >= colors.val_min)
            reveal_mask = vivid & (hue_distance(hsv[..., 0], colors.reveal_hue) <= colors.hue_tol)
            input_mask = vivid & (hue_distance(hsv[..., 0], colors.input_hue) <= colors.hue_tol)

        cell_w = width / grid.cols
        cell_h = height / grid.rows
        step = max(1, math.floor(min(cell_w, cell_h) / SAMPLES_PER_CELL_SIDE))

        for idx, (x0, y0, x1, y1) in enumerate(cell_bounds(width, height, grid, padding_pct)):
            if x1 <= x0 or y1 <= y0:
                continue
            patch = luma[y0:y1:step, x0:x1:step]
            count = patch.size
            if count == 0:
                continue
            lums[idx] = float(patch.mean())
            if reveal_mask is not None and input_mask is not None:
                reveal[idx] = np.count_nonzero(reveal_mask[y0:y1:step, x0:x1:step]) / count
                inputs[idx] = np.count_nonzero(input_mask[y0:y1:step, x0:x1:step]) / count

        return GridSample(lums, reveal, inputs)

    def sample_luminance(
        self,
        frame: Optional[np.ndarray],
        roi: Rect,
        grid: GridConfig,
        padding_pct: float,
    ) -> np.ndarray:
        """Luminance-only convenience wrapper around sample()."""
        return self.sample(frame, roi, grid, padding_pct).luminance
