"""Global constants for the detection pipeline and runtime."""

from typing import Final

# Sampling
SAMPLE_MAX_SIDE_PX: Final[int] = 480
"""Longer side of the downsampled ROI working image"""

SAMPLES_PER_CELL_SIDE: Final[int] = 10
"""Target number of strided samples across the shorter cell side"""

# Luminance weights (ITU-R BT.709)
LUMA_WEIGHT_R: Final[float] = 0.2126
LUMA_WEIGHT_G: Final[float] = 0.7152
LUMA_WEIGHT_B: Final[float] = 0.0722

# Signal tracking
EMA_ALPHA_MIN: Final[float] = 0.01
EMA_ALPHA_MAX: Final[float] = 0.99

HOLD_COUNT_MAX: Final[int] = 255
"""Saturation value of the per-cell hold counter"""

COLOR_DOMINANCE_RATIO: Final[float] = 1.5
"""A colour fraction must exceed the other by this factor to decide the kind"""

# Calibration
CALIB_WINDOW_MS: Final[float] = 520.0
"""Length of the idle capture window used to seed baselines"""

CALIB_FRAME_INTERVAL_MS: Final[float] = 1000.0 / 60.0
"""Grab interval of the blocking calibration loop"""

CALIB_NOISE_WARN: Final[float] = 4.0
"""Mean per-cell luminance sigma above which calibration warns"""

# Round timing
INPUT_TIMEOUT_MIN_MS: Final[float] = 2000.0
"""Floor of the waiting-input failsafe"""

# Runtime
TICK_HZ_DEFAULT: Final[float] = 60.0
FPS_EMA_KEEP: Final[float] = 0.9

CAPTURE_RETRY_N: Final[int] = 3
"""Consecutive capture failures tolerated before the engine stops"""

CAPTURE_RETRY_INTERVAL_MS: Final[int] = 50

# Settings
SETTINGS_VERSION: Final[int] = 2
ROI_MIN_SIZE: Final[float] = 0.05

# UI constants
LOG_BUFFER_SIZE: Final[int] = 200
"""Maximum entries kept in the log ring buffer"""
