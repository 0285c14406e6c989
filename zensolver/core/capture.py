"""Screen capture frame source using mss.

Grabs one monitor (or the whole virtual desktop) per tick as a BGRA
numpy array, which is what the grid sampler consumes.
"""

import threading
import time
from dataclasses import dataclass
from typing import Optional

import mss
import numpy as np

from .constants import CAPTURE_RETRY_INTERVAL_MS, CAPTURE_RETRY_N

# mss keeps platform handles (GDI DCs on Windows) in thread-local storage,
# so each thread needs its own instance
_thread_local = threading.local()


def _get_mss() -> "mss.mss":
    """Get or create the mss instance of the calling thread."""
    if getattr(_thread_local, "mss_instance", None) is None:
        _thread_local.mss_instance = mss.mss()
    return _thread_local.mss_instance


def _reset_mss() -> None:
    """Drop the thread-local mss instance (call on error recovery)."""
    sct = getattr(_thread_local, "mss_instance", None)
    if sct is not None:
        try:
            sct.close()
        except Exception:
            pass
        _thread_local.mss_instance = None


class CaptureError(Exception):
    """Exception raised when screen capture fails after retries."""

    pass


@dataclass(frozen=True)
class MonitorInfo:
    """Bounds of one capture target in virtual desktop pixels.

    Attributes:
        index: mss monitor index (0 is the whole virtual desktop)
        left: Left edge
        top: Top edge
        width: Width in pixels
        height: Height in pixels
    """

    index: int
    left: int
    top: int
    width: int
    height: int

    @property
    def label(self) -> str:
        if self.index == 0:
            return f"All monitors ({self.width}x{self.height})"
        return f"Monitor {self.index} ({self.width}x{self.height})"


def list_monitors() -> list[MonitorInfo]:
    """List capture targets; entry 0 is the combined virtual desktop."""
    sct = _get_mss()
    return [
        MonitorInfo(
            index=i,
            left=m["left"],
            top=m["top"],
            width=m["width"],
            height=m["height"],
        )
        for i, m in enumerate(sct.monitors)
    ]


def grab_monitor(
    monitor_index: int = 1,
    retry_count: int = CAPTURE_RETRY_N,
    retry_interval_ms: int = CAPTURE_RETRY_INTERVAL_MS,
) -> np.ndarray:
    """Capture one monitor as a BGRA array of shape (H, W, 4).

    Args:
        monitor_index: mss monitor index; out of range falls back to 0
        retry_count: Number of attempts before giving up
        retry_interval_ms: Milliseconds between attempts

    Returns:
        Captured frame

    Raises:
        CaptureError: If capture fails on every attempt
    """
    last_error: Optional[Exception] = None

    for attempt in range(max(1, retry_count)):
        try:
            sct = _get_mss()
            monitors = sct.monitors
            index = monitor_index if 0 <= monitor_index < len(monitors) else 0
            return np.array(sct.grab(monitors[index]))
        except Exception as e:
            last_error = e
            # The instance may be in a bad state after a failed grab
            _reset_mss()
            if attempt < retry_count - 1:
                time.sleep(retry_interval_ms / 1000.0)

    raise CaptureError(
        f"Screen capture failed after {retry_count} attempt(s): {last_error}"
    )


class ScreenFrameSource:
    """Frame source for the detection engine.

    Each grab() is a single attempt so a failing capture never stalls
    the tick; the engine counts consecutive failures.
    """

    def __init__(self, monitor_index: int = 1) -> None:
        self._monitor_index = monitor_index
        self._last_shape: Optional[tuple[int, ...]] = None

    @property
    def monitor_index(self) -> int:
        return self._monitor_index

    @monitor_index.setter
    def monitor_index(self, index: int) -> None:
        self._monitor_index = index
        self._last_shape = None

    @property
    def frame_size(self) -> Optional[tuple[int, int]]:
        """(width, height) of the last frame, None before the first grab."""
        if self._last_shape is None:
            return None
        return self._last_shape[1], self._last_shape[0]

    def grab(self) -> np.ndarray:
        """Capture the configured monitor.

        Raises:
            CaptureError: If the capture attempt fails
        """
        frame = grab_monitor(self._monitor_index, retry_count=1)
        self._last_shape = frame.shape
        return frame

    def close(self) -> None:
        """Release the mss instance of the calling thread."""
        _reset_mss()
