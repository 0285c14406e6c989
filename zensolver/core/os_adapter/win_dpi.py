"""Windows DPI awareness setup.

Must run before QApplication is created, otherwise mss captures at the
scaled resolution on high-DPI displays and the normalized ROI no longer
lines up with the game board.
"""

import ctypes
from typing import Final

# Windows API constants
DPI_AWARENESS_CONTEXT_PER_MONITOR_AWARE_V2: Final[int] = -4
ERROR_ACCESS_DENIED: Final[int] = 5
PROCESS_PER_MONITOR_DPI_AWARE: Final[int] = 2

_DPI_WARNING = (
    "DPI awareness could not be set; the captured board may be scaled. "
    "Run at 100% display scaling or restart the application."
)


def setup_dpi_awareness() -> tuple[bool, str]:
    """Set Per-Monitor v2 DPI awareness for the current process.

    Returns:
        Tuple of (success, warning_message).
        - (True, "") if setup succeeded or was already set
        - (False, warning_message) if setup failed
    """
    try:
        user32 = ctypes.windll.user32

        # DPI_AWARENESS_CONTEXT is a HANDLE
        context_type = ctypes.c_void_p
        user32.SetProcessDpiAwarenessContext.argtypes = [context_type]
        user32.SetProcessDpiAwarenessContext.restype = ctypes.c_bool

        if user32.SetProcessDpiAwarenessContext(
            context_type(DPI_AWARENESS_CONTEXT_PER_MONITOR_AWARE_V2)
        ):
            return True, ""

        # Already set by a manifest or an earlier call
        if ctypes.windll.kernel32.GetLastError() == ERROR_ACCESS_DENIED:
            return True, ""

        return False, _DPI_WARNING

    except AttributeError:
        # Pre Windows 10 1703: fall back to the shcore API
        try:
            ctypes.windll.shcore.SetProcessDpiAwareness(PROCESS_PER_MONITOR_DPI_AWARE)
            return True, ""
        except Exception:
            return False, _DPI_WARNING

    except Exception as e:
        return False, f"DPI setup error: {e}"

