"""Platform-specific adapters for Windows and macOS.

This module provides cross-platform abstractions for:
- DPI awareness (Windows)
- Screen recording permission (macOS)
"""

import sys

# Platform detection
IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"


def check_platform_ready() -> tuple[bool, str]:
    """Check if the platform allows screen capture.

    - Windows: DPI awareness should already be set (done at startup)
    - macOS: Screen recording permission

    Returns:
        Tuple of (ready, message).
        - (True, "") if ready
        - (False, guidance_message) if not ready
    """
    if IS_MACOS:
        from .mac_permissions import check_permissions

        status = check_permissions()
        if not status.screen_recording:
            return False, status.guidance or "Screen recording permission is required"
        return True, ""

    return True, ""


__all__ = [
    "IS_WINDOWS",
    "IS_MACOS",
    "check_platform_ready",
]
