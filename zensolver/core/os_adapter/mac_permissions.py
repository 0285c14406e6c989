"""macOS screen recording permission.

Without it mss captures only the wallpaper and the desktop, so every
grid cell reads a constant and nothing is ever detected.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class PermissionStatus:
    """Status of the macOS permissions zensolver needs.

    Attributes:
        screen_recording: True if screen recording is allowed
        guidance: User guidance text if the permission is missing
    """

    screen_recording: bool
    guidance: Optional[str] = None


def check_permissions() -> PermissionStatus:
    """Check the screen recording permission without prompting."""
    try:
        from Quartz import CGPreflightScreenCaptureAccess
    except ImportError:
        # pyobjc not installed: capture will surface the problem later
        return PermissionStatus(screen_recording=True)

    try:
        granted = bool(CGPreflightScreenCaptureAccess())
    except Exception:
        granted = False

    if granted:
        return PermissionStatus(screen_recording=True)

    return PermissionStatus(
        screen_recording=False,
        guidance=(
            "Screen recording permission is required.\n\n"
            "Open System Settings → Privacy & Security → Screen Recording,\n"
            "enable this application and restart it."
        ),
    )


def request_screen_recording_permission() -> bool:
    """Trigger the system permission dialog if not already granted.

    Returns:
        True if permission is now granted, False otherwise.
    """
    try:
        from Quartz import CGRequestScreenCaptureAccess

        return bool(CGRequestScreenCaptureAccess())
    except ImportError:
        return False
    except Exception:
        return False
