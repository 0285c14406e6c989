"""zensolver application entry point.

This module initializes the application with proper DPI awareness
(on Windows) and the screen recording check (on macOS) before creating
the UI.

IMPORTANT: DPI awareness must be set BEFORE QApplication is created.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from zensolver import __version__
from zensolver.core.os_adapter import IS_MACOS, IS_WINDOWS, check_platform_ready
from zensolver.core.settings import DEFAULT_SETTINGS_PATH


def setup_platform() -> tuple[bool, str]:
    """Perform platform-specific setup before Qt initialization.

    Returns:
        Tuple of (success, warning_message).
    """
    if IS_WINDOWS:
        from zensolver.core.os_adapter.win_dpi import setup_dpi_awareness
        return setup_dpi_awareness()
    # macOS permission is checked after Qt is up so a dialog can be shown
    return True, ""


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="zensolver",
        description="Watches a memory grid game on screen and records the flash sequence.",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=DEFAULT_SETTINGS_PATH,
        help=f"settings file (default: {DEFAULT_SETTINGS_PATH})",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Application entry point.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = parse_args(argv)

    # Platform setup MUST happen before QApplication
    _, dpi_warning = setup_platform()

    from PySide6.QtWidgets import QApplication, QMessageBox

    app = QApplication(sys.argv[:1])
    app.setApplicationName("zensolver")
    app.setApplicationVersion(__version__)
    app.setOrganizationName("zensolver")

    ready, guidance = check_platform_ready()
    if not ready and IS_MACOS:
        from zensolver.core.os_adapter.mac_permissions import (
            request_screen_recording_permission,
        )
        request_screen_recording_permission()
        QMessageBox.critical(
            None,
            "Cannot start",
            guidance,
            QMessageBox.StandardButton.Ok,
        )
        return 1

    from zensolver.controller import ApplicationController
    from zensolver.core.settings import load_settings
    from zensolver.ui import MainWindow

    settings = load_settings(args.settings)

    window = MainWindow()
    controller = ApplicationController(window, settings, args.settings)
    app.aboutToQuit.connect(controller.shutdown)

    if dpi_warning:
        window.set_warning(dpi_warning)

    window.show()

    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
