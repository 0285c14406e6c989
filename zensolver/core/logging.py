"""Thread-safe logging system with circular buffer.

Provides a logging interface for the detection pipeline that:
- Uses a circular buffer (max 200 entries) to prevent memory growth
- Is safe to write from capture/timer callbacks and read from the UI
- Formats log entries with timestamps, round context and key/value pairs
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from threading import Lock
from typing import Any, Callable, Optional

from .constants import LOG_BUFFER_SIZE


class LogLevel(Enum):
    """Log entry severity levels."""

    DEBUG = auto()
    INFO = auto()
    WARNING = auto()
    ERROR = auto()


@dataclass
class LogEntry:
    """A single log entry.

    Attributes:
        timestamp: When the entry was created
        level: Severity level
        message: Log message content
        phase: Current round phase (if applicable)
        round_index: Current 0-based round (if applicable)
        context: Extra key/value details
    """

    timestamp: datetime
    level: LogLevel
    message: str
    phase: Optional[str] = None
    round_index: Optional[int] = None
    context: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        """Format the log entry as a string."""
        time_str = self.timestamp.strftime("%H:%M:%S.%f")[:-3]
        parts = [f"[{time_str}]"]

        if self.level in (LogLevel.WARNING, LogLevel.ERROR):
            parts.append(f"[{self.level.name}]")

        if self.phase:
            parts.append(f"[{self.phase}]")

        if self.round_index is not None:
            parts.append(f"[round {self.round_index + 1}]")

        parts.append(self.message)

        for key, value in self.context.items():
            if isinstance(value, float):
                parts.append(f"{key}={value:.3f}")
            else:
                parts.append(f"{key}={value}")

        return " ".join(parts)


@dataclass
class LogBuffer:
    """Thread-safe circular buffer for log entries.

    Uses a deque with maxlen to automatically discard old entries.
    """

    max_size: int = LOG_BUFFER_SIZE
    _buffer: deque[LogEntry] = field(default_factory=lambda: deque(maxlen=LOG_BUFFER_SIZE))
    _lock: Lock = field(default_factory=Lock)
    _listeners: list[Callable[[LogEntry], None]] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Reinitialize buffer with correct maxlen if max_size differs."""
        if self._buffer.maxlen != self.max_size:
            self._buffer = deque(maxlen=self.max_size)

    def add(self, entry: LogEntry) -> None:
        """Add a log entry to the buffer (thread-safe)."""
        with self._lock:
            self._buffer.append(entry)

        # Notify listeners outside the lock
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                pass  # A broken view must not break logging

    def get_all(self) -> list[LogEntry]:
        """Get all entries in the buffer (thread-safe)."""
        with self._lock:
            return list(self._buffer)

    def get_recent(self, count: int) -> list[LogEntry]:
        """Get the most recent N entries (thread-safe)."""
        with self._lock:
            if count >= len(self._buffer):
                return list(self._buffer)
            return list(self._buffer)[-count:]

    def clear(self) -> None:
        """Clear all entries (thread-safe)."""
        with self._lock:
            self._buffer.clear()

    def add_listener(self, callback: Callable[[LogEntry], None]) -> None:
        """Add a listener to be notified of new entries."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[LogEntry], None]) -> None:
        """Remove a listener."""
        if callback in self._listeners:
            self._listeners.remove(callback)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


class Logger:
    """Main logging interface for the detection pipeline.

    Provides convenience methods for logging at different levels with
    the current round context attached to every entry.
    """

    def __init__(
        self,
        buffer: Optional[LogBuffer] = None,
        min_level: LogLevel = LogLevel.DEBUG,
    ) -> None:
        """Initialize logger with optional existing buffer.

        Args:
            buffer: Buffer to write into (a new one if None)
            min_level: Entries below this level are dropped
        """
        self._buffer = buffer or LogBuffer()
        self._min_level = min_level
        self._current_phase: Optional[str] = None
        self._current_round: Optional[int] = None

    @property
    def buffer(self) -> LogBuffer:
        """Access the underlying log buffer."""
        return self._buffer

    def set_phase(self, phase: str) -> None:
        """Set the current phase for subsequent log entries."""
        self._current_phase = phase

    def set_round(self, round_index: int) -> None:
        """Set the current 0-based round for subsequent log entries."""
        self._current_round = round_index

    def clear_context(self) -> None:
        """Clear current phase and round context."""
        self._current_phase = None
        self._current_round = None

    def _log(self, level: LogLevel, message: str, **context: Any) -> Optional[LogEntry]:
        if level.value < self._min_level.value:
            return None
        entry = LogEntry(
            timestamp=datetime.now(),
            level=level,
            message=message,
            phase=self._current_phase,
            round_index=self._current_round,
            context=context,
        )
        self._buffer.add(entry)
        return entry

    def debug(self, message: str, **context: Any) -> Optional[LogEntry]:
        """Log a debug message."""
        return self._log(LogLevel.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> Optional[LogEntry]:
        """Log an info message."""
        return self._log(LogLevel.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> Optional[LogEntry]:
        """Log a warning message."""
        return self._log(LogLevel.WARNING, message, **context)

    def error(self, message: str, **context: Any) -> Optional[LogEntry]:
        """Log an error message."""
        return self._log(LogLevel.ERROR, message, **context)

    def state_change(
        self,
        old_phase: str,
        new_phase: str,
        round_index: int,
        reason: Optional[str] = None,
    ) -> Optional[LogEntry]:
        """Log a round phase transition."""
        self.set_phase(new_phase)
        self.set_round(round_index)
        if reason:
            return self.info(f"phase: {old_phase} → {new_phase}", reason=reason)
        return self.info(f"phase: {old_phase} → {new_phase}")

    def detection(
        self,
        label: str,
        kind: str,
        confidence: float,
        via_energy: bool = False,
    ) -> Optional[LogEntry]:
        """Log a confirmed flash."""
        if via_energy:
            return self.debug(f"flash {label}", kind=kind, conf=confidence, path="energy")
        return self.debug(f"flash {label}", kind=kind, conf=confidence)

    def calibration_result(
        self,
        frames: int,
        noise: float,
        warning: Optional[str] = None,
    ) -> Optional[LogEntry]:
        """Log calibration results."""
        if warning:
            return self.warning(f"calibration done: {warning}", frames=frames, noise=noise)
        return self.info("calibration done", frames=frames, noise=noise)


# Global logger instance for convenience
_global_logger: Optional[Logger] = None


def get_logger() -> Logger:
    """Get the global logger instance, creating one if needed."""
    global _global_logger
    if _global_logger is None:
        _global_logger = Logger()
    return _global_logger


def set_logger(logger: Logger) -> None:
    """Set the global logger instance."""
    global _global_logger
    _global_logger = logger
