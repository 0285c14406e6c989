"""Persistent application settings.

Settings are a versioned struct with an explicit default for every
field, merged with the stored JSON once at load time: unknown keys are
ignored, values of the wrong type keep their default (with a logged
warning), and files written before versioning (camelCase keys) are
migrated.
"""

import json
import re
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from .constants import ROI_MIN_SIZE, SETTINGS_VERSION, TICK_HZ_DEFAULT
from .logging import Logger, get_logger
from .model import DetectorConfig, Difficulty, Rect

DEFAULT_SETTINGS_PATH = Path.home() / ".zensolver" / "settings.json"

DEFAULT_ROI = Rect(x=0.2, y=0.2, width=0.6, height=0.6)

# camelCase keys that do not map mechanically to a field name
_LEGACY_ALIASES = {
    "revealMaxISI": "reveal_max_isi_ms",
}


def sanitize_roi(roi: Rect) -> Rect:
    """Clamp a ROI into the unit square with a minimum size."""
    x = min(max(roi.x, 0.0), 1.0)
    y = min(max(roi.y, 0.0), 1.0)
    w = min(max(roi.width, ROI_MIN_SIZE), 1.0)
    h = min(max(roi.height, ROI_MIN_SIZE), 1.0)
    if x + w > 1.0:
        x = 1.0 - w
    if y + h > 1.0:
        y = 1.0 - h
    return Rect(x=x, y=y, width=w, height=h)


def _default_rois() -> dict[Difficulty, Rect]:
    return {d: DEFAULT_ROI for d in Difficulty}


@dataclass
class Settings:
    """Everything persisted between sessions.

    Attributes:
        version: Schema version of the stored file
        difficulty: Selected difficulty (fixes the grid shape)
        rois: Normalized ROI per difficulty
        monitor_index: mss monitor captured (0 = all monitors)
        tick_hz: Target detection tick rate
        detector: Detector configuration
    """

    version: int = SETTINGS_VERSION
    difficulty: Difficulty = Difficulty.EXPERT
    rois: dict[Difficulty, Rect] = field(default_factory=_default_rois)
    monitor_index: int = 1
    tick_hz: float = TICK_HZ_DEFAULT
    detector: DetectorConfig = field(default_factory=DetectorConfig)

    @property
    def roi(self) -> Rect:
        """ROI of the selected difficulty."""
        return self.rois.get(self.difficulty, DEFAULT_ROI)

    def with_roi(self, roi: Rect, difficulty: Optional[Difficulty] = None) -> "Settings":
        """Copy with the ROI of a difficulty replaced (sanitized)."""
        rois = dict(self.rois)
        rois[difficulty or self.difficulty] = sanitize_roi(roi)
        return replace(self, rois=rois)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "difficulty": self.difficulty.value,
            "rois": {d.value: asdict(r) for d, r in self.rois.items()},
            "monitor_index": self.monitor_index,
            "tick_hz": self.tick_hz,
            "detector": asdict(self.detector),
        }


def camel_to_snake(name: str) -> str:
    """Convert a camelCase key to snake_case."""
    if name in _LEGACY_ALIASES:
        return _LEGACY_ALIASES[name]
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _coerce(value: Any, default: Any) -> Any:
    """Coerce a stored value to the type of its default.

    Raises:
        TypeError: If the value cannot represent the default's type
    """
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise TypeError(f"expected bool, got {type(value).__name__}")
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected int, got {type(value).__name__}")
        return int(value)
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"expected number, got {type(value).__name__}")
        return float(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise TypeError(f"expected str, got {type(value).__name__}")
        return value
    raise TypeError(f"unsupported type {type(default).__name__}")


def _merge_fields(target: Any, data: Any, section: str, logger: Logger) -> Any:
    """Merge a dict into a dataclass instance field by field."""
    if not isinstance(data, dict):
        logger.warning(f"settings: '{section}' is not an object, using defaults")
        return target

    known = {f.name for f in fields(target)}
    updates: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            continue
        default = getattr(target, key)
        try:
            updates[key] = _coerce(value, default)
        except TypeError as e:
            logger.warning(f"settings: {section}.{key} ignored ({e})")
    return replace(target, **updates)


def _parse_difficulty(value: Any, logger: Logger) -> Difficulty:
    try:
        return Difficulty(value)
    except ValueError:
        logger.warning(f"settings: unknown difficulty {value!r}, using default")
        return Difficulty.EXPERT


def _parse_rois(data: Any, logger: Logger) -> dict[Difficulty, Rect]:
    rois = _default_rois()
    if not isinstance(data, dict):
        logger.warning("settings: 'rois' is not an object, using defaults")
        return rois
    for key, value in data.items():
        try:
            difficulty = Difficulty(key)
        except ValueError:
            continue
        rect = _merge_fields(DEFAULT_ROI, value, f"rois.{key}", logger)
        rois[difficulty] = sanitize_roi(rect)
    return rois


def migrate_legacy(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a version-less settings file to the current layout.

    Legacy files store the detector config under 'config' and the ROIs
    under 'roi', both with camelCase keys.
    """
    migrated: dict[str, Any] = {"version": SETTINGS_VERSION}
    if "difficulty" in data:
        migrated["difficulty"] = data["difficulty"]
    rois = data.get("roi", data.get("rois"))
    if isinstance(rois, dict):
        migrated["rois"] = rois
    config = data.get("config", data.get("detector"))
    if isinstance(config, dict):
        migrated["detector"] = {camel_to_snake(k): v for k, v in config.items()}
    for key in ("monitorIndex", "tickHz"):
        if key in data:
            migrated[camel_to_snake(key)] = data[key]
    return migrated


def settings_from_dict(data: dict[str, Any], logger: Optional[Logger] = None) -> Settings:
    """Build Settings from stored data; every field always gets a value."""
    logger = logger or get_logger()
    if "version" not in data:
        logger.info("settings: migrating legacy settings file")
        data = migrate_legacy(data)

    settings = Settings()
    if "difficulty" in data:
        settings.difficulty = _parse_difficulty(data["difficulty"], logger)
    if "rois" in data:
        settings.rois = _parse_rois(data["rois"], logger)
    if "detector" in data:
        settings.detector = _merge_fields(settings.detector, data["detector"], "detector", logger)

    scalars = {k: data[k] for k in ("monitor_index", "tick_hz") if k in data}
    for key, value in scalars.items():
        try:
            setattr(settings, key, _coerce(value, getattr(settings, key)))
        except TypeError as e:
            logger.warning(f"settings: {key} ignored ({e})")

    settings.monitor_index = max(0, settings.monitor_index)
    if settings.tick_hz <= 0:
        settings.tick_hz = TICK_HZ_DEFAULT
    return settings


def load_settings(path: Path = DEFAULT_SETTINGS_PATH, logger: Optional[Logger] = None) -> Settings:
    """Load settings from a JSON file.

    A missing or unreadable file yields the defaults.
    """
    logger = logger or get_logger()
    path = Path(path)
    if not path.exists():
        return Settings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"settings: cannot read {path} ({e}), using defaults")
        return Settings()
    if not isinstance(data, dict):
        logger.warning(f"settings: {path} is not a JSON object, using defaults")
        return Settings()
    return settings_from_dict(data, logger)


def save_settings(
    settings: Settings,
    path: Path = DEFAULT_SETTINGS_PATH,
    logger: Optional[Logger] = None,
) -> bool:
    """Write settings as JSON.

    Returns:
        True if saved, False if the file could not be written
    """
    logger = logger or get_logger()
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)
    except OSError as e:
        logger.error(f"settings: cannot write {path} ({e})")
        return False
    return True
