"""
Viewer settings
===============

Settings are kept in a small JSON file next to the modules and merged over
``DEFAULT_SETTINGS`` on load, so a partial or missing file still yields a
complete configuration.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Use the module directory so running from a different CWD still persists.
CONFIG_FILE = str(Path(__file__).resolve().parent / ".trade_viewer_config.json")

DEFAULT_SETTINGS = {
    # $1 move on one XAUUSD lot is worth this much
    "instrument_multiplier": 100.0,
    "override_symbol": "XAUUSD",
    "display_timezone": "America/New_York",
    "source_timezone": "UTC",
    "notification_seconds": 3.0,
    "image_workers": 2,
    "export_filename": "trades.pdf",
    "log_level": "INFO",
}


def load_settings(path: Optional[str] = None) -> dict:
    """Load settings from the config file, falling back to defaults."""
    path = path or CONFIG_FILE
    merged = DEFAULT_SETTINGS.copy()
    try:
        if os.path.exists(path):
            with open(path, 'r') as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                merged.update(loaded)
            else:
                logger.warning("Ignoring settings file %s: expected a JSON object", path)
    except (OSError, ValueError) as e:
        logger.warning("Could not read settings from %s: %s", path, e)
    return merged


def save_settings(settings: dict, path: Optional[str] = None) -> None:
    """Save settings to the config file.

    Important: merges with existing config so partial updates don't wipe other keys.
    """
    path = path or CONFIG_FILE
    merged = load_settings(path)
    if isinstance(settings, dict):
        merged.update(settings)
    try:
        with open(path, 'w') as f:
            json.dump(merged, f, indent=2)
    except OSError as e:
        logger.warning("Could not save settings to %s: %s", path, e)


@dataclass
class ViewerConfig:
    """Typed view of the settings dict used by the session and front ends."""

    instrument_multiplier: float = DEFAULT_SETTINGS["instrument_multiplier"]
    override_symbol: str = DEFAULT_SETTINGS["override_symbol"]
    display_timezone: str = DEFAULT_SETTINGS["display_timezone"]
    source_timezone: str = DEFAULT_SETTINGS["source_timezone"]
    notification_seconds: float = DEFAULT_SETTINGS["notification_seconds"]
    image_workers: int = DEFAULT_SETTINGS["image_workers"]
    export_filename: str = DEFAULT_SETTINGS["export_filename"]
    log_level: str = DEFAULT_SETTINGS["log_level"]

    @classmethod
    def from_settings(cls, settings: dict) -> 'ViewerConfig':
        """Build a config from a settings dict; unknown keys are ignored."""
        merged = DEFAULT_SETTINGS.copy()
        merged.update(settings or {})
        return cls(
            instrument_multiplier=float(merged["instrument_multiplier"]),
            override_symbol=str(merged["override_symbol"]),
            display_timezone=str(merged["display_timezone"]),
            source_timezone=str(merged["source_timezone"]),
            notification_seconds=float(merged["notification_seconds"]),
            image_workers=max(1, int(merged["image_workers"])),
            export_filename=str(merged["export_filename"]),
            log_level=str(merged["log_level"]).upper(),
        )

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'ViewerConfig':
        return cls.from_settings(load_settings(path))

    def to_settings(self) -> dict:
        return {
            "instrument_multiplier": self.instrument_multiplier,
            "override_symbol": self.override_symbol,
            "display_timezone": self.display_timezone,
            "source_timezone": self.source_timezone,
            "notification_seconds": self.notification_seconds,
            "image_workers": self.image_workers,
            "export_filename": self.export_filename,
            "log_level": self.log_level,
        }


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for the front ends."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
