"""Settings storage for resize engine configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "FSRESIZE_SETTINGS_PATH",
        Path.home() / ".config" / "fsresize" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_IMAGE_ROOT = "/homePool"
DEFAULT_STATUS_DIR = "/datto/config/keys"
DEFAULT_TOOL_TIMEOUT_SECONDS = 432000  # 5 days
DEFAULT_SCREEN_TIMEOUT_SECONDS = 30

DEFAULT_SETTINGS: dict[str, Any] = {
    "image_root": DEFAULT_IMAGE_ROOT,
    "status_dir": DEFAULT_STATUS_DIR,
    "default_extension": "bmr",
    "metadata_filename": "voltab",
    "helper_binary": "fsresize-helper",
    "tool_timeout_seconds": DEFAULT_TOOL_TIMEOUT_SECONDS,
    "screen_timeout_seconds": DEFAULT_SCREEN_TIMEOUT_SECONDS,
    "partition_scan_attempts": 60,
    "partition_scan_interval": 0.5,
    "loop_detach_attempts": 5,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_float(key: str, default: float = 0.0) -> float:
    value = get_setting(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def get_path(key: str, default: str | None = None) -> Path:
    return Path(get_setting(key, default or DEFAULT_SETTINGS.get(key, "")))


load_settings()
