"""Settings storage for conversion defaults."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "LUKS_FIPS_SETTINGS_PATH",
        Path.home() / ".config" / "luks-fips-convert" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_PBKDF = "pbkdf2"
DEFAULT_HASH = "sha512"
DEFAULT_ITERATIONS = 100000
DEFAULT_BACKUP_DIR = "."
DEFAULT_LOG_FILE = "conversion.log"

MIN_KEYSLOT = 0
MAX_KEYSLOT = 7

REQUIRED_COMMANDS = ("cryptsetup", "blkid", "lsblk")

DEFAULT_SETTINGS: dict[str, Any] = {
    "pbkdf": DEFAULT_PBKDF,
    "hash": DEFAULT_HASH,
    "iterations": DEFAULT_ITERATIONS,
    "backup_dir": DEFAULT_BACKUP_DIR,
    "log_file": DEFAULT_LOG_FILE,
    "overwrite_backup": False,
    "auto_confirm": False,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def _is_valid(key: str, value: Any) -> bool:
    # Values must have the default's JSON type; "false" is not a boolean.
    default = DEFAULT_SETTINGS[key]
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int) and not isinstance(value, bool) and value > 0
    return isinstance(value, str) and bool(value.strip())

def load_settings(path: Path | None = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    settings_path = path or SETTINGS_PATH
    if not settings_path.exists():
        return
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(
            {
                key: value
                for key, value in data.items()
                if key in DEFAULT_SETTINGS and _is_valid(key, value)
            }
        )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_bool(key: str, default: bool = False) -> bool:
    value = get_setting(key, default)
    return value if isinstance(value, bool) else default


load_settings()
