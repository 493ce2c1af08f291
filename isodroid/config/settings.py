"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "ISODROID_SETTINGS_PATH",
        Path.home() / ".config" / "isodroid" / "settings.json",
    )
)

STATE_DIR = Path(
    os.environ.get(
        "ISODROID_STATE_DIR",
        Path.home() / ".local" / "state" / "isodroid",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_MAX_DEVICES = 1
DEFAULT_GADGET_PATH = "/config/usb_gadget/g1"
DEFAULT_CHARGING_ATTRIBUTE = "/sys/class/power_supply/battery/input_suspend"

DEFAULT_SETTINGS: dict[str, Any] = {
    "max_devices": DEFAULT_MAX_DEVICES,
    "root_command": "su",
    "gadget_path": DEFAULT_GADGET_PATH,
    "function_name": "mass_storage.usb0",
    "config_name": "b.1",
    "function_link": "f100",
    "default_usb_config": "mtp,adb",
    "controller_property": "sys.usb.controller",
    "usb_config_property": "sys.usb.config",
    "charging_attribute": DEFAULT_CHARGING_ATTRIBUTE,
    "udc_class_path": "/sys/class/udc",
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


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_max_devices() -> int:
    """Current LUN slot count; a stored value below 1 reads back as 1."""
    return max(1, get_int("max_devices", DEFAULT_MAX_DEVICES))


def set_max_devices(value: int) -> int:
    """Persist the LUN slot count, clamped to a minimum of 1."""
    clamped = max(1, int(value))
    set_setting("max_devices", clamped)
    return clamped


def get_str(key: str, default: str = "") -> str:
    value = get_setting(key, default)
    if value is None:
        return default
    return str(value)


load_settings()
