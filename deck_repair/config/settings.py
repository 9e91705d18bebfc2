"""Settings storage for repair configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "DECK_REPAIR_SETTINGS_PATH",
        Path.home() / ".config" / "deck-repair" / "settings.json",
    )
)

# Environment variables that override stored booleans
ENV_OVERRIDES = {
    "noprompt": "NOPROMPT",
    "poweroff": "POWEROFF",
}

DEFAULT_DD_BLOCK_SIZE = "128M"

DEFAULT_SETTINGS: dict[str, Any] = {
    "dd_block_size": DEFAULT_DD_BLOCK_SIZE,
    "verify_partitions": True,
    "noprompt": False,
    "poweroff": False,
    "log_dir": None,
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


def get_bool(key: str, default: bool = False) -> bool:
    """Read a boolean, letting a non-empty environment variable win.

    Matches shell semantics: NOPROMPT=1 or any other non-empty value is
    true, unset or empty falls back to the stored setting.
    """
    env_name = ENV_OVERRIDES.get(key)
    if env_name and os.environ.get(env_name):
        return True
    return bool(get_setting(key, default))


load_settings()
