"""Persistent settings for Razer RGB control."""

import json
import logging
import os
import tempfile

from razer_common import DEFAULT_EFFECT_ID_MAP, EFFECT_NAMES, EffectIds

logger = logging.getLogger("razer_rgb_tray")

CONFIG_DIR = os.path.expanduser("~/.config/razer-rgb")
CONFIG_FILE = os.path.join(CONFIG_DIR, "settings.json")

DEFAULTS = {
    "backend": "usb",  # usb | hid
    "effect_ids": dict(DEFAULT_EFFECT_ID_MAP),
    "wave_direction": 0x00,
    "wave_speed": 0x01,
    "restore_last_effect": False,
    "last_effect": "",
}

SETTING_TYPES = {
    "backend": str,
    "effect_ids": dict,
    "wave_direction": int,
    "wave_speed": int,
    "restore_last_effect": bool,
    "last_effect": str,
}

VALID_BACKENDS = {"usb", "hid"}
BYTE_SETTINGS = {"wave_direction", "wave_speed"}


def _validate_value(key, val):
    """Raise ValueError if val is the right type but out of range for key."""
    if key == "backend" and val not in VALID_BACKENDS:
        raise ValueError(f"Invalid backend: {val!r}")
    if key in BYTE_SETTINGS and not 0 <= val <= 0xFF:
        raise ValueError(f"Setting '{key}' must be 0-255, got {val}")
    if key == "effect_ids":
        EffectIds.from_mapping(val)


class Settings:
    def __init__(self):
        self._data = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULTS.items()}
        self.load()

    def load(self):
        """Load settings from disk, merging with defaults for missing keys."""
        if not os.path.exists(CONFIG_FILE):
            return
        try:
            with open(CONFIG_FILE, "r") as f:
                saved = json.load(f)
            if isinstance(saved, dict):
                for key in DEFAULTS:
                    if key in saved:
                        val = saved[key]
                        expected_type = SETTING_TYPES.get(key)
                        if expected_type is int and isinstance(val, bool):
                            logger.warning("Setting '%s' has wrong type bool, using default", key)
                            continue
                        if expected_type and not isinstance(val, expected_type):
                            logger.warning("Setting '%s' has wrong type %s, using default",
                                           key, type(val).__name__)
                            continue
                        try:
                            _validate_value(key, val)
                        except ValueError as e:
                            logger.warning("Setting '%s' is invalid (%s), using default", key, e)
                            continue
                        if key == "effect_ids":
                            val = {**DEFAULT_EFFECT_ID_MAP, **val}
                        self._data[key] = val
                logger.info("Settings loaded from %s", CONFIG_FILE)
            else:
                logger.warning("Settings file has invalid structure, using defaults")
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Corrupt settings file (%s), using defaults", e)
        except Exception as e:
            logger.error("Error loading settings: %s", e)

    def save(self):
        """Write current settings to disk atomically via temp file + os.replace()."""
        try:
            os.makedirs(CONFIG_DIR, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=CONFIG_DIR, suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(self._data, f, indent=2)
                os.replace(tmp_path, CONFIG_FILE)
            except Exception:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
            logger.debug("Settings saved to %s", CONFIG_FILE)
        except Exception as e:
            logger.error("Error saving settings: %s", e)

    def get(self, key):
        return self._data.get(key, DEFAULTS.get(key))

    def set(self, key, value):
        if key not in SETTING_TYPES:
            raise ValueError(f"Unknown setting key: {key!r}")
        expected_type = SETTING_TYPES[key]
        if expected_type is int and isinstance(value, bool):
            raise TypeError(f"Setting '{key}' requires int, got bool")
        if not isinstance(value, expected_type):
            raise TypeError(f"Setting '{key}' requires {expected_type.__name__}, got {type(value).__name__}")
        _validate_value(key, value)
        if key == "effect_ids":
            value = {**DEFAULT_EFFECT_ID_MAP, **value}
        self._data[key] = value
        self.save()

    def effect_ids(self) -> EffectIds:
        """Effect id table from settings; names missing from the file keep defaults."""
        mapping = {name: self._data["effect_ids"][name] for name in EFFECT_NAMES}
        return EffectIds.from_mapping(mapping)
