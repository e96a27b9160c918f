"""Tests for settings.py: load/save resilience and value validation."""

import json
import os
import pytest

import settings as settings_mod
from razer_common import EffectIds


class TestSettings:
    """Settings edge cases using a temporary config file."""

    @pytest.fixture(autouse=True)
    def _temp_config(self, tmp_path):
        self.orig_dir = settings_mod.CONFIG_DIR
        self.orig_file = settings_mod.CONFIG_FILE
        settings_mod.CONFIG_DIR = str(tmp_path)
        settings_mod.CONFIG_FILE = str(tmp_path / "settings.json")
        yield
        settings_mod.CONFIG_DIR = self.orig_dir
        settings_mod.CONFIG_FILE = self.orig_file

    def _write(self, data):
        with open(settings_mod.CONFIG_FILE, "w") as f:
            json.dump(data, f)

    def test_defaults_on_fresh_init(self):
        s = settings_mod.Settings()
        assert s.get("backend") == "usb"
        assert s.get("wave_direction") == 0x00
        assert s.get("wave_speed") == 0x01
        assert s.get("restore_last_effect") is False
        assert s.get("last_effect") == ""
        assert s.effect_ids() == EffectIds()

    def test_corrupt_json_uses_defaults(self):
        with open(settings_mod.CONFIG_FILE, "w") as f:
            f.write("{corrupt json!!!")
        s = settings_mod.Settings()
        assert s.get("backend") == "usb"

    def test_json_list_uses_defaults(self):
        self._write([1, 2, 3])
        assert settings_mod.Settings().get("wave_speed") == 0x01

    def test_extra_keys_ignored(self):
        self._write({"backend": "hid", "unknown_key": "whatever"})
        s = settings_mod.Settings()
        assert s.get("backend") == "hid"
        assert s.get("unknown_key") is None

    def test_wrong_type_uses_default(self):
        self._write({"wave_speed": "fast", "restore_last_effect": 1})
        s = settings_mod.Settings()
        assert s.get("wave_speed") == 0x01
        assert s.get("restore_last_effect") is False

    def test_bool_for_int_setting_uses_default(self):
        self._write({"wave_direction": True})
        assert settings_mod.Settings().get("wave_direction") == 0x00

    def test_invalid_backend_in_file_uses_default(self):
        self._write({"backend": "serial"})
        assert settings_mod.Settings().get("backend") == "usb"

    def test_out_of_range_byte_in_file_uses_default(self):
        self._write({"wave_speed": 300})
        assert settings_mod.Settings().get("wave_speed") == 0x01

    def test_partial_effect_ids_merge_with_defaults(self):
        self._write({"effect_ids": {"spectrum": 4, "wave": 3}})
        ids = settings_mod.Settings().effect_ids()
        assert ids == EffectIds(static=0x01, breathing=0x02, spectrum=0x04, wave=0x03)

    def test_invalid_effect_ids_use_defaults(self):
        self._write({"effect_ids": {"ripple": 7}})
        assert settings_mod.Settings().effect_ids() == EffectIds()

    def test_round_trip_save_and_reload(self):
        s1 = settings_mod.Settings()
        s1.set("backend", "hid")
        s1.set("effect_ids", {"spectrum": 0x04})
        s2 = settings_mod.Settings()
        assert s2.get("backend") == "hid"
        assert s2.effect_ids().spectrum == 0x04
        assert s2.effect_ids().static == 0x01

    def test_save_is_atomic(self):
        settings_mod.Settings().set("last_effect", "spectrum")
        leftovers = [n for n in os.listdir(settings_mod.CONFIG_DIR) if n.endswith(".tmp")]
        assert leftovers == []

    def test_set_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown setting"):
            settings_mod.Settings().set("brightness", 50)

    def test_set_wrong_type(self):
        s = settings_mod.Settings()
        with pytest.raises(TypeError):
            s.set("wave_speed", "fast")
        with pytest.raises(TypeError):
            s.set("wave_speed", True)
        with pytest.raises(TypeError):
            s.set("restore_last_effect", 1)

    def test_set_invalid_values(self):
        s = settings_mod.Settings()
        with pytest.raises(ValueError, match="backend"):
            s.set("backend", "bluetooth")
        with pytest.raises(ValueError, match="0-255"):
            s.set("wave_direction", 256)
        with pytest.raises(ValueError):
            s.set("effect_ids", {"wave": -1})
