"""Tests for settings loading."""

from pathlib import Path

import pytest

from depthgate.config import ConfigError, Settings, load_settings


class TestSettingsDefaults:
    """Tests for default values."""

    def test_timing_defaults(self):
        settings = Settings()
        assert settings.decision_timeout_seconds == 30.0
        assert settings.merge_window_seconds == 2.5
        assert settings.organic_delay_seconds == 5.0
        assert settings.retry_delays == (5.0, 10.0, 20.0)
        assert settings.connect_timeout_seconds == 30.0
        assert settings.total_timeout_seconds == 90.0
        assert settings.notification_cooldown_days == 3.0

    def test_db_path_under_home(self):
        assert Settings().db_path == Path.home() / ".depthgate" / "gate.db"

    def test_secrets_exclude_empty_key(self):
        assert Settings().secrets == ()
        assert Settings(dev_key="abc").secrets == ("abc",)


class TestSettingsFile:
    """Tests for YAML settings files."""

    def test_overlay_from_yaml(self, tmp_path):
        path = tmp_path / "gate.yaml"
        path.write_text(
            "dev_key: file-key\n"
            "retry_delays: [1, 2]\n"
            "decision_timeout_seconds: 12\n"
            f"db_path: {tmp_path / 'custom.db'}\n"
        )
        settings = Settings.from_file(path)
        assert settings.dev_key == "file-key"
        assert settings.retry_delays == (1.0, 2.0)
        assert settings.decision_timeout_seconds == 12.0
        assert settings.db_path == tmp_path / "custom.db"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "gate.yaml"
        path.write_text("")
        assert Settings.from_file(path) == Settings()

    def test_unknown_and_invalid_keys_ignored(self, tmp_path):
        path = tmp_path / "gate.yaml"
        path.write_text("no_such_setting: 1\nmerge_window_seconds: soon\n")
        settings = Settings.from_file(path)
        assert settings.merge_window_seconds == 2.5

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            Settings.from_file(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "gate.yaml"
        path.write_text("key: [unclosed\n")
        with pytest.raises(ConfigError):
            Settings.from_file(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "gate.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            Settings.from_file(path)


class TestEnvironment:
    """Tests for DEPTHGATE_* overrides."""

    def test_env_overrides(self):
        settings = Settings().with_env(
            {
                "DEPTHGATE_DEV_KEY": "env-key",
                "DEPTHGATE_RETRY_DELAYS": "0.5, 1",
                "DEPTHGATE_ORGANIC_DELAY_SECONDS": "0",
                "UNRELATED": "x",
            }
        )
        assert settings.dev_key == "env-key"
        assert settings.retry_delays == (0.5, 1.0)
        assert settings.organic_delay_seconds == 0.0

    def test_bad_env_value_keeps_default(self):
        settings = Settings().with_env({"DEPTHGATE_TOTAL_TIMEOUT_SECONDS": "forever"})
        assert settings.total_timeout_seconds == 90.0

    def test_load_settings_env_wins_over_file(self, tmp_path):
        path = tmp_path / "gate.yaml"
        path.write_text("locale: DE\n")
        settings = load_settings(path, environ={"DEPTHGATE_LOCALE": "FR"})
        assert settings.locale == "FR"

    def test_load_settings_without_file(self):
        assert load_settings(environ={}) == Settings()
