"""Settings and detection config tests."""

import dataclasses
from pathlib import Path

import pytest

from fuelwatch.core.config import Settings
from fuelwatch.services.rules.base import DetectionConfig


class TestSettings:
    """Environment-driven settings"""

    def test_test_environment_is_applied(self, test_settings, temp_data_dir):
        assert test_settings.debug is True
        assert test_settings.log_level == "DEBUG"
        assert test_settings.data_dir == temp_data_dir

    def test_defaults(self, monkeypatch):
        for name in ("DEBUG", "LOG_LEVEL", "DATA_DIR", "DUCKDB_PATH", "LOG_DIR"):
            monkeypatch.delenv(name, raising=False)

        s = Settings(_env_file=None)

        assert s.app_name == "FuelWatch"
        assert s.debug is False
        assert s.duckdb_path == Path("./data/fuelwatch.duckdb")
        assert s.price_sigma_multiple == 3.0
        assert s.baseline_window_days == 28

    def test_threshold_from_environment(self, monkeypatch):
        monkeypatch.setenv("PRICE_SIGMA_MULTIPLE", "2.5")
        monkeypatch.setenv("MAX_WORKERS", "2")

        s = Settings(_env_file=None)

        assert s.price_sigma_multiple == 2.5
        assert s.max_workers == 2

    def test_invalid_environment_name(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "qa")

        with pytest.raises(ValueError):
            Settings(_env_file=None)

    def test_ensure_data_dir(self, tmp_path):
        s = Settings(_env_file=None, data_dir=tmp_path / "nested" / "data")

        s.ensure_data_dir()

        assert (tmp_path / "nested" / "data").is_dir()


class TestDetectionConfig:
    """Per-run detection thresholds"""

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("ROUND_UNIT", "5")
        monkeypatch.setenv("REPOSITORY_TIMEOUT_SECONDS", "2.5")

        config = DetectionConfig.from_settings(Settings(_env_file=None))

        assert config.round_unit == 5
        assert config.repository_timeout_seconds == 2.5
        assert config.price_sigma_multiple == 3.0

    def test_every_field_has_a_setting(self):
        for f in dataclasses.fields(DetectionConfig):
            assert f.name in Settings.model_fields

    def test_with_overrides_leaves_original(self, config):
        tuned = config.with_overrides(price_sigma_multiple=2.0)

        assert tuned.price_sigma_multiple == 2.0
        assert config.price_sigma_multiple == 3.0
        assert tuned.round_unit == config.round_unit

    def test_frozen(self, config):
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.round_unit = 5

    def test_to_dict(self, config):
        data = config.to_dict()

        assert data["max_pump_flow_lpm"] == 50.0
        assert set(data) == {f.name for f in dataclasses.fields(DetectionConfig)}
