"""
Unit Tests for Configuration Module

Tests configuration loading, validation, environment variable merging,
and saving.

Author: CADSync Project
License: MIT
"""

import pytest
import yaml
from pydantic import ValidationError

from cadsync.config.config_loader import ConfigLoader, load_config
from cadsync.config.schema import Config, LocationsConfig, SafetyConfig, SyncConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host CADSYNC_* variables out of the tests."""
    for name in (
        "CADSYNC_CONFIG", "CADSYNC_LOCAL_ROOT", "CADSYNC_CLOUD_FOLDER_ID", "CADSYNC_SHARE_PATH",
        "CADSYNC_STATE_DB", "CADSYNC_MAX_DELETIONS", "CADSYNC_MAX_DELETION_RATIO",
        "CADSYNC_MAX_WORKERS", "CADSYNC_LOG_LEVEL", "CADSYNC_SCHEDULE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfigLoader:
    """Test suite for ConfigLoader class."""

    def test_load_nonexistent_config_uses_defaults(self, tmp_path):
        """Test that a missing file yields defaults with no locations."""
        loader = ConfigLoader(str(tmp_path / "config.yaml"))

        config = loader.load()

        assert isinstance(config, Config)
        assert config.locations.configured() == []
        assert config.safety.max_deletions == 50
        assert config.safety.max_deletion_ratio == 0.30

    def test_load_yaml(self, tmp_path):
        """Test values are read from YAML."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.safe_dump({
            "locations": {
                "local_root": "/home/designer/CAD",
                "cloud": {"folder_id": "1AbCdEf"},
                "share": {"path": "/mnt/engineering", "verify_mount": False},
            },
            "safety": {"max_deletions": 10},
        }))

        config = load_config(str(config_path))

        assert config.locations.local_root == "/home/designer/CAD"
        assert config.locations.cloud.folder_id == "1AbCdEf"
        assert config.locations.share.verify_mount is False
        assert config.locations.configured() == ["local", "cloud", "share"]
        assert config.safety.max_deletions == 10

    def test_env_var_override(self, tmp_path, monkeypatch):
        """Test environment variable overrides."""
        monkeypatch.setenv("CADSYNC_LOCAL_ROOT", "/data/cad")
        monkeypatch.setenv("CADSYNC_SHARE_PATH", "/mnt/share")
        monkeypatch.setenv("CADSYNC_MAX_DELETIONS", "5")
        monkeypatch.setenv("CADSYNC_MAX_DELETION_RATIO", "0.1")
        monkeypatch.setenv("CADSYNC_LOG_LEVEL", "debug")
        monkeypatch.setenv("CADSYNC_SCHEDULE", "0 * * * *")

        config = ConfigLoader(str(tmp_path / "config.yaml")).load()

        assert config.locations.local_root == "/data/cad"
        assert config.locations.share.path == "/mnt/share"
        assert config.safety.max_deletions == 5
        assert config.safety.max_deletion_ratio == 0.1
        assert config.app.log_level == "DEBUG"
        assert config.scheduling.enabled is True
        assert config.scheduling.schedule == "0 * * * *"

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        """Test CADSYNC_CONFIG selects the file."""
        config_path = tmp_path / "custom.yaml"
        config_path.write_text("sync:\n  max_workers: 2\n")
        monkeypatch.setenv("CADSYNC_CONFIG", str(config_path))

        assert ConfigLoader().load().sync.max_workers == 2

    def test_invalid_yaml_raises(self, tmp_path):
        """Test malformed YAML is reported."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("locations: [unclosed")

        with pytest.raises(ValueError):
            ConfigLoader(str(config_path)).load()

    def test_save_and_reload(self, tmp_path):
        """Test configuration round-trips through YAML."""
        config_path = tmp_path / "nested" / "config.yaml"
        loader = ConfigLoader(str(config_path))
        config = Config(locations=LocationsConfig(local_root="/data/cad"))

        loader.save(config)

        assert config_path.exists()
        assert loader.reload().locations.local_root == "/data/cad"


class TestConfigValidation:
    """Test suite for schema validation."""

    def test_relative_local_root_rejected(self):
        """Test that relative paths are rejected."""
        with pytest.raises(ValidationError):
            LocationsConfig(local_root="relative/path")

    def test_empty_location_means_unconfigured(self):
        """Test blank values disable a location."""
        locations = LocationsConfig(local_root="", cloud={"folder_id": ""})
        assert locations.configured() == []

    @pytest.mark.parametrize("ratio", [0, -0.1, 1.5])
    def test_ratio_bounds(self, ratio):
        """Test ratio must be in (0, 1]."""
        with pytest.raises(ValidationError):
            SafetyConfig(max_deletion_ratio=ratio)

    def test_rename_pattern_requires_location(self):
        """Test rename pattern must name the location."""
        with pytest.raises(ValidationError):
            SyncConfig(rename_pattern="{stem}-copy{suffix}")

    def test_rename_pattern_unknown_placeholder(self):
        """Test unknown placeholders are rejected."""
        with pytest.raises(ValidationError):
            SyncConfig(rename_pattern="{stem}.{location}.{user}{suffix}")

    def test_rename_pattern_custom(self):
        """Test a custom valid pattern is accepted."""
        assert SyncConfig(rename_pattern="{stem} ({location}){suffix}").rename_pattern == "{stem} ({location}){suffix}"

    def test_invalid_schedule(self):
        """Test cron expressions need five fields."""
        with pytest.raises(ValidationError):
            Config(scheduling={"schedule": "every hour"})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
