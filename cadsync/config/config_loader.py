"""
Configuration Loader

Handles loading, parsing, and merging configuration from YAML files and
environment variables, and saving it back.

Author: CADSync Project
License: MIT
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .schema import Config

DEFAULT_CONFIG_PATH = "~/.config/cadsync/config.yaml"


class ConfigLoader:
    """
    Configuration loader and manager.

    Loads configuration from a YAML file, merges environment variables on
    top, and validates the result.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration loader.

        Args:
            config_path: Path to the configuration file. If None, uses
                CADSYNC_CONFIG or the default location.
        """
        # Load environment variables from .env if present
        load_dotenv()

        self.config_path = os.path.expanduser(
            config_path or os.getenv("CADSYNC_CONFIG", DEFAULT_CONFIG_PATH)
        )
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """
        Load and validate configuration.

        A missing file yields the defaults (no location configured).

        Returns:
            Validated Config object

        Raises:
            ValueError: If YAML parsing or validation fails
        """
        config_data = self._load_yaml()
        config_data = self._merge_env_vars(config_data)

        self._config = Config(**config_data)
        return self._config

    def _load_yaml(self) -> Dict[str, Any]:
        """
        Load YAML configuration file.

        Returns:
            Dictionary with configuration data
        """
        config_file = Path(self.config_path)
        if not config_file.exists():
            return {}

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse YAML config: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {self.config_path}")
        return data

    def _merge_env_vars(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge environment variables into configuration.

        Environment variables override config file values.

        Args:
            config_data: Configuration dictionary from file

        Returns:
            Merged configuration dictionary
        """
        locations = config_data.setdefault("locations", {})

        if os.getenv("CADSYNC_LOCAL_ROOT"):
            locations["local_root"] = os.getenv("CADSYNC_LOCAL_ROOT")
        if os.getenv("CADSYNC_CLOUD_FOLDER_ID"):
            locations.setdefault("cloud", {})["folder_id"] = os.getenv("CADSYNC_CLOUD_FOLDER_ID")
        if os.getenv("CADSYNC_SHARE_PATH"):
            locations.setdefault("share", {})["path"] = os.getenv("CADSYNC_SHARE_PATH")

        # Sync settings
        if os.getenv("CADSYNC_STATE_DB"):
            config_data.setdefault("sync", {})["state_db"] = os.getenv("CADSYNC_STATE_DB")
        if os.getenv("CADSYNC_MAX_WORKERS"):
            config_data.setdefault("sync", {})["max_workers"] = int(os.getenv("CADSYNC_MAX_WORKERS"))

        # Safety thresholds
        if os.getenv("CADSYNC_MAX_DELETIONS"):
            config_data.setdefault("safety", {})["max_deletions"] = int(os.getenv("CADSYNC_MAX_DELETIONS"))
        if os.getenv("CADSYNC_MAX_DELETION_RATIO"):
            config_data.setdefault("safety", {})["max_deletion_ratio"] = float(
                os.getenv("CADSYNC_MAX_DELETION_RATIO")
            )

        # App settings
        if os.getenv("CADSYNC_LOG_LEVEL"):
            config_data.setdefault("app", {})["log_level"] = os.getenv("CADSYNC_LOG_LEVEL").upper()

        # Scheduling
        if os.getenv("CADSYNC_SCHEDULE"):
            scheduling = config_data.setdefault("scheduling", {})
            scheduling["schedule"] = os.getenv("CADSYNC_SCHEDULE")
            scheduling["enabled"] = True

        return config_data

    def save(self, config: Config, path: Optional[str] = None) -> None:
        """
        Save configuration to YAML file.

        Args:
            config: Config object to save
            path: Path to save to (uses default if None)
        """
        save_path = Path(os.path.expanduser(path or self.config_path))
        save_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json")

        with open(save_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)

        self._config = config

    def reload(self) -> Config:
        """
        Reload configuration from file.

        Returns:
            Reloaded Config object
        """
        return self.load()

    @property
    def config(self) -> Optional[Config]:
        """Get the current configuration object."""
        return self._config


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Convenience function to load configuration.

    Args:
        config_path: Optional path to config file

    Returns:
        Loaded and validated Config object
    """
    loader = ConfigLoader(config_path)
    return loader.load()
