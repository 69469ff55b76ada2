"""
Configuration Schema and Models

Defines Pydantic models for the configuration schema, providing validation,
default values, and type checking for all configuration options.

Author: CADSync Project
License: MIT
"""

import string
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogLevel(str, Enum):
    """Logging level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _absolute_or_none(value: Optional[str], what: str) -> Optional[str]:
    if value is None or value == "":
        return None
    if not Path(value).expanduser().is_absolute():
        raise ValueError(f"{what} must be absolute: {value}")
    return str(Path(value).expanduser())


class CloudConfig(BaseModel):
    """Cloud drive location."""

    folder_id: Optional[str] = Field(
        default=None,
        description="Drive ID of the sync root folder (None disables the cloud location)"
    )
    timeout: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout in seconds"
    )
    page_size: int = Field(
        default=1000,
        ge=1,
        le=1000,
        description="Listing page size"
    )

    @field_validator("folder_id")
    @classmethod
    def blank_is_none(cls, v):
        """Treat an empty folder id as unconfigured."""
        return v or None


class ShareConfig(BaseModel):
    """Network share location."""

    path: Optional[str] = Field(
        default=None,
        description="Mount point of the network share (None disables the share location)"
    )
    verify_mount: bool = Field(
        default=True,
        description="Require the path to be an active mount point"
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v):
        """Ensure share path is absolute."""
        return _absolute_or_none(v, "Share path")


class LocationsConfig(BaseModel):
    """The three storage locations; each one is optional."""

    local_root: Optional[str] = Field(
        default=None,
        description="Local sync root (None disables the local location)"
    )
    cloud: CloudConfig = Field(default_factory=CloudConfig)
    share: ShareConfig = Field(default_factory=ShareConfig)

    @field_validator("local_root")
    @classmethod
    def validate_local_root(cls, v):
        """Ensure local root is absolute."""
        return _absolute_or_none(v, "Local root")

    def configured(self) -> List[str]:
        """Names of the locations that are configured."""
        names = []
        if self.local_root:
            names.append("local")
        if self.cloud.folder_id:
            names.append("cloud")
        if self.share.path:
            names.append("share")
        return names


class SyncConfig(BaseModel):
    """Sync engine settings."""

    state_db: str = Field(
        default="~/.local/share/cadsync/state.db",
        description="SQLite database holding the last synced state"
    )
    hash_cache_file: Optional[str] = Field(
        default="~/.local/share/cadsync/hash_cache.json",
        description="JSON cache of local/share file hashes (None disables persistence)"
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum parallel file transfers"
    )
    rename_pattern: str = Field(
        default="{stem}.{location}{suffix}",
        description="File name pattern for keep-all-renamed conflict resolution"
    )

    @field_validator("rename_pattern")
    @classmethod
    def validate_rename_pattern(cls, v):
        """Ensure the pattern only uses known placeholders and names the location."""
        fields = {name for _, name, _, _ in string.Formatter().parse(v) if name is not None}
        unknown = fields - {"stem", "suffix", "location"}
        if unknown:
            raise ValueError(f"Unknown rename pattern placeholders: {', '.join(sorted(unknown))}")
        if "location" not in fields:
            raise ValueError("Rename pattern must contain {location}")
        if "/" in v or "\\" in v:
            raise ValueError("Rename pattern must not contain path separators")
        return v


class SafetyConfig(BaseModel):
    """Deletion safety thresholds."""

    max_deletions: int = Field(
        default=50,
        ge=0,
        description="Block a run deleting more than this many files"
    )
    max_deletion_ratio: float = Field(
        default=0.30,
        description="Block a run deleting more than this fraction of known files"
    )

    @field_validator("max_deletion_ratio")
    @classmethod
    def validate_ratio(cls, v):
        """Ensure ratio is in (0, 1]."""
        if not 0 < v <= 1:
            raise ValueError(f"max_deletion_ratio must be in (0, 1]: {v}")
        return v


class SchedulingConfig(BaseModel):
    """Scheduled sync configuration."""

    enabled: bool = Field(
        default=False,
        description="Run sync on a schedule"
    )
    schedule: str = Field(
        default="*/30 * * * *",
        description="Cron expression (every 30 minutes)"
    )
    run_on_start: bool = Field(
        default=False,
        description="Trigger one sync when the scheduler starts"
    )

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v):
        """Ensure cron expression has five fields."""
        if len(v.split()) != 5:
            raise ValueError(f"Schedule must be a 5-field cron expression: {v}")
        return v


class AppConfig(BaseModel):
    """Main application configuration."""

    model_config = ConfigDict(use_enum_values=True)

    host: str = Field(
        default="127.0.0.1",
        description="Web API host address"
    )
    port: int = Field(
        default=8765,
        description="Web API port"
    )
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Application logging level"
    )
    log_to_file: bool = Field(
        default=False,
        description="Enable logging to file"
    )
    log_file_path: str = Field(
        default="~/.local/state/cadsync/cadsync.log",
        description="Log file location"
    )
    log_json: bool = Field(
        default=False,
        description="Emit structured JSON log lines"
    )
    log_rotation_size: int = Field(
        default=10485760,  # 10MB
        description="Log file size before rotation (bytes)"
    )
    log_retention_count: int = Field(
        default=5,
        description="Number of rotated log files to keep"
    )


class Config(BaseModel):
    """
    Root configuration model for CADSync.

    Loaded from config.yaml and overridden by environment variables.
    """

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    app: AppConfig = Field(default_factory=AppConfig)
    locations: LocationsConfig = Field(default_factory=LocationsConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
