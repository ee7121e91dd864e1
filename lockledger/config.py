"""lockledger configuration management.

Configuration sources (in priority order):
1. Environment variables (LOCKLEDGER_ prefix)
2. Config file (lockledger.yaml)
3. Defaults
"""

from __future__ import annotations

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lockledger.utils.duration import parse_duration


class DatabaseConfig(BaseModel):
    """Ledger database configuration."""

    # SQLite by default; switch to postgresql+asyncpg:// for multi-host deployments
    url: str = "sqlite+aiosqlite:///./lockledger.db"
    echo: bool = False

    # SQLite only: how long a writer waits for the file lock before failing
    busy_timeout_seconds: float = 30.0


class LockConfig(BaseModel):
    """Lock defaults applied by LockService.

    Note on instance_id:
    - Written as the ledger ``owner`` by coordinators that lock on behalf of
      this process (e.g. the maintenance scheduler).
    - In multi-instance deployments, each instance MUST have a unique instance_id.
    """

    default_lease: timedelta = timedelta(hours=1)

    # Default derivation order:
    #   1. LOCKLEDGER_LOCK__INSTANCE_ID env var
    #   2. HOSTNAME env var
    #   3. Fallback to "lockledger"
    instance_id: str | None = None

    @field_validator("default_lease", mode="before")
    @classmethod
    def _parse_lease(cls, value):
        return parse_duration(value)

    def get_instance_id(self) -> str:
        """Get resolved instance_id with fallback logic."""
        if self.instance_id:
            return self.instance_id
        return os.environ.get("HOSTNAME", "lockledger")


class MaintenanceConfig(BaseModel):
    """Periodic maintenance configuration.

    Cycles are guarded by the ledger lock ``lock_name`` so that only one
    instance in the cluster runs them at a time. ``lease`` also bounds how
    long a single cycle may run.
    """

    interval_seconds: float = Field(default=300, gt=0)  # 5 minutes

    lock_name: str = "maintenance"
    lease: timedelta = timedelta(minutes=5)

    @field_validator("lease", mode="before")
    @classmethod
    def _parse_lease(cls, value):
        return parse_duration(value)


class Settings(BaseSettings):
    """lockledger settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOCKLEDGER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)


def _load_config_file() -> dict:
    """Load configuration from YAML file if exists.

    Looks for config file in order:
    1. LOCKLEDGER_CONFIG_FILE environment variable
    2. ./lockledger.yaml
    3. /etc/lockledger/config.yaml
    """
    config_paths = [
        os.environ.get("LOCKLEDGER_CONFIG_FILE"),
        Path("lockledger.yaml"),
        Path("/etc/lockledger/config.yaml"),
    ]

    for path in config_paths:
        if path is None:
            continue
        path = Path(path)
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}

    return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Configuration is loaded from:
    1. YAML config file (if exists)
    2. Environment variables (override)
    3. Defaults
    """
    file_config = _load_config_file()

    # Environment variables will override via pydantic-settings
    return Settings(**file_config)
