"""
Phoenix Configuration Management

Immutable, explicitly passed configuration for every Phoenix component:
- Environment-based configuration (PHOENIX_ prefix)
- Type-safe settings with Pydantic
- JSON config files
- Validation of site and manifest consistency
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from phoenix.core.exceptions import ConfigurationError


def _default_max_workers() -> int:
    return min(os.cpu_count() or 1, 8)


def _default_standby_command() -> list[str]:
    return [sys.executable, "-m", "phoenix.worker"]


class LogLevel(str, Enum):
    """Logging levels for Phoenix."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LayoutConfig(BaseModel):
    """Replication sites and the manifest of critical artifacts."""
    model_config = ConfigDict(frozen=True)

    # Index 0 is the primary; order is significant
    sites: list[Path] = Field(default_factory=lambda: [
        Path("~/.phoenix/primary").expanduser(),
        Path("~/.phoenix/backup").expanduser(),
        Path("/tmp/phoenix-backup"),
    ])
    manifest: list[str] = Field(default_factory=lambda: [
        "boot.py",
        "phoenix.service",
        "phoenix.json",
        ".env",
    ])
    boot_entry: str = "boot.py"
    entry_scripts: list[str] = Field(default_factory=lambda: ["boot.py"])
    registry_filename: str = "checksum-registry.json"
    pid_filename: str = "phoenix.pid"

    @field_validator("sites", mode="before")
    @classmethod
    def expand_sites(cls, v: Any) -> Any:
        """Expand ~ in site roots."""
        if isinstance(v, (list, tuple)):
            return [Path(s).expanduser() for s in v]
        return v

    @model_validator(mode="after")
    def check_layout(self) -> "LayoutConfig":
        if not self.sites:
            raise ValueError("at least one site is required")
        if self.boot_entry not in self.manifest:
            raise ValueError(f"boot entry {self.boot_entry!r} must be part of the manifest")
        return self

    @property
    def primary(self) -> Path:
        return self.sites[0]

    @property
    def backups(self) -> list[Path]:
        return self.sites[1:]

    @property
    def pid_file(self) -> Path:
        return self.primary / self.pid_filename


class SupervisorConfig(BaseModel):
    """Configuration for the Worker Pool Supervisor."""
    model_config = ConfigDict(frozen=True)

    max_workers: int = Field(default_factory=_default_max_workers, ge=1)
    max_restart_attempts: int = Field(default=5, ge=0)
    restart_delay: float = Field(default=2.0, ge=0.0)  # seconds
    stop_timeout: float = Field(default=10.0, gt=0.0)  # seconds before SIGKILL
    initial_workers: list[str] = Field(
        default_factory=lambda: ["worker-0", "worker-1", "worker-2"]
    )
    # role id -> command; roles without an entry run the standby command
    roles: dict[str, list[str]] = Field(default_factory=dict)
    standby_command: list[str] = Field(default_factory=_default_standby_command)
    standby_prefix: str = "backup"

    def command_for(self, role_id: str) -> list[str]:
        return list(self.roles.get(role_id) or self.standby_command)


class HealthConfig(BaseModel):
    """Configuration for the Health Monitor."""
    model_config = ConfigDict(frozen=True)

    interval: float = Field(default=5.0, gt=0.0)
    min_alive: int = Field(default=2, ge=0)


class ReplicationConfig(BaseModel):
    """Configuration for the Replication Service."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    interval: float = Field(default=60.0, gt=0.0)


class ChecksumConfig(BaseModel):
    """Configuration for the Checksum Registry."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    interval: float = Field(default=300.0, gt=0.0)
    version: str = "1.0.0"


class WatchdogConfig(BaseModel):
    """Configuration for the Watchdog and Recovery Procedure."""
    model_config = ConfigDict(frozen=True)

    interval: float = Field(default=30.0, gt=0.0)
    max_failures: int = Field(default=3, ge=1)
    # Fallback liveness check when no pid file is present
    process_pattern: Optional[str] = None
    # Empty means: <python> <primary>/<boot_entry>
    launch_command: list[str] = Field(default_factory=list)
    # Empty means: no OS integration step
    install_command: list[str] = Field(default_factory=list)
    deploy_scripts: bool = True


class MonitoringConfig(BaseModel):
    """Configuration for logging."""
    model_config = ConfigDict(frozen=True)

    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "text"] = "json"


class ApiConfig(BaseModel):
    """Configuration for the status API."""
    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int = 8470


class PhoenixConfig(BaseSettings):
    """
    Main Phoenix Configuration

    Loads configuration from environment variables and/or a JSON file.
    Environment variables are prefixed with PHOENIX_
    (e.g., PHOENIX_SUPERVISOR__MAX_WORKERS=4).
    """

    instance_id: str = Field(default="phoenix-primary")

    layout: LayoutConfig = Field(default_factory=LayoutConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    replication: ReplicationConfig = Field(default_factory=ReplicationConfig)
    checksum: ChecksumConfig = Field(default_factory=ChecksumConfig)
    watchdog: WatchdogConfig = Field(default_factory=WatchdogConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(
        env_prefix="PHOENIX_",
        env_nested_delimiter="__",
        case_sensitive=False,
        frozen=True,
    )

    def ensure_directories(self) -> list[Path]:
        """Create site roots that don't exist. Returns the roots that could not be created."""
        unavailable = []
        for site in self.layout.sites:
            try:
                site.mkdir(parents=True, exist_ok=True)
            except OSError:
                unavailable.append(site)
        return unavailable

    @classmethod
    def from_file(cls, config_path: Path) -> "PhoenixConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            with open(config_path) as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> PhoenixConfig:
    """Load configuration from a file if given, otherwise from the environment."""
    if config_path is not None:
        return PhoenixConfig.from_file(config_path)
    return PhoenixConfig()
