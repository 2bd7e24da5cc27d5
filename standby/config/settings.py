"""
Settings for the Standby server and replication pipeline.

Defaults cover a single source host replicating to a destination reachable
over the Docker Engine API. A YAML file can override any section.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

import structlog
import yaml

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = structlog.get_logger(__name__)


class DestinationMode(str, Enum):
    """How the orchestrator reaches the destination runtime."""

    DIRECT = "direct"
    REMOTE = "remote"


class TransferMode(str, Enum):
    """How volume contents travel between hosts."""

    ARCHIVE = "archive"
    NETCAT = "netcat"


class ServerSettings(BaseModel):
    """Control-plane HTTP server."""

    bind: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, description="Listen port")
    store_path: Path = Field(
        default=Path("./standby.db"), description="SQLite selection database"
    )


class ReplicationSettings(BaseModel):
    """Replication pipeline behaviour."""

    destination_mode: DestinationMode = Field(
        default=DestinationMode.DIRECT,
        description="Direct Docker API access or remote Standby agent",
    )
    transfer_mode: TransferMode = Field(
        default=TransferMode.ARCHIVE, description="Volume transfer channel"
    )
    helper_image: str = Field(
        default="alpine:latest", description="Image for ephemeral transfer helpers"
    )
    transfer_port: int = Field(
        default=9876, description="TCP port used by the netcat transfer channel"
    )
    transfer_timeout: float = Field(
        default=3600.0, description="Upper bound on a single volume transfer (seconds)"
    )
    remote_timeout: float = Field(
        default=300.0, description="Timeout for remote agent requests (seconds)"
    )

    @field_validator("transfer_timeout", "remote_timeout")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v


class MonitorSettings(BaseModel):
    """Watchdog deployed on the destination."""

    image: str = Field(default="standby:latest", description="Watchdog image")
    container_name: str = Field(
        default="standby-monitor", description="Reserved watchdog container name"
    )
    docker_socket: str = Field(
        default="/var/run/docker.sock",
        description="Destination runtime socket bound into the watchdog",
    )
    failure_threshold: int = Field(
        default=3, ge=1, description="Consecutive failed probes before failover"
    )
    check_interval: float = Field(
        default=10.0, gt=0, description="Seconds between health probes"
    )
    probe_timeout: float = Field(
        default=5.0, gt=0, description="Timeout of a single health probe"
    )


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_format: bool = False


class StandbySettings(BaseModel):
    """Root settings object."""

    server: ServerSettings = Field(default_factory=ServerSettings)
    replication: ReplicationSettings = Field(default_factory=ReplicationSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: Path | None = None) -> StandbySettings:
    """Load settings from a YAML file, falling back to defaults.

    Sections present in the file replace the matching default keys; sections
    missing from the file keep their defaults.
    """
    if not config_path or not config_path.exists():
        return StandbySettings()

    try:
        with open(config_path, "r") as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError("top level of the config file must be a mapping")
        return StandbySettings.model_validate(file_config)
    except (OSError, ValueError, ValidationError, yaml.YAMLError) as e:
        logger.warning(
            "Failed to load config file, using defaults",
            config_path=str(config_path),
            error=f"{e.__class__.__name__}: {e}",
        )
        return StandbySettings()
