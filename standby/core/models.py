"""
Core data model for Standby.

Descriptors are built from Docker inspect payloads on the source host and
turned into create requests for the destination host. MonitorConfig carries
everything a watchdog needs and round-trips through environment variables.
"""

from __future__ import annotations

import copy

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from standby.core.errors import ConfigurationError

PRIMARY_HOST_ENV = "PRIMARY_HOST_ADDR"
CONTAINER_IDS_ENV = "REPLICATED_CONTAINER_IDS"
FAILURE_THRESHOLD_ENV = "FAILURE_THRESHOLD"
CHECK_INTERVAL_ENV = "CHECK_INTERVAL"
PROBE_TIMEOUT_ENV = "PROBE_TIMEOUT"


class ItemKind(str, Enum):
    """Kind of item that can be selected and replicated."""

    CONTAINER = "container"
    VOLUME = "volume"


@dataclass(frozen=True)
class VolumeDescriptor:
    """Metadata of a named volume."""

    name: str
    driver: str = "local"
    driver_opts: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_inspect(cls, attrs: Mapping[str, Any]) -> VolumeDescriptor:
        """Build a descriptor from a Docker volume inspect payload."""
        return cls(
            name=attrs["Name"],
            driver=attrs.get("Driver") or "local",
            driver_opts=dict(attrs.get("Options") or {}),
            labels=dict(attrs.get("Labels") or {}),
        )

    def create_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``APIClient.create_volume``."""
        return {
            "name": self.name,
            "driver": self.driver,
            "driver_opts": dict(self.driver_opts),
            "labels": dict(self.labels),
        }


@dataclass(frozen=True)
class ContainerDescriptor:
    """Full definition of a source container."""

    id: str
    name: str
    image: str
    config: dict[str, Any]
    host_config: dict[str, Any]
    networks: dict[str, Any]

    @classmethod
    def from_inspect(cls, attrs: Mapping[str, Any]) -> ContainerDescriptor:
        """Build a descriptor from a Docker container inspect payload."""
        config = copy.deepcopy(attrs.get("Config") or {})
        return cls(
            id=attrs["Id"],
            name=attrs.get("Name") or "",
            image=config.get("Image") or attrs.get("Image", ""),
            config=config,
            host_config=copy.deepcopy(attrs.get("HostConfig") or {}),
            networks=copy.deepcopy(
                (attrs.get("NetworkSettings") or {}).get("Networks") or {}
            ),
        )

    @property
    def destination_name(self) -> str | None:
        """Name for the recreated container, or None to let the runtime pick."""
        name = self.name[1:] if self.name.startswith("/") else self.name
        return name or None

    def create_config(self) -> dict[str, Any]:
        """Raw create request reusing the source definition verbatim."""
        config = copy.deepcopy(self.config)
        config["HostConfig"] = copy.deepcopy(self.host_config)
        config["NetworkingConfig"] = {"EndpointsConfig": copy.deepcopy(self.networks)}
        return config


@dataclass
class ReplicationResult:
    """Outcome of replicating a single volume or container."""

    kind: ItemKind
    source: str
    success: bool
    reason: str | None = None
    destination_id: str | None = None

    @classmethod
    def ok(
        cls, kind: ItemKind, source: str, destination_id: str | None = None
    ) -> ReplicationResult:
        return cls(kind=kind, source=source, success=True, destination_id=destination_id)

    @classmethod
    def failed(cls, kind: ItemKind, source: str, reason: str) -> ReplicationResult:
        return cls(kind=kind, source=source, success=False, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source": self.source,
            "success": self.success,
            "reason": self.reason,
            "destination_id": self.destination_id,
        }


@dataclass
class ReplicationReport:
    """Ordered per-item outcomes of one replication job."""

    volumes: list[ReplicationResult] = field(default_factory=list)
    containers: list[ReplicationResult] = field(default_factory=list)
    monitor_container_id: str | None = None

    @property
    def replicated_container_ids(self) -> list[str]:
        """Destination ids of successfully replicated containers, in job order."""
        return [
            result.destination_id
            for result in self.containers
            if result.success and result.destination_id
        ]

    @property
    def failures(self) -> list[ReplicationResult]:
        return [r for r in [*self.volumes, *self.containers] if not r.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "volumes": [r.to_dict() for r in self.volumes],
            "containers": [r.to_dict() for r in self.containers],
            "monitor_container_id": self.monitor_container_id,
        }


class MonitorConfig(BaseModel):
    """Configuration of a single watchdog deployment."""

    model_config = ConfigDict(frozen=True)

    primary_address: str = Field(..., min_length=1, description="Primary health URL")
    container_ids: tuple[str, ...] = Field(
        ..., min_length=1, description="Destination containers to promote"
    )
    failure_threshold: int = Field(default=3, ge=1)
    check_interval: float = Field(default=10.0, gt=0)
    probe_timeout: float = Field(default=5.0, gt=0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> MonitorConfig:
        """Load the watchdog configuration from environment variables.

        Raises:
            ConfigurationError: a required variable is unset or a value is invalid
        """
        primary = environ.get(PRIMARY_HOST_ENV, "").strip()
        if not primary:
            raise ConfigurationError(f"{PRIMARY_HOST_ENV} environment variable not set.")

        raw_ids = environ.get(CONTAINER_IDS_ENV, "").strip()
        if not raw_ids:
            raise ConfigurationError(f"{CONTAINER_IDS_ENV} environment variable not set.")

        data: dict[str, Any] = {
            "primary_address": primary,
            "container_ids": tuple(i.strip() for i in raw_ids.split(",") if i.strip()),
        }
        optional = {
            FAILURE_THRESHOLD_ENV: "failure_threshold",
            CHECK_INTERVAL_ENV: "check_interval",
            PROBE_TIMEOUT_ENV: "probe_timeout",
        }
        for env_name, field_name in optional.items():
            if environ.get(env_name):
                data[field_name] = environ[env_name]

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid watchdog configuration: {e}") from e

    def to_env(self) -> list[str]:
        """Environment entries (``KEY=value``) for the watchdog container."""
        return [
            f"{PRIMARY_HOST_ENV}={self.primary_address}",
            f"{CONTAINER_IDS_ENV}={','.join(self.container_ids)}",
            f"{FAILURE_THRESHOLD_ENV}={self.failure_threshold}",
            f"{CHECK_INTERVAL_ENV}={self.check_interval}",
            f"{PROBE_TIMEOUT_ENV}={self.probe_timeout}",
        ]
