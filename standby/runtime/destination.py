"""
Destination runtime capability.

The replication pipeline only needs a handful of operations on the
destination host. ``DestinationRuntime`` names them; ``DockerDestination``
performs them with a direct Docker handle, ``RemoteDestination`` (see
``standby.runtime.remote``) delegates them to a Standby agent over HTTP.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import structlog

from docker.utils import parse_repository_tag

from standby.core.errors import NotFoundError, StandbyError, TransferError
from standby.runtime.calls import run_docker

if TYPE_CHECKING:
    from docker import DockerClient

    from standby.core.models import VolumeDescriptor

logger = structlog.get_logger(__name__)

VOLUME_MOUNT = "/volume_data"


def volume_helper_config(
    image: str,
    volume_name: str,
    command: list[str] | None = None,
) -> dict[str, Any]:
    """Create request for an ephemeral container mounting a volume."""
    config: dict[str, Any] = {
        "Image": image,
        "HostConfig": {
            "Mounts": [
                {"Type": "volume", "Source": volume_name, "Target": VOLUME_MOUNT}
            ],
        },
        "Labels": {"standby.role": "transfer-helper"},
    }
    if command:
        config["Cmd"] = command
    return config


async def ensure_image(client: DockerClient, image: str) -> None:
    """Pull ``image`` through ``client`` unless it is already present."""
    try:
        await run_docker(client.api.inspect_image, image)
        return
    except NotFoundError:
        pass

    repository, tag = parse_repository_tag(image)
    logger.info("Pulling image", image=image)
    await run_docker(client.api.pull, repository, tag=tag or "latest")

    # A failed pull is reported inside the progress stream, not always as an error
    try:
        await run_docker(client.api.inspect_image, image)
    except NotFoundError as e:
        raise NotFoundError(f"Image {image} still missing after pull") from e


class DestinationRuntime(ABC):
    """Operations the pipeline performs on the destination host."""

    @property
    @abstractmethod
    def hostname(self) -> str:
        """Host name or address of the destination, reachable from the source."""

    @abstractmethod
    async def ensure_image(self, image: str) -> None:
        """Make ``image`` available locally (pull if absent)."""

    @abstractmethod
    async def create_volume(self, descriptor: VolumeDescriptor) -> str:
        """Create a volume; an existing volume of the same name is reused."""

    @abstractmethod
    async def create_container(
        self, config: dict[str, Any], name: str | None = None
    ) -> str:
        """Create (but do not start) a container from a raw create request."""

    @abstractmethod
    async def start_container(self, container_id: str) -> None:
        """Start a created container."""

    @abstractmethod
    async def remove_container(self, container_id: str, force: bool = True) -> None:
        """Remove a container; raises NotFoundError if it does not exist."""

    @abstractmethod
    async def receive_volume_archive(
        self, volume_name: str, chunks: Iterable[bytes]
    ) -> None:
        """Unpack a tar stream rooted at ``volume_data/`` into a volume."""

    async def discard_container(self, container_id: str) -> None:
        """Force-remove a container, tolerating absence.

        Used on cleanup paths; failures are logged, never raised.
        """
        try:
            await self.remove_container(container_id, force=True)
        except NotFoundError:
            pass
        except StandbyError as e:
            logger.warning(
                "Failed to remove container on destination",
                container=container_id,
                error=f"{e.__class__.__name__}: {e}",
            )

    async def close(self) -> None:
        pass


class DockerDestination(DestinationRuntime):
    """Destination reached through a direct Docker handle."""

    def __init__(
        self,
        client: DockerClient,
        helper_image: str = "alpine:latest",
        hostname: str | None = None,
    ):
        self.client = client
        self.helper_image = helper_image
        self._hostname = hostname or urlparse(client.api.base_url).hostname or "localhost"

    @property
    def hostname(self) -> str:
        return self._hostname

    async def ensure_image(self, image: str) -> None:
        await ensure_image(self.client, image)

    async def create_volume(self, descriptor: VolumeDescriptor) -> str:
        created = await run_docker(self.client.api.create_volume, **descriptor.create_kwargs())
        return created.get("Name", descriptor.name)

    async def create_container(
        self, config: dict[str, Any], name: str | None = None
    ) -> str:
        created = await run_docker(
            self.client.api.create_container_from_config, config, name
        )
        for warning in created.get("Warnings") or []:
            logger.warning("Runtime warning on create", container=name, warning=warning)
        return created["Id"]

    async def start_container(self, container_id: str) -> None:
        await run_docker(self.client.api.start, container_id)

    async def remove_container(self, container_id: str, force: bool = True) -> None:
        await run_docker(self.client.api.remove_container, container_id, force=force)

    async def receive_volume_archive(
        self, volume_name: str, chunks: Iterable[bytes]
    ) -> None:
        await self.ensure_image(self.helper_image)
        helper_id = await self.create_container(
            volume_helper_config(self.helper_image, volume_name)
        )
        try:
            accepted = await run_docker(self.client.api.put_archive, helper_id, "/", chunks)
        finally:
            await self.discard_container(helper_id)

        if not accepted:
            raise TransferError(f"Destination rejected archive for volume {volume_name}")

    async def close(self) -> None:
        self.client.close()
