"""
Container replication.

Recreates a source container's definition on the destination without
starting it. Images pulled along the way are left in place when creation
fails; they are reused by later jobs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from standby.core.errors import RuntimeOperationError, StandbyError
from standby.core.models import ContainerDescriptor, ItemKind, ReplicationResult
from standby.runtime.calls import run_docker

if TYPE_CHECKING:
    from docker import DockerClient

    from standby.runtime.destination import DestinationRuntime

logger = structlog.get_logger(__name__)


class ContainerReplicator:
    """Recreates containers, stopped, on the destination."""

    def __init__(self, source: DockerClient, destination: DestinationRuntime):
        self.source = source
        self.destination = destination

    async def inspect(self, container_id: str) -> ContainerDescriptor:
        """Read a container's full definition from the source.

        Raises:
            NotFoundError: the id does not resolve on the source
        """
        attrs = await run_docker(self.source.api.inspect_container, container_id)
        return ContainerDescriptor.from_inspect(attrs)

    async def replicate(self, container_id: str) -> ReplicationResult:
        """Replicate a single container.

        On success the result carries the new destination container id.
        """
        logger.info("Replicating container", container=container_id)

        try:
            descriptor = await self.inspect(container_id)
            await self.destination.ensure_image(descriptor.image)
            destination_id = await self.destination.create_container(
                descriptor.create_config(), name=descriptor.destination_name
            )
        except RuntimeOperationError as e:
            if e.is_conflict:
                reason = f"A container with this name already exists on the destination: {e}"
            else:
                reason = f"{e.__class__.__name__}: {e}"
            logger.error("Container replication failed", container=container_id, error=reason)
            return ReplicationResult.failed(ItemKind.CONTAINER, container_id, reason)
        except StandbyError as e:
            reason = f"{e.__class__.__name__}: {e}"
            logger.error("Container replication failed", container=container_id, error=reason)
            return ReplicationResult.failed(ItemKind.CONTAINER, container_id, reason)

        logger.info(
            "Container replicated",
            container=container_id,
            name=descriptor.destination_name,
            destination_id=destination_id,
        )
        return ReplicationResult.ok(ItemKind.CONTAINER, container_id, destination_id)
