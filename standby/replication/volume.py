"""
Volume replication.

Recreates a source volume on the destination (same name, driver, driver
options and labels) and copies its contents through a streaming channel.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from standby.core.errors import StandbyError
from standby.core.models import ItemKind, ReplicationResult, VolumeDescriptor
from standby.runtime.calls import run_docker

if TYPE_CHECKING:
    from docker import DockerClient

    from standby.replication.channels import StreamChannel
    from standby.runtime.destination import DestinationRuntime

logger = structlog.get_logger(__name__)


class VolumeReplicator:
    """Copies volumes, one at a time, from the source to the destination."""

    def __init__(
        self,
        source: DockerClient,
        destination: DestinationRuntime,
        channel: StreamChannel,
    ):
        self.source = source
        self.destination = destination
        self.channel = channel

    async def inspect(self, volume_name: str) -> VolumeDescriptor:
        """Read a volume's metadata from the source.

        Raises:
            NotFoundError: no volume of that name exists on the source
        """
        attrs = await run_docker(self.source.api.inspect_volume, volume_name)
        return VolumeDescriptor.from_inspect(attrs)

    async def replicate(self, volume_name: str) -> ReplicationResult:
        """Replicate a single volume.

        Failures are logged and returned, never raised; nothing already
        written to the destination is rolled back.
        """
        logger.info("Replicating volume", volume=volume_name)

        try:
            descriptor = await self.inspect(volume_name)
            created = await self.destination.create_volume(descriptor)
            logger.debug(
                "Destination volume ready",
                volume=created,
                driver=descriptor.driver,
            )
            await self.channel.transfer(descriptor.name)
        except StandbyError as e:
            reason = f"{e.__class__.__name__}: {e}"
            logger.error("Volume replication failed", volume=volume_name, error=reason)
            return ReplicationResult.failed(ItemKind.VOLUME, volume_name, reason)

        logger.info("Volume replicated", volume=volume_name)
        return ReplicationResult.ok(ItemKind.VOLUME, volume_name, destination_id=created)
