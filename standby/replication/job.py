"""
Replication job orchestration.

A job snapshots the selection, replicates every selected volume, then every
selected container, and finally deploys the watchdog if at least one
container made it across. Items are processed one at a time; each item's
failure is recorded in the report and the job moves on.
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING

import structlog

from standby.config.settings import StandbySettings
from standby.core.errors import StandbyError
from standby.core.models import ReplicationReport
from standby.failover.deployer import MonitorDeployer
from standby.replication.channels import build_channel
from standby.replication.container import ContainerReplicator
from standby.replication.volume import VolumeReplicator

if TYPE_CHECKING:
    from docker import DockerClient

    from standby.runtime.destination import DestinationRuntime
    from standby.store.selection import SelectionStore

logger = structlog.get_logger(__name__)


class ReplicationJob:
    """Replicates the current selection from the source to one destination."""

    def __init__(
        self,
        store: SelectionStore,
        source: DockerClient,
        destination: DestinationRuntime,
        settings: StandbySettings | None = None,
    ):
        self.settings = settings or StandbySettings()
        self.store = store
        self.source = source
        self.destination = destination

        self.volumes = VolumeReplicator(
            source,
            destination,
            build_channel(self.settings.replication, source, destination),
        )
        self.containers = ContainerReplicator(source, destination)
        self.deployer = MonitorDeployer(destination, self.settings.monitor)

    async def run(self, source_address: str) -> ReplicationReport:
        """Run the job.

        Args:
            source_address: Externally reachable health URL of this (source) host

        Raises:
            StoreError: the selection could not be read; nothing was replicated
        """
        selected_volumes = sorted(await asyncio.to_thread(self.store.selected_volumes))
        selected_containers = sorted(await asyncio.to_thread(self.store.selected_containers))

        logger.info(
            "Replication started",
            destination=self.destination.hostname,
            volumes=len(selected_volumes),
            containers=len(selected_containers),
        )

        report = ReplicationReport()

        for volume_name in selected_volumes:
            report.volumes.append(await self.volumes.replicate(volume_name))

        for container_id in selected_containers:
            report.containers.append(await self.containers.replicate(container_id))

        replicated = report.replicated_container_ids
        if replicated:
            try:
                report.monitor_container_id = await self.deployer.deploy(
                    replicated, source_address
                )
            except StandbyError as e:
                logger.error(
                    "Failed to deploy watchdog",
                    error=f"{e.__class__.__name__}: {e}",
                )

        logger.info(
            "Replication process finished",
            volumes_ok=sum(r.success for r in report.volumes),
            containers_ok=len(replicated),
            failures=len(report.failures),
            monitor=report.monitor_container_id,
        )
        return report
