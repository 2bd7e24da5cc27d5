"""
Watchdog deployment.

Installs exactly one watchdog container on the destination, configured with
the primary's health address and the replicated container ids.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import structlog

from standby.config.settings import MonitorSettings
from standby.core.models import MonitorConfig

if TYPE_CHECKING:
    from standby.runtime.destination import DestinationRuntime

logger = structlog.get_logger(__name__)


class MonitorDeployer:
    """Replaces the watchdog on the destination with a freshly configured one."""

    def __init__(
        self,
        destination: DestinationRuntime,
        settings: MonitorSettings | None = None,
    ):
        self.destination = destination
        self.settings = settings or MonitorSettings()

    def build_config(
        self, container_ids: Sequence[str], primary_address: str
    ) -> MonitorConfig:
        return MonitorConfig(
            primary_address=primary_address,
            container_ids=tuple(container_ids),
            failure_threshold=self.settings.failure_threshold,
            check_interval=self.settings.check_interval,
            probe_timeout=self.settings.probe_timeout,
        )

    def container_config(self, monitor_config: MonitorConfig) -> dict[str, Any]:
        """Create request for the watchdog container."""
        socket = self.settings.docker_socket
        return {
            "Image": self.settings.image,
            "Cmd": ["python", "-m", "standby", "--mode", "monitor"],
            "Env": monitor_config.to_env(),
            "Labels": {"standby.role": "monitor"},
            "HostConfig": {
                "Mounts": [{"Type": "bind", "Source": socket, "Target": socket}],
                "RestartPolicy": {"Name": "on-failure", "MaximumRetryCount": 3},
            },
        }

    async def deploy(
        self, container_ids: Sequence[str], primary_address: str
    ) -> str | None:
        """Deploy the watchdog.

        Args:
            container_ids: Destination ids of the replicated containers, in order
            primary_address: Health-check URL of the source host

        Returns:
            The watchdog container id, or None when there is nothing to guard

        Raises:
            StandbyError: the watchdog could not be created or started
        """
        if not container_ids:
            logger.info("No replicated containers, skipping watchdog deployment")
            return None

        monitor_config = self.build_config(container_ids, primary_address)
        name = self.settings.container_name

        logger.info(
            "Deploying watchdog",
            name=name,
            primary=primary_address,
            containers=len(monitor_config.container_ids),
        )

        # At most one watchdog per destination
        await self.destination.discard_container(name)

        await self.destination.ensure_image(self.settings.image)
        monitor_id = await self.destination.create_container(
            self.container_config(monitor_config), name=name
        )
        await self.destination.start_container(monitor_id)

        logger.info("Watchdog deployed and started", name=name, container=monitor_id)
        return monitor_id
