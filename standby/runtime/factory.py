"""Destination selection by configuration."""

from __future__ import annotations

import asyncio

from urllib.parse import urlparse

from standby.config.settings import DestinationMode, ReplicationSettings
from standby.core.errors import ConfigurationError
from standby.runtime.calls import connect_docker
from standby.runtime.destination import DestinationRuntime, DockerDestination
from standby.runtime.remote import RemoteDestination


async def build_destination(
    destination_host: str,
    settings: ReplicationSettings,
) -> DestinationRuntime:
    """Open the destination handle for one replication job.

    Args:
        destination_host: Docker Engine URL (direct mode) or Standby agent
            URL (remote mode)
        settings: Replication settings selecting the mode

    Raises:
        ConfigurationError: the address cannot be parsed
        RuntimeUnavailableError: the destination engine cannot be reached
    """
    parsed = urlparse(destination_host)
    if not parsed.scheme or not parsed.hostname:
        raise ConfigurationError(f"Invalid destination host URL: {destination_host!r}")

    if settings.destination_mode is DestinationMode.REMOTE:
        return RemoteDestination(destination_host, timeout=settings.remote_timeout)

    client = await asyncio.to_thread(connect_docker, destination_host)
    return DockerDestination(
        client,
        helper_image=settings.helper_image,
        hostname=parsed.hostname,
    )
