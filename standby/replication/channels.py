"""
Streaming copy channels for volume contents.

A channel moves the file tree of a source volume into the destination volume
of the same name. Every ephemeral helper container a channel creates is
registered for forced removal as soon as it exists, so cleanup runs on every
exit path, including transfer failure and timeout.

Volume names are interpolated into helper container names; names containing
characters outside ``[a-zA-Z0-9_.-]`` are not supported.
"""

from __future__ import annotations

import asyncio

from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

import structlog

from standby.config.settings import ReplicationSettings, TransferMode
from standby.core.errors import NotFoundError, StandbyError, TransferError
from standby.runtime.calls import run_docker
from standby.runtime.destination import VOLUME_MOUNT, ensure_image, volume_helper_config

if TYPE_CHECKING:
    from docker import DockerClient

    from standby.runtime.destination import DestinationRuntime

logger = structlog.get_logger(__name__)


class StreamChannel(ABC):
    """Moves a volume's contents from the source host to the destination."""

    def __init__(
        self,
        source: DockerClient,
        destination: DestinationRuntime,
        helper_image: str = "alpine:latest",
        timeout: float = 3600.0,
    ):
        self.source = source
        self.destination = destination
        self.helper_image = helper_image
        self.timeout = timeout

    @abstractmethod
    async def transfer(self, volume_name: str) -> None:
        """Copy the contents of ``volume_name``.

        Raises:
            TransferError: the copy did not complete successfully
            StandbyError: a helper could not be created or started
        """

    async def _create_source_helper(
        self, volume_name: str, command: list[str] | None = None, name: str | None = None
    ) -> str:
        config = volume_helper_config(self.helper_image, volume_name, command)
        created: dict[str, Any] = await run_docker(
            self.source.api.create_container_from_config, config, name
        )
        return created["Id"]

    async def _discard_source_helper(self, container_id: str) -> None:
        try:
            await run_docker(self.source.api.remove_container, container_id, force=True)
        except NotFoundError:
            pass
        except StandbyError as e:
            logger.warning(
                "Failed to remove transfer helper on source",
                container=container_id,
                error=f"{e.__class__.__name__}: {e}",
            )


class ArchiveStreamChannel(StreamChannel):
    """Native archive streaming.

    A stopped helper on the source mounts the volume; its archive stream is
    piped straight into the destination, which unpacks it into the new
    volume. No helper process ever runs.
    """

    async def transfer(self, volume_name: str) -> None:
        await ensure_image(self.source, self.helper_image)

        async with AsyncExitStack() as stack:
            sender_id = await self._create_source_helper(volume_name)
            stack.push_async_callback(self._discard_source_helper, sender_id)

            chunks, stat = await run_docker(
                self.source.api.get_archive, sender_id, VOLUME_MOUNT
            )
            logger.debug(
                "Streaming volume archive",
                volume=volume_name,
                size=stat.get("size") if isinstance(stat, dict) else None,
            )

            try:
                await asyncio.wait_for(
                    self.destination.receive_volume_archive(volume_name, chunks),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError as e:
                # A blocking destination call keeps running in its worker thread
                # until the helper it writes into is removed
                logger.warning(
                    "Abandoned volume archive upload after timeout",
                    volume=volume_name,
                    timeout=self.timeout,
                )
                raise TransferError(
                    f"Transfer of volume {volume_name} timed out after {self.timeout}s"
                ) from e


class NetcatStreamChannel(StreamChannel):
    """Helper-process transfer over a fixed TCP port.

    A receiver on the destination listens on ``port`` and untars into the new
    volume; a sender on the source tars the volume and pipes it to the
    receiver. Success is the sender exiting with status 0.
    """

    def __init__(self, *args: Any, port: int = 9876, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.port = port

    def _receiver_config(self, volume_name: str) -> dict[str, Any]:
        port_key = f"{self.port}/tcp"
        config = volume_helper_config(
            self.helper_image,
            volume_name,
            [
                "sh",
                "-c",
                "apk add --no-cache netcat-openbsd >/dev/null && "
                f"nc -l {self.port} | tar -xzf - -C {VOLUME_MOUNT}",
            ],
        )
        config["ExposedPorts"] = {port_key: {}}
        config["HostConfig"]["PortBindings"] = {
            port_key: [{"HostIp": "0.0.0.0", "HostPort": str(self.port)}]
        }
        return config

    def _sender_command(self) -> list[str]:
        host = self.destination.hostname
        # The receiver may still be installing netcat; retry the connection
        return [
            "sh",
            "-c",
            "apk add --no-cache netcat-openbsd >/dev/null && "
            "for i in $(seq 1 30); do "
            f"tar -czf - -C {VOLUME_MOUNT} . | nc -N {host} {self.port} && exit 0; "
            "sleep 1; done; exit 1",
        ]

    async def transfer(self, volume_name: str) -> None:
        await self.destination.ensure_image(self.helper_image)
        await ensure_image(self.source, self.helper_image)

        receiver_name = f"volume_receiver_{volume_name}"
        sender_name = f"volume_sender_{volume_name}"

        # Leftovers from an interrupted job would collide on name
        await self.destination.discard_container(receiver_name)
        await self._discard_source_helper(sender_name)

        async with AsyncExitStack() as stack:
            receiver_id = await self.destination.create_container(
                self._receiver_config(volume_name), name=receiver_name
            )
            stack.push_async_callback(self.destination.discard_container, receiver_id)
            await self.destination.start_container(receiver_id)

            sender_id = await self._create_source_helper(
                volume_name, self._sender_command(), name=sender_name
            )
            stack.push_async_callback(self._discard_source_helper, sender_id)
            await run_docker(self.source.api.start, sender_id)

            logger.info("Waiting for volume transfer to complete", volume=volume_name)
            try:
                status = await asyncio.wait_for(
                    run_docker(self.source.api.wait, sender_id), timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                logger.warning(
                    "Abandoned wait for volume sender after timeout",
                    volume=volume_name,
                    timeout=self.timeout,
                )
                raise TransferError(
                    f"Transfer of volume {volume_name} timed out after {self.timeout}s"
                ) from e

            exit_code = status.get("StatusCode", -1)
            logger.info("Sender exited", volume=volume_name, status=exit_code)
            if exit_code != 0:
                raise TransferError(
                    f"Sender for volume {volume_name} exited with status {exit_code}",
                    exit_code=exit_code,
                )


def build_channel(
    settings: ReplicationSettings,
    source: DockerClient,
    destination: DestinationRuntime,
) -> StreamChannel:
    """Create the transfer channel selected by ``settings.transfer_mode``."""
    kwargs: dict[str, Any] = {
        "helper_image": settings.helper_image,
        "timeout": settings.transfer_timeout,
    }
    if settings.transfer_mode is TransferMode.NETCAT:
        return NetcatStreamChannel(source, destination, port=settings.transfer_port, **kwargs)
    return ArchiveStreamChannel(source, destination, **kwargs)
