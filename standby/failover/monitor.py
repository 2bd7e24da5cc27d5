"""
Failover Monitor for Standby

The watchdog that runs on the destination host. It probes the primary on a
fixed interval and, after ``failure_threshold`` consecutive failed probes,
starts every replicated container. Failover is one-shot: once the replicas
are promoted the loop exits and never probes again.
"""

from __future__ import annotations

import asyncio

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

import aiohttp
import structlog

from standby.core.errors import StandbyError
from standby.core.models import MonitorConfig
from standby.runtime.calls import run_docker

if TYPE_CHECKING:
    from docker import DockerClient

logger = structlog.get_logger(__name__)


class MonitorState(str, Enum):
    """Watchdog states."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED_OVER = "failed_over"


@dataclass
class StateTransition:
    """A recorded change of watchdog state."""

    previous: MonitorState
    current: MonitorState
    consecutive_failures: int
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class HealthProbe:
    """HTTP health probe against the primary host."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def __call__(self, address: str) -> bool:
        """Return True if ``address`` answers with a status below 500."""
        try:
            async with aiohttp.ClientSession() as session:
                timeout = aiohttp.ClientTimeout(total=self.timeout)
                async with session.get(address, timeout=timeout) as response:
                    if response.status >= 500:
                        logger.warning(
                            "Primary returned server error",
                            address=address,
                            status=response.status,
                        )
                        return False
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(
                "Primary unreachable",
                address=address,
                error=f"{e.__class__.__name__}: {e}",
            )
            return False


class FailoverMonitor:
    """Healthy -> Degraded -> FailedOver state machine."""

    def __init__(
        self,
        config: MonitorConfig,
        docker_client: DockerClient,
        probe: HealthProbe | None = None,
    ):
        """
        Initialize the failover monitor.

        Args:
            config: Watchdog configuration (immutable)
            docker_client: Handle to the local runtime used to start replicas
            probe: Health probe (defaults to an HTTP probe using the config timeout)
        """
        self.config = config
        self.docker_client = docker_client
        self.probe = probe or HealthProbe(timeout=config.probe_timeout)

        self.state = MonitorState.HEALTHY
        self.consecutive_failures = 0
        self.history: list[StateTransition] = []
        self.started: list[str] = []
        self.failed_starts: dict[str, str] = {}

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str],
        docker_client: DockerClient,
        probe: HealthProbe | None = None,
    ) -> FailoverMonitor:
        """Build a monitor from environment variables.

        Raises:
            ConfigurationError: a required variable is missing
        """
        return cls(MonitorConfig.from_env(environ), docker_client, probe=probe)

    @property
    def is_terminal(self) -> bool:
        return self.state is MonitorState.FAILED_OVER

    def _transition(self, new_state: MonitorState) -> None:
        if new_state is self.state:
            return
        self.history.append(
            StateTransition(
                previous=self.state,
                current=new_state,
                consecutive_failures=self.consecutive_failures,
            )
        )
        logger.info(
            "Watchdog state changed",
            previous=self.state.value,
            current=new_state.value,
            failures=self.consecutive_failures,
        )
        self.state = new_state

    async def tick(self) -> MonitorState:
        """Run one probe and apply its outcome.

        A tick in the FailedOver state does nothing.
        """
        if self.is_terminal:
            return self.state

        logger.debug("Pinging primary host", address=self.config.primary_address)
        healthy = await self.probe(self.config.primary_address)

        if healthy:
            if self.consecutive_failures:
                logger.info("Primary host recovered", failures=self.consecutive_failures)
            self.consecutive_failures = 0
            self._transition(MonitorState.HEALTHY)
            return self.state

        self.consecutive_failures += 1
        logger.warning(
            "Health check failed",
            failures=self.consecutive_failures,
            threshold=self.config.failure_threshold,
        )

        if self.consecutive_failures >= self.config.failure_threshold:
            self._transition(MonitorState.FAILED_OVER)
            await self._promote_replicas()
        else:
            self._transition(MonitorState.DEGRADED)

        return self.state

    async def _promote_replicas(self) -> None:
        """Start every replicated container; one failure does not stop the rest."""
        logger.error(
            "Primary host is down, triggering failover",
            containers=list(self.config.container_ids),
        )

        for container_id in self.config.container_ids:
            try:
                container = await run_docker(self.docker_client.containers.get, container_id)
                await run_docker(container.start)
            except StandbyError as e:
                self.failed_starts[container_id] = f"{e.__class__.__name__}: {e}"
                logger.error(
                    "Failed to start container",
                    container=container_id,
                    error=self.failed_starts[container_id],
                )
                continue

            self.started.append(container_id)
            logger.info("Started container", container=container_id)

        logger.info(
            "Failover process complete",
            started=len(self.started),
            failed=len(self.failed_starts),
        )

    async def run(self) -> MonitorState:
        """Probe on the configured interval until failover has happened."""
        logger.info(
            "Starting failover monitor",
            primary=self.config.primary_address,
            containers=len(self.config.container_ids),
            threshold=self.config.failure_threshold,
            interval=self.config.check_interval,
        )

        while not self.is_terminal:
            await asyncio.sleep(self.config.check_interval)
            await self.tick()

        return self.state
