"""
Main Standby Service

Control plane for the source host (listing, selection, replication jobs) and
agent endpoints that let another Standby server use this host as a remote
destination. Also hosts the command line entry point for both the server and
the watchdog.
"""
from __future__ import annotations

import asyncio
import os
import sys
import tempfile

from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import uvicorn

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from standby.config.logging import configure_logging
from standby.config.settings import StandbySettings, load_settings
from standby.core.errors import (
    ConfigurationError,
    NotFoundError,
    RuntimeOperationError,
    RuntimeUnavailableError,
    StandbyError,
    StoreError,
)
from standby.core.models import ItemKind, MonitorConfig, VolumeDescriptor
from standby.failover.monitor import FailoverMonitor
from standby.replication.job import ReplicationJob
from standby.runtime.calls import connect_docker, run_docker
from standby.runtime.destination import DockerDestination
from standby.runtime.factory import build_destination
from standby.store.selection import SelectionStore, SqliteSelectionStore

if TYPE_CHECKING:
    from docker import DockerClient

logger = structlog.get_logger(__name__)

# Request bodies stream to disk past this size before reaching the runtime
ARCHIVE_SPOOL_SIZE = 64 * 1024 * 1024


class SelectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    id: str = ""
    name: str = ""
    is_selected: bool = Field(..., alias="isSelected")


class ReplicateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    destination_host: str = Field(..., alias="destinationHost")
    source_host_address: str = Field(..., alias="sourceHostAddress")


class PullRequest(BaseModel):
    image: str


class VolumeCreateRequest(BaseModel):
    name: str
    driver: str = "local"
    driver_opts: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)


class ContainerCreateRequest(BaseModel):
    name: str | None = None
    config: dict[str, Any]


def http_error(error: StandbyError) -> HTTPException:
    """Map a Standby error onto an HTTP error response."""
    detail = f"{error.__class__.__name__}: {error}"
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=detail)
    if isinstance(error, RuntimeOperationError) and error.is_conflict:
        return HTTPException(status_code=409, detail=detail)
    if isinstance(error, RuntimeUnavailableError):
        return HTTPException(status_code=502, detail=detail)
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=400, detail=detail)
    return HTTPException(status_code=500, detail=detail)


class StandbyService:
    """Main Standby control-plane service."""

    def __init__(
        self,
        settings: StandbySettings | None = None,
        store: SelectionStore | None = None,
        docker_client: DockerClient | None = None,
    ):
        """
        Initialize Standby service.

        Args:
            settings: Loaded settings (defaults if None)
            store: Selection store (SQLite at ``server.store_path`` if None)
            docker_client: Handle to the local runtime (from the environment if None)
        """
        self.settings = settings or StandbySettings()
        self.store = store or SqliteSelectionStore(self.settings.server.store_path)
        self.docker_client = docker_client or connect_docker()

        # Serves the agent endpoints when this host is someone's destination
        self.agent = DockerDestination(
            self.docker_client,
            helper_image=self.settings.replication.helper_image,
        )

        self.app = self._create_fastapi_app()

        logger.info("Standby service initialized")

    def _create_fastapi_app(self) -> FastAPI:
        """Create FastAPI application with API endpoints."""
        app = FastAPI(
            title="Standby",
            description="Container and volume replication with automatic failover",
            version="0.1.0",
        )

        @app.get("/health")
        async def health_check():
            """Health check endpoint probed by watchdogs."""
            return {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        @app.get("/containers")
        async def list_containers():
            """List source containers merged with their selection state."""
            try:
                containers = await run_docker(self.docker_client.api.containers, all=True)
                selected_containers = await asyncio.to_thread(self.store.selected_containers)
                selected_volumes = await asyncio.to_thread(self.store.selected_volumes)
            except StandbyError as e:
                logger.error("Failed to list containers", error=str(e))
                raise http_error(e)

            return [
                {
                    "id": c["Id"],
                    "names": c.get("Names") or [],
                    "image": c.get("Image"),
                    "state": c.get("State"),
                    "status": c.get("Status"),
                    "selected": c["Id"] in selected_containers,
                    "mounts": [
                        {
                            "type": m.get("Type"),
                            "name": m.get("Name"),
                            "source": m.get("Source"),
                            "destination": m.get("Destination"),
                            "selected": bool(m.get("Name")) and m.get("Name") in selected_volumes,
                        }
                        for m in c.get("Mounts") or []
                    ],
                }
                for c in containers
            ]

        @app.get("/volumes")
        async def list_volumes():
            """List source volumes merged with their selection state."""
            try:
                response = await run_docker(self.docker_client.api.volumes)
                selected = await asyncio.to_thread(self.store.selected_volumes)
            except StandbyError as e:
                logger.error("Failed to list volumes", error=str(e))
                raise http_error(e)

            return [
                {
                    "name": v["Name"],
                    "driver": v.get("Driver"),
                    "labels": v.get("Labels") or {},
                    "selected": v["Name"] in selected,
                }
                for v in (response or {}).get("Volumes") or []
            ]

        @app.post("/select")
        async def select(payload: SelectRequest):
            """Toggle selection membership of a container or volume."""
            try:
                kind = ItemKind(payload.type)
            except ValueError:
                raise HTTPException(
                    status_code=400, detail=f"invalid selection type: {payload.type}"
                )

            key = payload.id if kind is ItemKind.CONTAINER else payload.name
            if not key:
                raise HTTPException(status_code=400, detail="missing item id or name")

            try:
                await asyncio.to_thread(
                    self.store.set_selected, kind, key, payload.is_selected
                )
            except StoreError as e:
                logger.error("Failed to update selection", kind=kind.value, key=key, error=str(e))
                raise http_error(e)

            return {"type": kind.value, "key": key, "selected": payload.is_selected}

        @app.post("/replicate")
        async def replicate(payload: ReplicateRequest):
            """Replicate the current selection to a destination host."""
            if not payload.destination_host or not payload.source_host_address:
                raise HTTPException(
                    status_code=400,
                    detail="Destination and source host addresses cannot be empty",
                )

            logger.info("Replication requested", destination=payload.destination_host)

            try:
                destination = await build_destination(
                    payload.destination_host, self.settings.replication
                )
            except StandbyError as e:
                logger.error(
                    "Unable to open destination",
                    destination=payload.destination_host,
                    error=str(e),
                )
                raise http_error(e)

            try:
                job = ReplicationJob(
                    self.store, self.docker_client, destination, self.settings
                )
                report = await job.run(payload.source_host_address)
            except StandbyError as e:
                logger.error("Replication job aborted", error=str(e))
                raise http_error(e)
            finally:
                await destination.close()

            return {
                "status": "accepted",
                "destination": payload.destination_host,
                **report.to_dict(),
            }

        app.include_router(self._create_agent_router())
        return app

    def _create_agent_router(self) -> APIRouter:
        """Endpoints used by a remote orchestrator that targets this host."""
        router = APIRouter(prefix="/agent", tags=["agent"])

        @router.post("/images/pull")
        async def pull_image(payload: PullRequest):
            try:
                await self.agent.ensure_image(payload.image)
            except StandbyError as e:
                raise http_error(e)
            return {"image": payload.image}

        @router.post("/volumes")
        async def create_volume(payload: VolumeCreateRequest):
            descriptor = VolumeDescriptor(
                name=payload.name,
                driver=payload.driver,
                driver_opts=payload.driver_opts,
                labels=payload.labels,
            )
            try:
                name = await self.agent.create_volume(descriptor)
            except StandbyError as e:
                raise http_error(e)
            return {"name": name}

        @router.put("/volumes/{name}/archive")
        async def receive_archive(name: str, request: Request):
            with tempfile.SpooledTemporaryFile(max_size=ARCHIVE_SPOOL_SIZE) as spool:
                async for chunk in request.stream():
                    await asyncio.to_thread(spool.write, chunk)
                await asyncio.to_thread(spool.seek, 0)
                try:
                    await self.agent.receive_volume_archive(name, spool)
                except StandbyError as e:
                    logger.error("Failed to receive volume archive", volume=name, error=str(e))
                    raise http_error(e)
            return {"name": name}

        @router.post("/containers")
        async def create_container(payload: ContainerCreateRequest):
            try:
                container_id = await self.agent.create_container(
                    payload.config, name=payload.name
                )
            except StandbyError as e:
                raise http_error(e)
            return {"id": container_id}

        @router.post("/containers/{container_id}/start")
        async def start_container(container_id: str):
            try:
                await self.agent.start_container(container_id)
            except StandbyError as e:
                raise http_error(e)
            return {"id": container_id}

        @router.delete("/containers/{container_id}")
        async def remove_container(container_id: str, force: bool = True):
            try:
                await self.agent.remove_container(container_id, force=force)
            except StandbyError as e:
                raise http_error(e)
            return {"removed": container_id}

        return router

    async def run(self) -> None:
        """Run the API server until it is shut down."""
        config = uvicorn.Config(
            app=self.app,
            host=self.settings.server.bind,
            port=self.settings.server.port,
            log_config=None,  # We handle logging ourselves
            access_log=False,
        )
        server = uvicorn.Server(config)

        logger.info(
            "Starting server",
            bind=self.settings.server.bind,
            port=self.settings.server.port,
        )
        try:
            await server.serve()
        finally:
            self.store.close()
            self.docker_client.close()
            logger.info("Standby service stopped")


async def run_monitor(environ: dict[str, str] | None = None) -> None:
    """Watchdog entry point.

    Configuration is read once, before any probe is issued.

    Raises:
        ConfigurationError: a required environment variable is missing
    """
    config = MonitorConfig.from_env(os.environ if environ is None else environ)
    logger.info("Starting in monitor mode", primary=config.primary_address)

    docker_client = await asyncio.to_thread(connect_docker)
    try:
        monitor = FailoverMonitor(config, docker_client)
        await monitor.run()
    finally:
        docker_client.close()


async def main(argv: list[str] | None = None) -> None:
    """Main entry point for Standby."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Standby container replication and failover"
    )
    parser.add_argument(
        "--mode",
        choices=["server", "monitor"],
        default="server",
        help="Operating mode",
    )
    parser.add_argument("--config", "-c", type=Path, help="Configuration file path")
    parser.add_argument("--log-level", default=None, help="Logging level")

    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    configure_logging(
        log_level=args.log_level or settings.logging.level,
        json_logs=settings.logging.json_format,
    )

    if args.mode == "monitor":
        try:
            await run_monitor()
        except ConfigurationError as e:
            logger.error("Failed to create monitor", error=str(e))
            sys.exit(1)
        return

    try:
        service = StandbyService(settings=settings)
        await service.run()
    except StandbyError as e:
        logger.error(
            "Failed to run Standby service", error=f"{e.__class__.__name__}: {e}"
        )
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
