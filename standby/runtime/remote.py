"""
Remote destination delegate.

Drives a Standby agent running on the destination host through its
``/agent`` HTTP endpoints, so the source never holds the destination's
runtime credentials.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator, Iterable
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlparse

import aiohttp
import structlog

from standby.core.errors import (
    NotFoundError,
    RuntimeOperationError,
    RuntimeUnavailableError,
    StandbyError,
)
from standby.runtime.destination import DestinationRuntime

if TYPE_CHECKING:
    from standby.core.models import VolumeDescriptor

logger = structlog.get_logger(__name__)


async def _iterate_in_thread(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    """Drain a blocking chunk iterator without blocking the event loop."""
    iterator = iter(chunks)
    while True:
        chunk = await asyncio.to_thread(next, iterator, None)
        if chunk is None:
            return
        yield chunk


class RemoteDestination(DestinationRuntime):
    """Destination reached through a Standby agent."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 300.0,
        session: aiohttp.ClientSession | None = None,
    ):
        """
        Initialize the remote delegate.

        Args:
            base_url: Agent address, e.g. ``http://10.0.0.2:8080``
            timeout: Total timeout of a single agent request in seconds
            session: Existing client session (owned by the caller)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def hostname(self) -> str:
        return urlparse(self.base_url).hostname or "localhost"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}{path}"

        try:
            async with session.request(method, url, **kwargs) as response:
                try:
                    payload = await response.json(content_type=None)
                except ValueError:
                    payload = None
                if response.status >= 400:
                    detail = payload.get("detail") if isinstance(payload, dict) else None
                    raise self._error_for(response.status, detail or response.reason)
                return payload if isinstance(payload, dict) else {}
        except StandbyError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RuntimeUnavailableError(
                f"Agent request {method} {url} failed: {e.__class__.__name__}: {e}"
            ) from e

    @staticmethod
    def _error_for(status: int, detail: str | None) -> StandbyError:
        message = f"Agent returned {status}: {detail}"
        if status == 404:
            return NotFoundError(message)
        if status in (502, 503, 504):
            return RuntimeUnavailableError(message)
        return RuntimeOperationError(message, status_code=status)

    async def ensure_image(self, image: str) -> None:
        await self._request("POST", "/agent/images/pull", json={"image": image})

    async def create_volume(self, descriptor: VolumeDescriptor) -> str:
        payload = await self._request(
            "POST", "/agent/volumes", json=descriptor.create_kwargs()
        )
        return payload.get("name", descriptor.name)

    async def create_container(
        self, config: dict[str, Any], name: str | None = None
    ) -> str:
        payload = await self._request(
            "POST", "/agent/containers", json={"name": name, "config": config}
        )
        try:
            return payload["id"]
        except KeyError:
            raise RuntimeOperationError("Agent response is missing the container id")

    async def start_container(self, container_id: str) -> None:
        await self._request("POST", f"/agent/containers/{quote(container_id)}/start")

    async def remove_container(self, container_id: str, force: bool = True) -> None:
        await self._request(
            "DELETE",
            f"/agent/containers/{quote(container_id)}",
            params={"force": "true" if force else "false"},
        )

    async def receive_volume_archive(
        self, volume_name: str, chunks: Iterable[bytes]
    ) -> None:
        # Upload duration is bounded by the channel's transfer timeout, not the request timeout
        await self._request(
            "PUT",
            f"/agent/volumes/{quote(volume_name)}/archive",
            data=_iterate_in_thread(chunks),
            headers={"Content-Type": "application/x-tar"},
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout),
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
