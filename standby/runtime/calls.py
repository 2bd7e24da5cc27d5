"""
Docker SDK call helpers.

The SDK is blocking; every call made from the asyncio pipeline goes through
``run_docker`` so it runs in a worker thread and so SDK/transport errors are
translated into the Standby error taxonomy at a single place.
"""

from __future__ import annotations

import asyncio

from typing import Any, Callable, TypeVar

import docker
import requests
import structlog

from docker.errors import APIError, DockerException, NotFound

from standby.core.errors import (
    NotFoundError,
    RuntimeOperationError,
    RuntimeUnavailableError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def call_docker(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Invoke a Docker SDK callable, translating its errors."""
    try:
        return func(*args, **kwargs)
    except NotFound as e:
        raise NotFoundError(e.explanation or str(e)) from e
    except APIError as e:
        raise RuntimeOperationError(e.explanation or str(e), status_code=e.status_code) from e
    except requests.exceptions.RequestException as e:
        raise RuntimeUnavailableError(f"Runtime request failed: {e}") from e
    except DockerException as e:
        raise RuntimeUnavailableError(str(e)) from e


async def run_docker(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a Docker SDK callable in a worker thread."""
    return await asyncio.to_thread(call_docker, func, *args, **kwargs)


def connect_docker(base_url: str | None = None) -> docker.DockerClient:
    """Open and verify a Docker handle.

    Args:
        base_url: Engine address (``tcp://host:2375``, ``unix://...``);
            the local environment (``DOCKER_HOST`` etc.) is used when None

    Raises:
        RuntimeUnavailableError: the engine cannot be reached
    """
    try:
        if base_url is None:
            client = call_docker(docker.from_env)
        else:
            client = call_docker(docker.DockerClient, base_url=base_url)
        call_docker(client.ping)
    except (RuntimeOperationError, NotFoundError) as e:
        raise RuntimeUnavailableError(f"Runtime at {base_url or 'local'} rejected ping: {e}") from e

    logger.debug("Connected to runtime", base_url=base_url or "local")
    return client
