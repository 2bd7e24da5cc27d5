"""Pytest configuration and fixtures for Standby tests."""
from __future__ import annotations

import copy
import io
import posixpath
import tarfile
import threading
import uuid

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

from docker.errors import APIError, ImageNotFound, NotFound
from docker.utils import parse_repository_tag

from standby.config.settings import StandbySettings
from standby.runtime.destination import DockerDestination
from standby.store.selection import SqliteSelectionStore


def _image_key(image: str) -> str:
    repository, tag = parse_repository_tag(image)
    return f"{repository}:{tag or 'latest'}"


class FakeDockerAPI:
    """In-memory stand-in for ``docker.APIClient``.

    Volumes hold a file tree (relative path -> bytes). Containers keep the
    raw create request. Archive calls read and write the tree of the volume a
    container mounts.
    """

    def __init__(self, base_url: str):
        self.base_url = base_url
        self.volumes_data: dict[str, dict[str, Any]] = {}
        self.volume_files: dict[str, dict[str, bytes]] = {}
        self.containers_data: dict[str, dict[str, Any]] = {}
        self.images: set[str] = set()
        self.pulls: list[str] = []
        self.started: list[str] = []
        self.removed: list[str] = []
        self.exit_codes: dict[str, int] = {}
        self.wait_delay: float = 0.0
        self.archive_delay: float = 0.0
        self.reject_archives = False
        self._lock = threading.Lock()

    # -- volumes --------------------------------------------------------

    def add_volume(
        self,
        name: str,
        files: dict[str, bytes] | None = None,
        driver: str = "local",
        options: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
    ) -> None:
        self.volumes_data[name] = {
            "Name": name,
            "Driver": driver,
            "Options": options,
            "Labels": labels,
            "Mountpoint": f"/var/lib/docker/volumes/{name}/_data",
            "Scope": "local",
        }
        self.volume_files[name] = dict(files or {})

    def inspect_volume(self, name: str) -> dict[str, Any]:
        if name not in self.volumes_data:
            raise NotFound(f"get {name}: no such volume", explanation=f"get {name}: no such volume")
        return copy.deepcopy(self.volumes_data[name])

    def create_volume(self, name=None, driver=None, driver_opts=None, labels=None):
        if name not in self.volumes_data:
            self.add_volume(name, driver=driver or "local", options=driver_opts, labels=labels)
        return copy.deepcopy(self.volumes_data[name])

    def volumes(self, filters=None):
        return {"Volumes": [copy.deepcopy(v) for v in self.volumes_data.values()]}

    # -- images ---------------------------------------------------------

    def inspect_image(self, image: str) -> dict[str, Any]:
        if _image_key(image) not in self.images:
            raise ImageNotFound(f"No such image: {image}", explanation=f"No such image: {image}")
        return {"Id": f"sha256:{_image_key(image)}", "RepoTags": [_image_key(image)]}

    def pull(self, repository: str, tag: str | None = None, **kwargs: Any) -> str:
        key = _image_key(f"{repository}:{tag}" if tag else repository)
        self.pulls.append(key)
        self.images.add(key)
        return ""

    # -- containers -----------------------------------------------------

    def add_container(self, container_id: str, name: str, config: dict[str, Any],
                      host_config: dict[str, Any] | None = None,
                      networks: dict[str, Any] | None = None) -> None:
        self.containers_data[container_id] = {
            "Id": container_id,
            "Name": name,
            "Image": f"sha256:{config.get('Image')}",
            "Config": copy.deepcopy(config),
            "HostConfig": copy.deepcopy(host_config or {}),
            "NetworkSettings": {"Networks": copy.deepcopy(networks or {})},
            "State": {"Status": "running"},
            "Mounts": [],
        }

    def _resolve(self, ref: str) -> dict[str, Any]:
        with self._lock:
            if ref in self.containers_data:
                return self.containers_data[ref]
            for container in self.containers_data.values():
                if container["Name"] == f"/{ref}":
                    return container
        raise NotFound(f"No such container: {ref}", explanation=f"No such container: {ref}")

    def create_container_from_config(self, config, name=None, platform=None):
        config = copy.deepcopy(config)
        host_config = config.pop("HostConfig", {}) or {}
        networking = config.pop("NetworkingConfig", {}) or {}

        with self._lock:
            if name and any(c["Name"] == f"/{name}" for c in self.containers_data.values()):
                raise APIError(
                    "Conflict",
                    response=SimpleNamespace(status_code=409, url="/containers/create", reason="Conflict"),
                    explanation=f'Conflict. The container name "/{name}" is already in use',
                )
        if _image_key(config["Image"]) not in self.images:
            raise ImageNotFound(f"No such image: {config['Image']}")

        container_id = uuid.uuid4().hex
        with self._lock:
            self.containers_data[container_id] = {
                "Id": container_id,
                "Name": f"/{name}" if name else f"/auto_{container_id[:8]}",
                "Image": f"sha256:{_image_key(config['Image'])}",
                "Config": config,
                "HostConfig": host_config,
                "NetworkSettings": {"Networks": networking.get("EndpointsConfig") or {}},
                "State": {"Status": "created"},
                "Mounts": [],
            }
        return {"Id": container_id, "Warnings": []}

    def inspect_container(self, ref: str) -> dict[str, Any]:
        return copy.deepcopy(self._resolve(ref))

    def containers(self, all=False, **kwargs):
        return [
            {
                "Id": c["Id"],
                "Names": [c["Name"]],
                "Image": c["Config"].get("Image"),
                "State": c["State"]["Status"],
                "Status": c["State"]["Status"],
                "Mounts": c.get("Mounts") or [],
            }
            for c in self.containers_data.values()
            if all or c["State"]["Status"] == "running"
        ]

    def start(self, ref: str) -> None:
        container = self._resolve(ref)
        container["State"]["Status"] = "running"
        self.started.append(container["Id"])

    def wait(self, ref: str, timeout=None, condition=None):
        container = self._resolve(ref)
        if self.wait_delay:
            threading.Event().wait(self.wait_delay)
        return {"StatusCode": self.exit_codes.get(container["Name"].lstrip("/"), 0)}

    def remove_container(self, ref: str, force: bool = False, v: bool = False) -> None:
        container = self._resolve(ref)
        with self._lock:
            del self.containers_data[container["Id"]]
        self.removed.append(container["Name"].lstrip("/"))

    # -- archives -------------------------------------------------------

    def _mounted_volume(self, container: dict[str, Any]) -> tuple[str, str]:
        for mount in container["HostConfig"].get("Mounts") or []:
            if mount.get("Type") == "volume":
                return mount["Source"], mount["Target"]
        raise APIError("container has no volume mount")

    def get_archive(self, ref: str, path: str, chunk_size: int = 1024, encode_stream=False):
        container = self._resolve(ref)
        volume, target = self._mounted_volume(container)
        root = posixpath.basename(target.rstrip("/"))

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            directory = tarfile.TarInfo(root)
            directory.type = tarfile.DIRTYPE
            tar.addfile(directory)
            for relative, data in sorted(self.volume_files[volume].items()):
                info = tarfile.TarInfo(f"{root}/{relative}")
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        raw = buffer.getvalue()

        def chunks():
            for offset in range(0, len(raw), chunk_size):
                yield raw[offset:offset + chunk_size]

        return chunks(), {"name": root, "size": len(raw), "mode": 2147484141}

    def put_archive(self, ref: str, path: str, data) -> bool:
        container = self._resolve(ref)
        volume, target = self._mounted_volume(container)

        if isinstance(data, (bytes, bytearray)):
            raw = bytes(data)
        elif hasattr(data, "read"):
            raw = data.read()
        else:
            raw = b"".join(data)

        if self.reject_archives:
            return False

        with tarfile.open(fileobj=io.BytesIO(raw)) as tar:
            for member in tar.getmembers():
                if not member.isfile():
                    continue
                full = posixpath.normpath(posixpath.join(path, member.name))
                if full.startswith(target.rstrip("/") + "/"):
                    relative = full[len(target.rstrip("/")) + 1:]
                    self.volume_files[volume][relative] = tar.extractfile(member).read()
        if self.archive_delay:
            threading.Event().wait(self.archive_delay)
        return True


class FakeContainer:
    def __init__(self, api: FakeDockerAPI, container_id: str):
        self.api = api
        self.id = container_id

    def start(self) -> None:
        self.api.start(self.id)


class FakeContainerCollection:
    def __init__(self, api: FakeDockerAPI):
        self.api = api

    def get(self, container_id: str) -> FakeContainer:
        return FakeContainer(self.api, self.api._resolve(container_id)["Id"])


class FakeDockerClient:
    """Minimal ``docker.DockerClient`` backed by ``FakeDockerAPI``."""

    def __init__(self, base_url: str):
        self.api = FakeDockerAPI(base_url)
        self.containers = FakeContainerCollection(self.api)
        self.closed = False

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def source_docker() -> FakeDockerClient:
    """Fake runtime of the source host."""
    client = FakeDockerClient("http+docker://localhost")
    client.api.images.add("alpine:latest")
    return client


@pytest.fixture
def destination_docker() -> FakeDockerClient:
    """Fake runtime of the destination host."""
    return FakeDockerClient("http://10.0.0.2:2375")


@pytest.fixture
def destination(destination_docker: FakeDockerClient) -> DockerDestination:
    return DockerDestination(destination_docker, helper_image="alpine:latest")


@pytest.fixture
def settings() -> StandbySettings:
    return StandbySettings()


@pytest.fixture
def store() -> SqliteSelectionStore:
    selection = SqliteSelectionStore(":memory:")
    yield selection
    selection.close()


@pytest.fixture
def mock_probe() -> AsyncMock:
    """Health probe that reports the primary as down."""
    return AsyncMock(return_value=False)


@pytest.fixture
def sample_container_config() -> dict[str, Any]:
    """Runtime configuration of a typical source container."""
    return {
        "Image": "nginx:1.25",
        "Cmd": ["nginx", "-g", "daemon off;"],
        "Env": ["APP_ENV=production", "WORKERS=4"],
        "ExposedPorts": {"80/tcp": {}},
        "Labels": {"app": "web"},
    }


@pytest.fixture
def sample_host_config() -> dict[str, Any]:
    return {
        "Mounts": [
            {"Type": "volume", "Source": "web-data", "Target": "/usr/share/nginx/html"},
            {"Type": "bind", "Source": "/etc/web", "Target": "/etc/nginx/conf.d", "ReadOnly": True},
        ],
        "PortBindings": {"80/tcp": [{"HostIp": "", "HostPort": "8080"}]},
        "Memory": 536870912,
        "RestartPolicy": {"Name": "unless-stopped", "MaximumRetryCount": 0},
    }
