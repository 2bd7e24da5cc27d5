"""
Standby Runtime Module

Access to the source and destination container runtimes.
"""

from .calls import connect_docker, run_docker
from .destination import DestinationRuntime, DockerDestination
from .factory import build_destination
from .remote import RemoteDestination

__all__ = [
    "connect_docker",
    "run_docker",
    "DestinationRuntime",
    "DockerDestination",
    "RemoteDestination",
    "build_destination",
]
