"""
Standby Replication Module

Moves selected volumes and containers from the source host to a destination.
"""

from .channels import ArchiveStreamChannel, NetcatStreamChannel, StreamChannel, build_channel
from .container import ContainerReplicator
from .job import ReplicationJob
from .volume import VolumeReplicator

__all__ = [
    "ArchiveStreamChannel",
    "NetcatStreamChannel",
    "StreamChannel",
    "build_channel",
    "ContainerReplicator",
    "ReplicationJob",
    "VolumeReplicator",
]
