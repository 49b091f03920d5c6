"""
Orchestrator Module for Replica Set Management

Provides Docker-based orchestration for:
- Node container creation and lifecycle
- Network creation, attachment and detachment
- Replica set initiation and membership changes
- Soft network faults through a toxiproxy sidecar
"""

from .docker_manager import (
    DockerManager,
    ExecResult,
    NetworkInfo,
    ListeningPortWait,
    LogMessageWait,
    check_docker_available,
    get_docker_client
)

from .registry import NodeRegistry, DisconnectedEntry, SupplementaryEntry

from .commands import RemoteCommand, WaitCondition, MembershipPath

from .shell import MongoShell

from .reconfiguration import ReconfigurationEngine

from .toxiproxy import ToxiproxyContainer, ContainerProxy

from .lifecycle import ReplicaSetLifecycle, LifecycleState

__all__ = [
    "DockerManager",
    "ExecResult",
    "NetworkInfo",
    "ListeningPortWait",
    "LogMessageWait",
    "check_docker_available",
    "get_docker_client",
    "NodeRegistry",
    "DisconnectedEntry",
    "SupplementaryEntry",
    "RemoteCommand",
    "WaitCondition",
    "MembershipPath",
    "MongoShell",
    "ReconfigurationEngine",
    "ToxiproxyContainer",
    "ContainerProxy",
    "ReplicaSetLifecycle",
    "LifecycleState",
]
