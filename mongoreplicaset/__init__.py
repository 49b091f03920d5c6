"""
MongoDB replica sets in Docker for fault-tolerance testing

Provisions a replica set, reports its status and breaks it on purpose:
stopped, killed and partitioned members, delayed members, arbiters and
forced reconfigurations.
"""

from .exceptions import (
    MongoReplicaSetError,
    IncorrectUserInputError,
    MongoNodeInitializationError,
    StatusParseError,
    ReconfigurationError,
    ReconfigurationTimeoutError,
    InvariantViolationError,
    NodeNotFoundError,
    DockerNotAvailableError,
    ProxyError,
)
from .models import MemberState, SocketAddress, MongoDbVersion, Node, ClusterStatus
from .replica_set import MongoReplicaSet

__version__ = "0.1.0"

__all__ = [
    "MongoReplicaSet",
    "MemberState",
    "SocketAddress",
    "MongoDbVersion",
    "Node",
    "ClusterStatus",
    "MongoReplicaSetError",
    "IncorrectUserInputError",
    "MongoNodeInitializationError",
    "StatusParseError",
    "ReconfigurationError",
    "ReconfigurationTimeoutError",
    "InvariantViolationError",
    "NodeNotFoundError",
    "DockerNotAvailableError",
    "ProxyError",
]
