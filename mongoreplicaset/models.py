"""
Replica Set Models - Core value types shared by every component

Provides:
- Member states mirroring the server's replication state codes
- Socket addresses used as registry keys
- Read-only node and cluster status snapshots
- Server version triples
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class MemberState(Enum):
    """
    Replica set member states as reported by rs.status()

    See https://docs.mongodb.com/manual/reference/replica-states/
    """
    STARTUP = 0
    PRIMARY = 1
    SECONDARY = 2
    RECOVERING = 3
    STARTUP2 = 5
    UNKNOWN = 6
    ARBITER = 7
    DOWN = 8
    ROLLBACK = 9
    NOT_RECOGNIZED = 2 ** 31 - 1

    @classmethod
    def from_value(cls, value: int) -> "MemberState":
        """Map a raw state code, falling back to NOT_RECOGNIZED for unknown codes"""
        try:
            return cls(value)
        except ValueError:
            return cls.NOT_RECOGNIZED


@dataclass(frozen=True)
class SocketAddress:
    """
    Externally reachable location of a replica set member

    Equality and hashing use (ip, mapped_port) only: the port written into the
    replica set configuration may differ from the port a client connects to.
    """
    ip: str
    repl_set_port: int = field(compare=False)
    mapped_port: int

    @property
    def host(self) -> str:
        """Host string as configured inside the replica set"""
        return f"{self.ip}:{self.repl_set_port}"

    @property
    def mapped_host(self) -> str:
        """Host string as reachable from the test process"""
        return f"{self.ip}:{self.mapped_port}"

    def __str__(self) -> str:
        return self.mapped_host


@dataclass(frozen=True, order=True)
class MongoDbVersion:
    """Server version, ordered component-wise"""
    major: int
    minor: int
    patch: int = 0

    @classmethod
    def parse(cls, text: str) -> "MongoDbVersion":
        """
        Parse a dotted version string

        Args:
            text: Version such as "4.0.10" or "4.2"

        Returns:
            MongoDbVersion

        Raises:
            ValueError: If major and minor parts are missing or not numeric
        """
        parts = text.strip().split(".")
        if len(parts) < 2:
            raise ValueError(
                f"Mongo DB version {text} should have at least major and minor parts"
            )
        patch = int(parts[2]) if len(parts) > 2 else 0
        return cls(int(parts[0]), int(parts[1]), patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class Node:
    """
    Public, read-only view of one replica set member

    Attributes:
        ip: Host part of the member name
        port: Port part of the member name
        health: 1.0 if reachable, 0.0 otherwise
        state: Replication state
    """
    ip: str
    port: int
    health: float
    state: MemberState

    def to_socket_address(self) -> SocketAddress:
        """Registry key for this member, health and state discarded"""
        return SocketAddress(ip=self.ip, repl_set_port=self.port, mapped_port=self.port)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.ip,
            "port": self.port,
            "health": self.health,
            "state": self.state.name,
        }


@dataclass(frozen=True)
class ClusterStatus:
    """
    Snapshot of rs.status() (or of a command acknowledgement)

    Produced fresh on every query, members sorted by port ascending.
    """
    status: int
    version: Optional[MongoDbVersion]
    members: Tuple[Node, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "version": str(self.version) if self.version else None,
            "members": [m.to_dict() for m in self.members],
        }
