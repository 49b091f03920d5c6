"""
Node Registry - in-memory model of replica set membership

Tracks which containers are data-bearing voting members, which are helpers
(arbiter, toxiproxy sidecar, docker host forwarder) and which are faulted out.
Callers hold the replica set lock around every mutation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..exceptions import InvariantViolationError, NodeNotFoundError
from ..models import SocketAddress

logger = logging.getLogger("NodeRegistry")

ARBITER_SLOT = "mongo-arbiter"
TOXIPROXY_SLOT = "toxiproxy"
DOCKER_HOST_SLOT = "dockerhost"


@dataclass
class SupplementaryEntry:
    """A helper container and, for the arbiter, its address"""
    container: Any
    address: Optional[SocketAddress] = None


@dataclass
class DisconnectedEntry:
    """A faulted-out member waiting to be reconnected"""
    was_working: bool
    container: Any


class NodeRegistry:
    """
    Membership maps keyed by SocketAddress

    An address is in at most one of working and disconnected, and the
    arbiter's address is never in working.
    """

    def __init__(self):
        self._working: Dict[SocketAddress, Any] = {}
        self._supplementary: Dict[str, SupplementaryEntry] = {}
        self._disconnected: Dict[SocketAddress, DisconnectedEntry] = {}
        self._proxies: Dict[SocketAddress, Any] = {}
        self._terminated: List[Any] = []

    # Registration

    def register_working(self, address: SocketAddress, container: Any) -> None:
        if address in self._disconnected:
            raise InvariantViolationError(f"{address} is registered as disconnected")
        if self.arbiter_address() == address:
            raise InvariantViolationError(f"{address} is registered as the arbiter")
        self._working[address] = container
        logger.debug(f"Registered working node {address}")

    def register_arbiter(self, container: Any, address: SocketAddress) -> None:
        if address in self._working or address in self._disconnected:
            raise InvariantViolationError(f"{address} is already registered as a data-bearing member")
        self._supplementary[ARBITER_SLOT] = SupplementaryEntry(container, address)
        logger.debug(f"Registered arbiter {address}")

    def register_supplementary(self, name: str, container: Any) -> None:
        self._supplementary[name] = SupplementaryEntry(container)
        logger.debug(f"Registered supplementary container {name}")

    def register_proxy(self, address: SocketAddress, proxy: Any) -> None:
        self._proxies[address] = proxy

    # Fault bookkeeping

    def move_to_disconnected(self, address: SocketAddress) -> DisconnectedEntry:
        """
        Move a working member or the arbiter out of the active maps

        Returns:
            DisconnectedEntry recording whether the member was data-bearing
        """
        was_working, container = self.lookup_working_or_arbiter(address)
        self.remove(address, was_working)
        entry = DisconnectedEntry(was_working=was_working, container=container)
        self._disconnected[address] = entry
        logger.debug(f"Moved {address} to disconnected (working: {was_working})")
        return entry

    def restore_from_disconnected(
        self,
        address: SocketAddress,
        new_address: SocketAddress,
        container: Any
    ) -> None:
        """
        Re-register a disconnected member, possibly under a new address

        A hard reconnect restarts the container, so its mapped port changes.
        """
        entry = self.lookup_disconnected(address)
        del self._disconnected[address]
        try:
            if entry.was_working:
                self.register_working(new_address, container)
            else:
                self.register_arbiter(container, new_address)
        except InvariantViolationError:
            self._disconnected[address] = entry
            raise
        if new_address != address and address in self._proxies:
            self._proxies[new_address] = self._proxies.pop(address)
        logger.debug(f"Restored {address} as {new_address}")

    def remove(self, address: SocketAddress, was_working: bool) -> None:
        """Drop a member from the active maps"""
        if was_working:
            self._working.pop(address, None)
        else:
            self._supplementary.pop(ARBITER_SLOT, None)

    def retire(self, address: SocketAddress, was_working: bool, container: Any) -> None:
        """
        Drop a stopped or killed member for good

        Its container stays known until teardown so it can still be removed.
        """
        self.remove(address, was_working)
        self._proxies.pop(address, None)
        self._terminated.append(container)
        logger.debug(f"Retired {address}")

    # Lookups

    def lookup(self, address: SocketAddress) -> Any:
        """Container of a working member"""
        container = self._working.get(address)
        if container is None:
            raise NodeNotFoundError(f"Cannot find a node in the working node store by {address}")
        return container

    def lookup_working_or_arbiter(self, address: SocketAddress):
        """
        Returns:
            Tuple of (is_working_node, container)
        """
        if address in self._working:
            return True, self._working[address]
        arbiter = self._supplementary.get(ARBITER_SLOT)
        if arbiter is not None and arbiter.address == address:
            return False, arbiter.container
        raise NodeNotFoundError(f"Cannot find a node in the working and arbiter node store by {address}")

    def lookup_disconnected(self, address: SocketAddress) -> DisconnectedEntry:
        entry = self._disconnected.get(address)
        if entry is None:
            raise NodeNotFoundError(f"Cannot find a node in the disconnected node store by {address}")
        return entry

    def lookup_proxy(self, address: SocketAddress) -> Any:
        proxy = self._proxies.get(address)
        if proxy is None:
            raise NodeNotFoundError(f"Cannot find a proxy by {address}")
        return proxy

    def supplementary(self, name: str) -> Optional[SupplementaryEntry]:
        return self._supplementary.get(name)

    def arbiter_address(self) -> Optional[SocketAddress]:
        arbiter = self._supplementary.get(ARBITER_SLOT)
        return arbiter.address if arbiter else None

    def working_addresses(self) -> List[SocketAddress]:
        """Working member addresses ordered by mapped port"""
        return sorted(self._working, key=lambda a: a.mapped_port)

    def first_working(self) -> Any:
        """Container of the working member with the lowest mapped port"""
        if not self._working:
            raise InvariantViolationError(
                "There is no any working Mongo DB node. Please, consider starting one."
            )
        return self._working[self.working_addresses()[0]]

    def all_containers(self) -> List[Any]:
        """Every container the registry knows about, retired and disconnected ones first"""
        containers = list(self._terminated)
        containers.extend(entry.container for entry in self._disconnected.values())
        containers.extend(entry.container for entry in self._supplementary.values())
        containers.extend(self._working[a] for a in self.working_addresses())
        return containers

    def is_empty(self) -> bool:
        return not self._working

    def clear(self) -> None:
        self._working.clear()
        self._supplementary.clear()
        self._disconnected.clear()
        self._proxies.clear()
        self._terminated.clear()
