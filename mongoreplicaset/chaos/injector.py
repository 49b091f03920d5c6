"""
Fault Injector - controlled failures on a running replica set

Provides:
- Node stop and kill
- Hard (network detach) and soft (toxiproxy cut) disconnection
- Reconnection with optional removal of the stale member
- Downstream latency through toxiproxy
- Forced reconfiguration after a lost quorum
- Named waits on election and member states
"""

import logging
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from ..exceptions import (
    IncorrectUserInputError,
    InvariantViolationError,
    MongoNodeInitializationError,
)
from ..models import MemberState, Node, SocketAddress
from ..orchestrator import commands
from ..orchestrator.toxiproxy import DOWNSTREAM

logger = logging.getLogger("FaultInjector")

CONTAINER_EXIT_CODE_OK = 0


class FaultType(Enum):
    """Types of faults and recoveries that can be applied"""
    STOP = "stop"
    KILL = "kill"
    DISCONNECT = "disconnect"
    RECONNECT = "reconnect"
    LATENCY = "latency"
    LATENCY_CLEARED = "latency_cleared"
    REMOVE_MEMBER = "remove_member"
    REMOVE_DOWN_AND_UNKNOWN = "remove_down_and_unknown"
    RESET_DELAYED_MEMBERS = "reset_delayed_members"


class FaultMode(Enum):
    """Hard faults act on containers, soft faults on the proxy in front of them"""
    HARD = "hard"
    SOFT = "soft"


@dataclass
class FaultRecord:
    """
    One applied fault or recovery

    Attributes:
        fault_id: Unique fault identifier
        fault_type: What was done
        mode: Hard or soft
        target: Address of the affected member, None for replica set wide operations
        start_time: When the operation started
        end_time: When it finished
        status: active, completed or failed
        details: Operation specific values
        error: Error message if the operation failed
    """
    fault_id: str
    fault_type: FaultType
    mode: FaultMode
    target: Optional[SocketAddress] = None
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    status: str = "active"
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fault_id": self.fault_id,
            "fault_type": self.fault_type.value,
            "mode": self.mode.value,
            "target": str(self.target) if self.target else None,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status,
            "details": self.details,
            "error": self.error
        }


class FaultInjector:
    """
    Fault injection and recovery engine for a replica set

    Refuses every operation on a single node replica set. Callers hold the
    replica set lock around mutating operations.
    """

    def __init__(self, lifecycle, max_history: int = 500):
        """
        Initialize fault injector

        Args:
            lifecycle: ReplicaSetLifecycle owning the containers and the registry
            max_history: Maximum fault history to retain
        """
        self.lifecycle = lifecycle
        self._history: deque = deque(maxlen=max_history)
        self._fault_counter = 0

    @property
    def properties(self):
        return self.lifecycle.properties

    @property
    def registry(self):
        return self.lifecycle.registry

    @property
    def shell(self):
        return self.lifecycle.shell

    @property
    def engine(self):
        return self.lifecycle.engine

    @property
    def mode(self) -> FaultMode:
        return FaultMode.SOFT if self.properties.add_toxiproxy else FaultMode.HARD

    # Preconditions

    def validate_topology(self) -> None:
        if self.properties.replica_set_number == 1:
            raise InvariantViolationError(
                "This operation is not supported for a single node replica set. "
                "Please, construct at least a Primary with Two Secondary Members(P-S-S) or "
                "Primary with a Secondary and an Arbiter (PSA) replica set"
            )

    def verify_not_empty(self) -> None:
        if self.registry.is_empty():
            raise InvariantViolationError(
                "There is no any working Mongo DB node. Please, consider starting one."
            )

    # History

    def _generate_fault_id(self) -> str:
        self._fault_counter += 1
        return f"fault-{self._fault_counter:04d}"

    @contextmanager
    def _track(self, fault_type: FaultType, target: Optional[SocketAddress] = None) -> Iterator[FaultRecord]:
        record = FaultRecord(
            fault_id=self._generate_fault_id(),
            fault_type=fault_type,
            mode=self.mode,
            target=target
        )
        logger.info(f"[INJECT] {fault_type.value} ({record.mode.value}) on {target or 'replica set'}")
        try:
            yield record
            record.status = "completed"
        except Exception as e:
            record.status = "failed"
            record.error = str(e)
            raise
        finally:
            record.end_time = datetime.now()
            self._history.append(record)

    def get_history(self, limit: int = 100, fault_type: Optional[FaultType] = None) -> List[FaultRecord]:
        """
        Get fault history

        Args:
            limit: Maximum results
            fault_type: Filter by type

        Returns:
            List of fault records, oldest first
        """
        history = list(self._history)
        if fault_type:
            history = [r for r in history if r.fault_type == fault_type]
        return history[-limit:]

    # Stop and kill

    def stop_node(self, node: Node) -> None:
        """Gracefully stop a member, it cannot be connected back"""
        self._terminate(node, FaultType.STOP)

    def kill_node(self, node: Node) -> None:
        """SIGKILL a member, it cannot be connected back"""
        self._terminate(node, FaultType.KILL)

    def _terminate(self, node: Node, fault_type: FaultType) -> None:
        self.validate_topology()
        address = node.to_socket_address()
        with self._track(fault_type, address) as record:
            is_working_node, container = self.registry.lookup_working_or_arbiter(address)
            if fault_type is FaultType.KILL:
                self.lifecycle.docker.kill_container(container)
            else:
                self.lifecycle.docker.stop_container(container)
            self.registry.retire(address, is_working_node, container)
            record.details["working_node"] = is_working_node

    # Disconnect and reconnect

    def disconnect_node_from_network(self, node: Node) -> None:
        """
        Isolate a member

        Soft mode cuts its proxy, hard mode detaches the container from the network.
        """
        self.validate_topology()
        address = node.to_socket_address()
        with self._track(FaultType.DISCONNECT, address) as record:
            is_working_node, container = self.registry.lookup_working_or_arbiter(address)
            if self.properties.add_toxiproxy:
                self.registry.lookup_proxy(address).set_connection_cut(True)
            else:
                self.lifecycle.docker.disconnect_network(container, self.lifecycle.network)
            self.registry.move_to_disconnected(address)
            record.details["working_node"] = is_working_node

    def connect_node_to_network(self, node: Node, remove: bool = True, force: bool = False) -> SocketAddress:
        """
        Bring a disconnected member back

        Soft mode restores the proxy and keeps the address. Hard mode reattaches
        and restarts the container, which changes its mapped port, then re-adds it.

        Args:
            node: Member as it was before disconnection
            remove: Hard mode only, remove the stale member entry first
            force: Hard mode only, remove by forced reconfiguration instead of rs.remove

        Returns:
            Address under which the member is registered now
        """
        self.validate_topology()
        self.verify_not_empty()
        address = node.to_socket_address()
        with self._track(FaultType.RECONNECT, address) as record:
            entry = self.registry.lookup_disconnected(address)
            if self.properties.add_toxiproxy:
                if force:
                    raise IncorrectUserInputError("add_toxiproxy does not work with force")
                self.registry.lookup_proxy(address).set_connection_cut(False)
                self.registry.restore_from_disconnected(address, address, entry.container)
                return address

            new_address = self._reconnect_hard(node, address, entry, remove, force, reconfigure=False)
            record.details["new_address"] = str(new_address)
            return new_address

    def connect_node_to_network_with_reconfiguration(self, node: Node) -> SocketAddress:
        """
        Bring a member back after its absence left no primary

        Forces out DOWN and UNKNOWN members before re-adding. Hard mode only.
        """
        if self.properties.add_toxiproxy:
            raise IncorrectUserInputError("Please, use connect_node_to_network with toxiproxy")
        self.validate_topology()
        self.verify_not_empty()
        address = node.to_socket_address()
        with self._track(FaultType.RECONNECT, address) as record:
            entry = self.registry.lookup_disconnected(address)
            new_address = self._reconnect_hard(node, address, entry, remove=False, force=False, reconfigure=True)
            record.details["new_address"] = str(new_address)
            record.details["reconfigured"] = True
            return new_address

    def _reconnect_hard(self, node: Node, address: SocketAddress, entry, remove: bool,
                        force: bool, reconfigure: bool) -> SocketAddress:
        container = entry.container
        self.lifecycle.docker.connect_network(container, self.lifecycle.network)
        self.lifecycle.restart_node(container)

        if reconfigure:
            self.engine.remove_down_and_unknown()

        self.wait_for_master()
        primary = self.lifecycle.find_master_elected(self.registry.first_working())

        if remove:
            self.engine.remove_member(primary, address, force=force)

        new_address = self.lifecycle.resolve_address(node.ip, self.lifecycle.mapped_mongo_port(container))
        self.engine.add_member(primary, new_address, entry.was_working)
        self.registry.restore_from_disconnected(address, new_address, container)
        logger.info(f"Reconnected {address} as {new_address}")
        return new_address

    # Latency

    def add_latency_to_downstream(self, node: Node, latency_ms: int) -> None:
        self.validate_topology()
        address = node.to_socket_address()
        with self._track(FaultType.LATENCY, address) as record:
            self._proxy(address).add_latency(_latency_toxic_name(address), DOWNSTREAM, latency_ms)
            record.details["latency_ms"] = latency_ms

    def remove_latency_from_downstream(self, node: Node) -> None:
        self.validate_topology()
        address = node.to_socket_address()
        with self._track(FaultType.LATENCY_CLEARED, address):
            self._proxy(address).remove_toxic(_latency_toxic_name(address))

    def _proxy(self, address: SocketAddress):
        if not self.properties.add_toxiproxy:
            raise IncorrectUserInputError("Latency requires add_toxiproxy")
        return self.registry.lookup_proxy(address)

    # Reconfiguration

    def remove_node_from_repl_set_config(self, node: Node, force: bool = False) -> None:
        self.validate_topology()
        self.verify_not_empty()
        address = node.to_socket_address()
        with self._track(FaultType.REMOVE_MEMBER, address) as record:
            primary = self.lifecycle.find_master_elected(self.registry.first_working())
            self.engine.remove_member(primary, address, force=force)
            record.details["force"] = force

    def reconfigure_repl_set_remove_down_and_unknown_nodes(self) -> None:
        self.verify_not_empty()
        with self._track(FaultType.REMOVE_DOWN_AND_UNKNOWN):
            self.engine.remove_down_and_unknown()

    def reconfigure_repl_set_to_defaults(self) -> None:
        self.verify_not_empty()
        with self._track(FaultType.RESET_DELAYED_MEMBERS):
            self.engine.reset_delayed_members_to_default(
                lambda: self.lifecycle.find_master_elected(self.registry.first_working())
            )

    # Waits

    def wait_for_master(self) -> None:
        """Block until exactly one primary is present"""
        self.verify_not_empty()
        self.shell.wait(
            self.registry.first_working(),
            commands.any_primary(),
            self.properties.await_node_init_attempts
        )

    def wait_for_master_reelection(self, previous_master: Node) -> None:
        """Block until a primary other than previous_master is elected"""
        self.validate_topology()
        self.verify_not_empty()
        self.shell.wait(
            self.registry.first_working(),
            commands.primary_reelected(f"{previous_master.ip}:{previous_master.port}"),
            self.properties.await_node_init_attempts
        )

    def wait_for_all_mongo_nodes_up(self) -> None:
        """Block until every member is PRIMARY, SECONDARY or ARBITER"""
        self.validate_topology()
        self.verify_not_empty()
        self.shell.wait(
            self.registry.first_working(),
            commands.all_nodes_up(),
            self.properties.await_node_init_attempts
        )

    def wait_for_mongo_nodes_down(self, node_number: int) -> None:
        """Block until node_number members are DOWN"""
        self.validate_topology()
        self.verify_not_empty()
        self.shell.wait(
            self.registry.first_working(),
            commands.nodes_down(node_number),
            self.properties.await_node_init_attempts
        )

    # Node lookups

    def mongo_nodes(self, members: List[Node], state: MemberState) -> List[Node]:
        self.validate_topology()
        if state is None:
            raise ValueError("state is not supposed to be None")
        return [n for n in members if n.state == state]

    def get_mongo_node(self, members: List[Node], state: MemberState) -> Node:
        nodes = self.mongo_nodes(members, state)
        if not nodes:
            raise InvariantViolationError(f"Cannot find a node in a cluster via a memberState: {state.name}")
        return nodes[0]

    # Rollback

    def load_collection_to_dead_letter_db(self, node: Node, collection_full_name: str, url: str) -> bool:
        """
        Restore rollback files of a former primary into the dead letter database

        Args:
            node: Former primary
            collection_full_name: db.collection, e.g. test.foo
            url: Connection string used by mongorestore

        Returns:
            False if no rollback directory appeared in time, True once restored
        """
        self.validate_topology()
        self.verify_not_empty()
        attempts = self.properties.await_node_init_attempts
        path = commands.rollback_path(collection_full_name)
        container = self.registry.lookup(node.to_socket_address())
        docker = self.lifecycle.docker

        waited = docker.exec(container, commands.wait_for_rollback_directory(path, attempts))
        logger.debug(f"Wait for rollback files: stdout: {waited.stdout}, stderr: {waited.stderr}")
        if waited.exit_code != CONTAINER_EXIT_CODE_OK or f"{attempts - 1} up to" in waited.stdout:
            logger.debug("Cannot find any rollback file")
            return False

        restored = docker.exec(container, commands.mongorestore(url, path))
        logger.debug(f"mongorestore: stdout: {restored.stdout}, stderr: {restored.stderr}")
        if restored.exit_code != CONTAINER_EXIT_CODE_OK:
            raise MongoNodeInitializationError("Cannot execute mongorestore to extract rollback files")
        return True


def _latency_toxic_name(address: SocketAddress) -> str:
    return f"ADD_LATENCY_DOWNSTREAM_{address.mapped_port}"
