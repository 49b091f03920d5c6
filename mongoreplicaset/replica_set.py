"""
MongoReplicaSet - public entry point for tests

Example:

    with MongoReplicaSet(replica_set_number=3, add_arbiter=True) as rs:
        url = rs.get_replica_set_url()
        primary = rs.get_master_mongo_node(rs.get_mongo_rs_status().members)
        rs.disconnect_node_from_network(primary)
        rs.wait_for_master_reelection(primary)
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from .chaos import FaultInjector, FaultRecord, FaultType
from .config import ApplicationProperties, resolve_properties
from .exceptions import InvariantViolationError
from .models import ClusterStatus, MemberState, Node, SocketAddress
from .orchestrator import DockerManager, LifecycleState, ReplicaSetLifecycle
from .orchestrator.lifecycle import READ_PREFERENCE_PRIMARY

logger = logging.getLogger("MongoReplicaSet")


class MongoReplicaSet:
    """
    A MongoDB replica set in Docker containers with fault injection

    Every state-changing call runs under one instance-wide lock, so calls
    from several threads are serialized.
    """

    def __init__(
        self,
        replica_set_number: Optional[int] = None,
        await_node_init_attempts: Optional[int] = None,
        property_file_name: Optional[str] = None,
        mongo_docker_image_name: Optional[str] = None,
        enabled: Optional[bool] = None,
        add_arbiter: Optional[bool] = None,
        add_toxiproxy: Optional[bool] = None,
        slave_delay_timeout: Optional[int] = None,
        slave_delay_number: Optional[int] = None,
        use_host_docker_internal: Optional[bool] = None,
        command_line_options: Optional[List[str]] = None,
        docker_manager: Optional[DockerManager] = None
    ):
        """
        Resolve the configuration, nothing is started until start()

        Args:
            replica_set_number: Data-bearing members, 1 to 7
            await_node_init_attempts: Seconds-long attempts of each wait
            property_file_name: Path to a .yml file with a mongoReplicaSetProperties section
            mongo_docker_image_name: Image of every member, e.g. mongo:4.4.4
            enabled: start() does nothing when False
            add_arbiter: Add an arbiter after the election
            add_toxiproxy: Route members through toxiproxy for soft faults
            slave_delay_timeout: Delay of the delayed members, in seconds
            slave_delay_number: Number of delayed, hidden members
            use_host_docker_internal: Reach members via host.docker.internal
            command_line_options: Extra mongod options
            docker_manager: Docker manager instance

        Raises:
            IncorrectUserInputError: If the topology is unsupported
        """
        self.properties: ApplicationProperties = resolve_properties(
            replica_set_number=replica_set_number,
            await_node_init_attempts=await_node_init_attempts,
            property_file_name=property_file_name,
            mongo_docker_image_name=mongo_docker_image_name,
            enabled=enabled,
            add_arbiter=add_arbiter,
            add_toxiproxy=add_toxiproxy,
            slave_delay_timeout=slave_delay_timeout,
            slave_delay_number=slave_delay_number,
            use_host_docker_internal=use_host_docker_internal,
            command_line_options=command_line_options,
        )
        self._lock = threading.RLock()
        self._lifecycle = ReplicaSetLifecycle(self.properties, docker_manager=docker_manager)
        self._injector = FaultInjector(self._lifecycle)

    # Context manager

    def __enter__(self) -> "MongoReplicaSet":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    # Lifecycle

    def start(self) -> None:
        with self._lock:
            if not self.properties.enabled:
                logger.info("MongoReplicaSet is disabled")
                return
            self._lifecycle.start()

    def stop(self) -> None:
        """Remove all containers and the network, safe to call repeatedly"""
        with self._lock:
            self._lifecycle.stop()

    def close(self) -> None:
        self.stop()

    @property
    def lifecycle_state(self) -> LifecycleState:
        return self._lifecycle.state

    # Configuration accessors

    def is_enabled(self) -> bool:
        return self.properties.enabled

    @property
    def replica_set_number(self) -> int:
        return self.properties.replica_set_number

    @property
    def await_node_init_attempts(self) -> int:
        return self.properties.await_node_init_attempts

    @property
    def mongo_docker_image_name(self) -> str:
        return self.properties.mongo_docker_image_name

    @property
    def add_arbiter(self) -> bool:
        return self.properties.add_arbiter

    @property
    def add_toxiproxy(self) -> bool:
        return self.properties.add_toxiproxy

    @property
    def slave_delay_timeout(self) -> int:
        return self.properties.slave_delay_timeout

    @property
    def slave_delay_number(self) -> int:
        return self.properties.slave_delay_number

    @property
    def use_host_docker_internal(self) -> bool:
        return self.properties.use_host_docker_internal

    # Queries

    def _verify_started(self) -> None:
        if self._lifecycle.registry.is_empty():
            raise InvariantViolationError(
                "There is no any working Mongo DB node. Please, consider starting one."
            )

    def get_replica_set_url(self, read_preference: str = READ_PREFERENCE_PRIMARY) -> str:
        """mongodb:// connection string over the working members"""
        self._verify_started()
        return self._lifecycle.replica_set_url(read_preference)

    def get_mongo_rs_status(self) -> ClusterStatus:
        """Fresh rs.status() snapshot taken on the first working member"""
        self._verify_started()
        return self._lifecycle.shell.status(self._lifecycle.registry.first_working())

    def node_states(self, members: List[Node]) -> List[MemberState]:
        return [n.state for n in members]

    def mongo_nodes(self, members: List[Node], state: MemberState) -> List[Node]:
        return self._injector.mongo_nodes(members, state)

    def get_master_mongo_node(self, members: List[Node]) -> Node:
        return self._injector.get_mongo_node(members, MemberState.PRIMARY)

    def get_secondary_mongo_node(self, members: List[Node]) -> Node:
        return self._injector.get_mongo_node(members, MemberState.SECONDARY)

    def get_arbiter_mongo_node(self, members: List[Node]) -> Node:
        return self._injector.get_mongo_node(members, MemberState.ARBITER)

    # Faults

    def stop_node(self, node: Node) -> None:
        with self._lock:
            self._injector.stop_node(node)

    def kill_node(self, node: Node) -> None:
        with self._lock:
            self._injector.kill_node(node)

    def disconnect_node_from_network(self, node: Node) -> None:
        with self._lock:
            self._injector.disconnect_node_from_network(node)

    def connect_node_to_network(self, node: Node) -> SocketAddress:
        """
        Reconnect a member, removing its stale entry with rs.remove

        Without toxiproxy the container restarts and its port changes.
        """
        with self._lock:
            return self._injector.connect_node_to_network(node, remove=True, force=False)

    def connect_node_to_network_with_force_removal(self, node: Node) -> SocketAddress:
        with self._lock:
            return self._injector.connect_node_to_network(node, remove=True, force=True)

    def connect_node_to_network_without_removal(self, node: Node) -> SocketAddress:
        with self._lock:
            return self._injector.connect_node_to_network(node, remove=False, force=False)

    def connect_node_to_network_with_reconfiguration(self, node: Node) -> SocketAddress:
        """Reconnect a member after its absence left the replica set without a primary"""
        with self._lock:
            return self._injector.connect_node_to_network_with_reconfiguration(node)

    def add_latency_to_downstream(self, node: Node, latency_ms: int) -> None:
        with self._lock:
            self._injector.add_latency_to_downstream(node, latency_ms)

    def remove_latency_from_downstream(self, node: Node) -> None:
        with self._lock:
            self._injector.remove_latency_from_downstream(node)

    # Reconfiguration

    def remove_node_from_repl_set_config(self, node: Node) -> None:
        with self._lock:
            self._injector.remove_node_from_repl_set_config(node, force=False)

    def remove_node_from_repl_set_config_with_force(self, node: Node) -> None:
        with self._lock:
            self._injector.remove_node_from_repl_set_config(node, force=True)

    def reconfigure_repl_set_remove_down_and_unknown_nodes(self) -> None:
        with self._lock:
            self._injector.reconfigure_repl_set_remove_down_and_unknown_nodes()

    def reconfigure_repl_set_to_defaults(self) -> None:
        """Turn delayed members into regular secondaries, bounded by a host-side deadline"""
        with self._lock:
            self._injector.reconfigure_repl_set_to_defaults()

    def drop_connections(self, members: List[Node]) -> None:
        with self._lock:
            self._verify_started()
            self._lifecycle.engine.operate_on_connections(members, drop=True)

    def enable_connections(self, members: List[Node]) -> None:
        with self._lock:
            self._verify_started()
            self._lifecycle.engine.operate_on_connections(members, drop=False)

    def load_collection_to_dead_letter_db(self, node: Node, collection_full_name: str) -> bool:
        with self._lock:
            self._verify_started()
            return self._injector.load_collection_to_dead_letter_db(
                node, collection_full_name, self._lifecycle.replica_set_url()
            )

    # Waits

    def wait_for_master(self) -> None:
        self._injector.wait_for_master()

    def wait_for_master_reelection(self, previous_master: Node) -> None:
        self._injector.wait_for_master_reelection(previous_master)

    def wait_for_all_mongo_nodes_up(self) -> None:
        self._injector.wait_for_all_mongo_nodes_up()

    def wait_for_mongo_nodes_down(self, node_number: int) -> None:
        self._injector.wait_for_mongo_nodes_down(node_number)

    # History

    def fault_history(self, limit: int = 100, fault_type: Optional[FaultType] = None) -> List[FaultRecord]:
        return self._injector.get_history(limit=limit, fault_type=fault_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.lifecycle_state.value,
            "properties": self.properties.to_dict(),
            "history": [r.to_dict() for r in self.fault_history()],
        }
