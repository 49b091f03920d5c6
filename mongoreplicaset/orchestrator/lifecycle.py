"""
Replica Set Lifecycle - provisioning state machine

NOT_STARTED -> CONTAINERS_STARTING -> INITIATING -> AWAITING_ELECTION
            -> [ADDING_ARBITER] -> RUNNING, with FAILED reachable from any state.

Handles:
- Shared network and helper containers (docker host forwarder, toxiproxy)
- Node containers and their externally reachable addresses
- Replica set initiation, election and the optional arbiter
- Whole-pipeline retries with a full teardown in between
"""

import logging
from enum import Enum
from typing import Any, Optional, Tuple

from ..exceptions import (
    DockerNotAvailableError,
    IncorrectUserInputError,
    InvariantViolationError,
    MongoNodeInitializationError,
)
from ..models import MongoDbVersion, SocketAddress
from . import commands
from .commands import REPLICA_SET_NAME
from .docker_manager import DockerManager, ListeningPortWait, LogMessageWait, LOCALHOST
from .reconfiguration import ReconfigurationEngine
from .registry import NodeRegistry, DOCKER_HOST_SLOT, TOXIPROXY_SLOT
from .shell import MongoShell
from .toxiproxy import ContainerProxy, ToxiproxyContainer

MONGO_DB_INTERNAL_PORT = 27017
NODE_STARTUP_TIMEOUT = 60
NODE_STARTUP_ATTEMPTS = 3
START_ATTEMPTS = 3
MONGODB_DATABASE_NAME_DEFAULT = "test"
READ_PREFERENCE_PRIMARY = "primary"

DOCKER_HOST_IMAGE = "qoomon/docker-host:2.4.0"
DOCKER_HOST_WORKAROUND = "dockerhost"
DOCKER_HOST_INTERNAL = "host.docker.internal"


class LifecycleState(Enum):
    """Provisioning progress of a replica set"""
    NOT_STARTED = "not_started"
    CONTAINERS_STARTING = "containers_starting"
    INITIATING = "initiating"
    AWAITING_ELECTION = "awaiting_election"
    ADDING_ARBITER = "adding_arbiter"
    RUNNING = "running"
    FAILED = "failed"


class ReplicaSetLifecycle:
    """
    Starts and tears down a replica set described by ApplicationProperties
    """

    def __init__(
        self,
        properties,
        docker_manager: Optional[DockerManager] = None,
        registry: Optional[NodeRegistry] = None,
        shell: Optional[MongoShell] = None
    ):
        """
        Initialize lifecycle controller

        Args:
            properties: Resolved ApplicationProperties
            docker_manager: Docker manager instance
            registry: Node registry owned by the replica set
            shell: Mongo shell runner
        """
        self.properties = properties
        self.docker = docker_manager or DockerManager()
        self.registry = registry or NodeRegistry()
        self.shell = shell or MongoShell(self.docker)
        self.engine = ReconfigurationEngine(self.shell, self.registry, properties)
        self.network: Optional[str] = None
        self.toxiproxy: Optional[ToxiproxyContainer] = None
        self.version: Optional[MongoDbVersion] = None
        self.state = LifecycleState.NOT_STARTED
        self.logger = logging.getLogger("ReplicaSetLifecycle")

    @property
    def docker_host_name(self) -> str:
        return DOCKER_HOST_INTERNAL if self.properties.use_host_docker_internal else DOCKER_HOST_WORKAROUND

    def start(self) -> None:
        """
        Run the provisioning pipeline, retrying it from scratch on transient failures

        Raises:
            IncorrectUserInputError: Immediately, on an unsupported server version
            MongoNodeInitializationError: When every attempt failed
        """
        last_error = None
        for attempt in range(1, START_ATTEMPTS + 1):
            self.logger.debug(
                f"Provisioning a replica set, attempt: {attempt} out of {START_ATTEMPTS}. Please, wait."
            )
            try:
                self._start_internal()
                self.state = LifecycleState.RUNNING
                self.logger.info(
                    f"Replica set of {self.properties.replica_set_number} node(s) is running, "
                    f"server version {self.version}"
                )
                return
            except (IncorrectUserInputError, InvariantViolationError, DockerNotAvailableError):
                self.stop()
                self.state = LifecycleState.FAILED
                raise
            except Exception as e:
                self.logger.warning(f"Provisioning attempt {attempt} failed: {e}")
                self.stop()
                last_error = e

        self.state = LifecycleState.FAILED
        raise MongoNodeInitializationError("Retry limit hit with exception") from last_error

    def stop(self) -> None:
        """
        Remove every container and the shared network

        Best effort: a container that cannot be removed does not stop the teardown.
        """
        for container in self.registry.all_containers():
            self.docker.remove_container(container)
        if self.toxiproxy is not None:
            self.toxiproxy.close()
            self.toxiproxy = None
        self.registry.clear()
        if self.network is not None:
            self.docker.delete_network(self.network, force=True)
            self.network = None
        self.state = LifecycleState.NOT_STARTED

    # Pipeline

    def _start_internal(self) -> None:
        self.state = LifecycleState.CONTAINERS_STARTING
        props = self.properties
        if props.replica_set_number > 1 or props.add_toxiproxy:
            self.network = self.docker.create_network().name

        self._decide_on_docker_host()
        add_extra_host = self._should_add_extra_host()

        if props.add_toxiproxy:
            self.toxiproxy = ToxiproxyContainer(self.docker, self.network)
            self.registry.register_supplementary(TOXIPROXY_SLOT, self.toxiproxy.start())

        for _ in range(props.replica_set_number):
            container = self._start_node(add_extra_host)
            address, proxy = self._node_address(container)
            self.registry.register_working(address, container)
            if proxy is not None:
                self.registry.register_proxy(address, proxy)

        first = self.registry.first_working()

        self.state = LifecycleState.INITIATING
        self.version = self.engine.initiate(first, self.registry.working_addresses())

        self.state = LifecycleState.AWAITING_ELECTION
        primary = self._await_election(first)

        if props.add_arbiter:
            self.state = LifecycleState.ADDING_ARBITER
            self._add_arbiter(primary, add_extra_host)

        self.logger.debug(f"REPLICA SET STATUS:\n{self.shell.raw_status(first)}")

    def _decide_on_docker_host(self) -> None:
        """Start the docker host forwarder when nodes must reach each other via localhost ports"""
        props = self.properties
        if props.use_host_docker_internal or props.replica_set_number < 2:
            return
        if self.docker.docker_host_ip_address() != LOCALHOST:
            return

        self._warn_about_host_file()
        container = self.docker.start_container(
            image=DOCKER_HOST_IMAGE,
            network=self.network,
            wait_strategy=LogMessageWait(r"Forwarding ports"),
            startup_timeout=NODE_STARTUP_TIMEOUT,
            cap_add=["NET_ADMIN", "NET_RAW"],
            network_aliases=[self.docker_host_name]
        )
        self.registry.register_supplementary(DOCKER_HOST_SLOT, container)

    def _should_add_extra_host(self) -> bool:
        """host-gateway routing is needed on a native Linux daemon only"""
        props = self.properties
        if not props.use_host_docker_internal or props.replica_set_number < 2:
            return False
        operating_system = self.docker.host_info().get("OperatingSystem") or ""
        is_linux = "docker desktop" not in operating_system.lower()
        return is_linux and self.docker.docker_host_ip_address() == LOCALHOST

    def _warn_about_host_file(self) -> None:
        self.logger.warning(
            f"Please, check that the host file of your OS has 127.0.0.1 {DOCKER_HOST_WORKAROUND}. "
            "If you don't want to modify it, then consider the following:"
            "\n1) set replica_set_number to 1;"
            "\n2) use remote docker daemon;"
            "\n3) use local docker host running tests from inside a container with mapping the Docker socket."
        )

    def _start_node(self, add_extra_host: bool):
        command = ["--bind_ip", "0.0.0.0", "--replSet", REPLICA_SET_NAME]
        command.extend(self.properties.command_line_options)
        return self.docker.start_container(
            image=self.properties.mongo_docker_image_name,
            command=command,
            exposed_ports=[MONGO_DB_INTERNAL_PORT],
            network=self.network,
            wait_strategy=ListeningPortWait(MONGO_DB_INTERNAL_PORT),
            startup_timeout=NODE_STARTUP_TIMEOUT,
            startup_attempts=NODE_STARTUP_ATTEMPTS,
            extra_hosts={DOCKER_HOST_INTERNAL: "host-gateway"} if add_extra_host else None
        )

    def _node_address(self, container) -> Tuple[SocketAddress, Optional[ContainerProxy]]:
        """Reachable address of a node, through its proxy in soft-fault mode"""
        proxy = None
        if self.toxiproxy is not None:
            proxy = self.toxiproxy.get_proxy(container, MONGO_DB_INTERNAL_PORT)
            port = proxy.proxy_port
            self.logger.debug(
                f"Real port: {self.docker.mapped_port(container, MONGO_DB_INTERNAL_PORT)}, proxy port: {port}"
            )
        else:
            port = self.docker.mapped_port(container, MONGO_DB_INTERNAL_PORT)
        return self.resolve_address(self.docker.docker_host_ip_address(), port), proxy

    def resolve_address(self, host: str, port: int) -> SocketAddress:
        """
        Map the docker host address and a published port to a member address

        Nodes on a local daemon reach each other through the docker host alias,
        a single node announces its internal port.
        """
        if host == LOCALHOST:
            if self.properties.replica_set_number == 1:
                return SocketAddress(ip=LOCALHOST, repl_set_port=MONGO_DB_INTERNAL_PORT, mapped_port=port)
            return SocketAddress(ip=self.docker_host_name, repl_set_port=port, mapped_port=port)
        return SocketAddress(ip=host, repl_set_port=port, mapped_port=port)

    def _await_election(self, container) -> Any:
        attempts = self.properties.await_node_init_attempts
        if self.properties.replica_set_number == 1:
            self.logger.debug(f"Awaiting a master node, up to {attempts} attempts")
            self.shell.wait(container, commands.self_is_master(), attempts)
            return container

        self.logger.debug(f"Searching for a master node in a replica set, up to {attempts} attempts")
        self.shell.wait(container, commands.any_primary(), attempts)
        primary = self.find_master_elected(container)

        self.logger.debug(f"Verifying that a node is a master one, up to {attempts} attempts")
        self.shell.wait(primary, commands.self_is_master(), attempts)
        return primary

    def _add_arbiter(self, primary, add_extra_host: bool) -> None:
        attempts = self.properties.await_node_init_attempts
        self.logger.debug(f"Awaiting an arbiter node to be available, up to {attempts} attempts")

        container = self._start_node(add_extra_host)
        address, proxy = self._node_address(container)
        self.registry.register_arbiter(container, address)
        if proxy is not None:
            self.registry.register_proxy(address, proxy)

        self.engine.add_arbiter_on_start(primary, address, self.version)
        self.shell.wait(primary, commands.arbiter_present(), attempts)

    # Shared helpers

    def replica_set_url(self, read_preference: str = READ_PREFERENCE_PRIMARY) -> str:
        """
        Connection string over the working members

        The replicaSet option is left out for a single node, so drivers connect directly.
        """
        hosts = ",".join(a.mapped_host for a in self.registry.working_addresses())
        query = "" if self.properties.replica_set_number == 1 else f"replicaSet={REPLICA_SET_NAME}&"
        return f"mongodb://{hosts}/{MONGODB_DATABASE_NAME_DEFAULT}?{query}readPreference={read_preference}"

    def find_master_elected(self, container) -> Any:
        """Container of the current primary, as named by the given member"""
        self.logger.debug(
            f"Waiting for a single master node up to {self.properties.await_node_init_attempts} attempts"
        )
        address = self.shell.find_primary_address(container, self.properties.await_node_init_attempts)
        return self.registry.lookup(address)

    def restart_node(self, container) -> None:
        self.docker.restart_container(container)

    def mapped_mongo_port(self, container) -> int:
        return self.docker.mapped_port(container, MONGO_DB_INTERNAL_PORT)
