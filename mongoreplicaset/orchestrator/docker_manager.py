"""
Docker Manager for Replica Set Orchestration

Provides low-level Docker operations for:
- Container lifecycle management (start with readiness checks, stop, kill, restart)
- Network creation, attachment and detachment
- Command execution inside containers
- Port mapping and docker host resolution
"""

import logging
import os
import re
import socket
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any, Tuple
from urllib.parse import urlparse

from ..exceptions import DockerNotAvailableError, MongoNodeInitializationError

try:
    import docker
    from docker.errors import DockerException, NotFound, APIError
    DOCKER_AVAILABLE = True
except ImportError:
    DOCKER_AVAILABLE = False
    docker = None

LOCALHOST = "localhost"
MANAGED_LABEL = "mongo-rs.managed"


@dataclass
class ExecResult:
    """Outcome of a command executed inside a container"""
    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass
class NetworkInfo:
    """Docker network information"""
    id: str
    name: str
    driver: str
    containers: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)


def check_docker_available() -> Tuple[bool, str]:
    """
    Check if Docker is available and running

    Returns:
        Tuple of (available: bool, message: str)
    """
    if not DOCKER_AVAILABLE:
        return False, "Docker SDK not installed. Install with: pip install docker"

    try:
        client = docker.from_env()
        client.ping()
        version = client.version()
        return True, f"Docker {version.get('Version', 'unknown')} available"
    except DockerException as e:
        return False, f"Docker not running or not accessible: {e}"


def get_docker_client():
    """
    Get Docker client instance

    Raises:
        DockerNotAvailableError: If Docker is not available
    """
    if not DOCKER_AVAILABLE:
        raise DockerNotAvailableError("Docker SDK not installed")

    try:
        client = docker.from_env()
        client.ping()
        return client
    except DockerException as e:
        raise DockerNotAvailableError(f"Cannot connect to Docker: {e}") from e


class ListeningPortWait:
    """
    Readiness check: the exposed port accepts connections from the host
    and is listed as listening inside the container
    """

    def __init__(self, port: int, poll_interval: float = 0.5):
        self.port = port
        self.poll_interval = poll_interval

    def _listening_internally(self, docker_manager: "DockerManager", container) -> bool:
        hex_port = format(self.port, "04X")
        result = docker_manager.exec(
            container,
            ["sh", "-c", f"cat /proc/net/tcp* | awk '{{print $2}}' | grep -i :{hex_port}"]
        )
        return result.exit_code == 0

    def _listening_externally(self, host: str, port: int) -> bool:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            return False

    def wait_until_ready(self, docker_manager: "DockerManager", container, timeout: float) -> None:
        host = docker_manager.docker_host_ip_address()
        mapped_port = docker_manager.mapped_port(container, self.port)
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._listening_externally(host, mapped_port) and \
                    self._listening_internally(docker_manager, container):
                return
            time.sleep(self.poll_interval)
        raise MongoNodeInitializationError(
            f"Container {container.name} did not listen on {host}:{mapped_port} within {timeout}s"
        )


class LogMessageWait:
    """Readiness check: a log line matching a pattern appeared"""

    def __init__(self, pattern: str, times: int = 1, poll_interval: float = 0.5):
        self.pattern = re.compile(pattern)
        self.times = times
        self.poll_interval = poll_interval

    def wait_until_ready(self, docker_manager: "DockerManager", container, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            logs = container.logs()
            text = logs.decode("utf-8", errors="replace") if isinstance(logs, bytes) else logs
            if len(self.pattern.findall(text)) >= self.times:
                return
            time.sleep(self.poll_interval)
        raise MongoNodeInitializationError(
            f"Container {container.name} did not log '{self.pattern.pattern}' within {timeout}s"
        )


class DockerManager:
    """
    Docker operations manager for replica set orchestration

    Container handles are docker SDK Container objects.
    """

    def __init__(self, client=None):
        """
        Initialize Docker manager

        Args:
            client: Pre-built docker client, created from the environment when omitted
        """
        self.logger = logging.getLogger("DockerManager")
        self._client = client
        self._available = True if client is not None else None
        self._error_message = None

    @property
    def client(self):
        """Get Docker client (lazy initialization)"""
        if self._client is None:
            self._check_availability()
        return self._client

    @property
    def available(self) -> bool:
        """Check if Docker is available"""
        if self._available is None:
            self._check_availability()
        return self._available

    @property
    def error_message(self) -> Optional[str]:
        """Get error message if Docker is not available"""
        if self._available is None:
            self._check_availability()
        return self._error_message

    def _check_availability(self):
        """Check Docker availability and cache result"""
        available, message = check_docker_available()
        self._available = available
        if available:
            self._client = get_docker_client()
            self.logger.info(f"Docker available: {message}")
        else:
            self._error_message = message
            self.logger.warning(f"Docker not available: {message}")

    def _require_available(self) -> None:
        if not self.available:
            raise DockerNotAvailableError(self.error_message)

    # Host Operations

    def docker_host_ip_address(self) -> str:
        """
        Address under which published container ports are reachable

        A local daemon (unix socket, named pipe or no DOCKER_HOST) maps to localhost,
        a tcp daemon to its host name.
        """
        docker_host = os.environ.get("DOCKER_HOST", "")
        if not docker_host:
            return LOCALHOST
        parsed = urlparse(docker_host)
        if parsed.scheme in ("unix", "npipe", "") or not parsed.hostname:
            return LOCALHOST
        return parsed.hostname

    def host_info(self) -> Dict[str, Any]:
        """Daemon information, OperatingSystem reads e.g. 'Docker Desktop' or 'Ubuntu 22.04'"""
        self._require_available()
        return self.client.info()

    # Network Operations

    def create_network(self, name: Optional[str] = None, driver: str = "bridge") -> NetworkInfo:
        """
        Create a Docker network

        Args:
            name: Network name, generated when omitted
            driver: Network driver

        Returns:
            NetworkInfo for created network
        """
        self._require_available()

        name = name or f"mongo-rs-{uuid.uuid4().hex[:12]}"
        network = self.client.networks.create(
            name=name,
            driver=driver,
            labels={MANAGED_LABEL: "true"}
        )
        self.logger.info(f"Created Docker network: {name}")
        return self._network_to_info(network)

    def delete_network(self, name: str, force: bool = False) -> bool:
        """
        Delete a Docker network

        Args:
            name: Network name
            force: Disconnect containers first

        Returns:
            True if deleted
        """
        if not self.available:
            return False

        try:
            network = self.client.networks.get(name)

            if force:
                network.reload()
                for container in network.containers:
                    try:
                        network.disconnect(container, force=True)
                    except APIError as e:
                        self.logger.warning(f"Error disconnecting container: {e}")

            network.remove()
            self.logger.info(f"Deleted Docker network: {name}")
            return True
        except NotFound:
            return False
        except APIError as e:
            self.logger.warning(f"Error deleting network {name}: {e}")
            return False

    def connect_network(self, container, network_name: str, aliases: Optional[List[str]] = None) -> None:
        """Attach a container to a network"""
        self._require_available()
        self.client.networks.get(network_name).connect(container, aliases=aliases)
        self.logger.info(f"Connected container {container.name} to network {network_name}")

    def disconnect_network(self, container, network_name: str) -> None:
        """Detach a container from a network"""
        self._require_available()
        self.client.networks.get(network_name).disconnect(container, force=True)
        self.logger.info(f"Disconnected container {container.name} from network {network_name}")

    def _network_to_info(self, network) -> NetworkInfo:
        """Convert Docker network to NetworkInfo"""
        attrs = network.attrs
        containers = [container_id[:12] for container_id in (attrs.get("Containers") or {})]
        return NetworkInfo(
            id=network.id[:12],
            name=network.name,
            driver=attrs.get("Driver", "unknown"),
            containers=containers,
            labels=attrs.get("Labels") or {}
        )

    # Container Operations

    def start_container(
        self,
        image: str,
        command: Optional[List[str]] = None,
        exposed_ports: Optional[List[int]] = None,
        network: Optional[str] = None,
        wait_strategy: Optional[Any] = None,
        startup_timeout: float = 60,
        startup_attempts: int = 1,
        cap_add: Optional[List[str]] = None,
        extra_hosts: Optional[Dict[str, str]] = None,
        network_aliases: Optional[List[str]] = None
    ):
        """
        Create and start a container, retrying until the wait strategy passes

        Args:
            image: Docker image
            command: Container command
            exposed_ports: Internal TCP ports to publish on random host ports
            network: Network to connect to
            wait_strategy: Readiness check with wait_until_ready(manager, container, timeout)
            startup_timeout: Seconds allowed per attempt
            startup_attempts: Attempts before giving up
            cap_add: Additional capabilities
            extra_hosts: Extra /etc/hosts entries {hostname: address}
            network_aliases: Aliases on the given network

        Returns:
            Started docker Container

        Raises:
            MongoNodeInitializationError: If every attempt fails
        """
        self._require_available()
        self._ensure_image(image)

        last_error = None
        for attempt in range(1, startup_attempts + 1):
            container = None
            try:
                container = self._create_and_start(
                    image, command, exposed_ports, network, cap_add, extra_hosts, network_aliases
                )
                if wait_strategy is not None:
                    wait_strategy.wait_until_ready(self, container, startup_timeout)
                self.logger.info(f"Started container {container.name} from {image}")
                return container
            except (DockerException, MongoNodeInitializationError) as e:
                last_error = e
                self.logger.warning(
                    f"Container from {image} failed to start, attempt {attempt}/{startup_attempts}: {e}"
                )
                if container is not None:
                    self.logger.debug(f"Logs of {container.name}:\n{self.get_container_logs(container)}")
                    self.remove_container(container)

        raise MongoNodeInitializationError(
            f"Container from {image} failed to start after {startup_attempts} attempts"
        ) from last_error

    def _create_and_start(
        self,
        image: str,
        command: Optional[List[str]],
        exposed_ports: Optional[List[int]],
        network: Optional[str],
        cap_add: Optional[List[str]],
        extra_hosts: Optional[Dict[str, str]],
        network_aliases: Optional[List[str]]
    ):
        port_bindings = {f"{p}/tcp": None for p in exposed_ports or []}
        labels = {
            MANAGED_LABEL: "true",
            "mongo-rs.created": datetime.now().isoformat()
        }

        container = self.client.containers.create(
            image=image,
            command=command,
            ports=port_bindings,
            labels=labels,
            network=network,
            cap_add=cap_add or [],
            extra_hosts=extra_hosts
        )

        # Aliases can only be set on connect, so re-attach with them
        if network and network_aliases:
            net = self.client.networks.get(network)
            net.disconnect(container)
            net.connect(container, aliases=network_aliases)

        container.start()
        container.reload()
        return container

    def stop_container(self, container, timeout: int = 10) -> None:
        """Gracefully stop a container"""
        self._require_available()
        container.stop(timeout=timeout)
        self.logger.info(f"Stopped container: {container.name}")

    def kill_container(self, container) -> None:
        """Send SIGKILL to a container"""
        self._require_available()
        container.kill()
        self.logger.info(f"Killed container: {container.name}")

    def restart_container(self, container, timeout: int = 10) -> None:
        """
        Stop and start a container

        Published ports are reallocated, so mapped ports must be re-read afterwards.
        """
        self._require_available()
        container.stop(timeout=timeout)
        container.start()
        container.reload()
        self.logger.info(f"Restarted container: {container.name}")

    def remove_container(self, container, force: bool = True) -> bool:
        """
        Remove a container

        Args:
            container: Container handle
            force: Force removal (kill if running)

        Returns:
            True if removed
        """
        if not self.available:
            return False

        try:
            container.remove(force=force)
            self.logger.info(f"Removed container: {container.name}")
            return True
        except NotFound:
            return False
        except APIError as e:
            self.logger.warning(f"Error removing container {container.name}: {e}")
            return False

    def exec(self, container, argv: List[str]) -> ExecResult:
        """
        Run a command inside a container and wait for it

        Args:
            container: Container handle
            argv: Command and arguments

        Returns:
            ExecResult with decoded stdout and stderr
        """
        self._require_available()
        result = container.exec_run(argv, demux=True)
        stdout, stderr = result.output if result.output else (None, None)
        return ExecResult(
            exit_code=result.exit_code,
            stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
            stderr=stderr.decode("utf-8", errors="replace") if stderr else ""
        )

    def mapped_port(self, container, internal_port: int) -> int:
        """
        Host port published for an internal TCP port

        Raises:
            MongoNodeInitializationError: If the port is not published
        """
        container.reload()
        ports = container.attrs.get("NetworkSettings", {}).get("Ports") or {}
        bindings = ports.get(f"{internal_port}/tcp")
        if not bindings:
            raise MongoNodeInitializationError(
                f"Port {internal_port} is not published by container {container.name}"
            )
        return int(bindings[0]["HostPort"])

    def container_ip_address(self, container) -> str:
        """Address under which this container's published ports are reachable"""
        return self.docker_host_ip_address()

    def get_container_logs(self, container, tail: int = 100) -> Optional[str]:
        """Get container logs"""
        try:
            logs = container.logs(tail=tail, timestamps=True)
            return logs.decode("utf-8") if isinstance(logs, bytes) else logs
        except APIError as e:
            self.logger.error(f"Error getting logs for {container.name}: {e}")
            return None

    # Image Operations

    def image_exists(self, image: str) -> bool:
        """Check if image exists locally"""
        try:
            self.client.images.get(image)
            return True
        except NotFound:
            return False

    def pull_image(self, image: str) -> None:
        """Pull a Docker image"""
        self.logger.info(f"Pulling image: {image}")
        self.client.images.pull(image)

    def _ensure_image(self, image: str) -> None:
        if not self.image_exists(image):
            self.pull_image(image)
