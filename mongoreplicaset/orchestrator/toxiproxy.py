"""
Toxiproxy sidecar - soft network faults without touching node containers

Every node is reached through its own proxy on the sidecar, so a connection
can be cut or slowed down by adding toxics over the sidecar's HTTP API.
"""

import logging
import time
from typing import Dict, List, Optional

import httpx

from ..exceptions import MongoNodeInitializationError, ProxyError

logger = logging.getLogger("Toxiproxy")

TOXIPROXY_IMAGE = "shopify/toxiproxy:2.1.3"
CONTROL_PORT = 8474
FIRST_PROXIED_PORT = 8666
LAST_PROXIED_PORT = FIRST_PROXIED_PORT + 31

CUT_CONNECTION_DOWNSTREAM = "CUT_CONNECTION_DOWNSTREAM"
CUT_CONNECTION_UPSTREAM = "CUT_CONNECTION_UPSTREAM"

DOWNSTREAM = "downstream"
UPSTREAM = "upstream"


class ToxiproxyApiWait:
    """Readiness check: the control API answers /version"""

    def __init__(self, poll_interval: float = 0.5):
        self.poll_interval = poll_interval

    def wait_until_ready(self, docker_manager, container, timeout: float) -> None:
        host = docker_manager.docker_host_ip_address()
        port = docker_manager.mapped_port(container, CONTROL_PORT)
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                if httpx.get(f"http://{host}:{port}/version", timeout=2.0).status_code == 200:
                    return
            except httpx.HTTPError:
                pass
            time.sleep(self.poll_interval)
        raise MongoNodeInitializationError(f"Toxiproxy API on {host}:{port} is not ready after {timeout}s")


class ContainerProxy:
    """
    One proxy in front of one node container

    Attributes:
        name: Proxy name, "<container>:<port>"
        original_proxy_port: Port the proxy listens on inside the sidecar
        proxy_port: Host port mapped to original_proxy_port
    """

    def __init__(self, client: httpx.Client, name: str, original_proxy_port: int, proxy_port: int):
        self._client = client
        self.name = name
        self.original_proxy_port = original_proxy_port
        self.proxy_port = proxy_port
        self._toxics: List[str] = []

    def _request(self, method: str, path: str, json: Optional[Dict] = None) -> httpx.Response:
        try:
            response = self._client.request(method, path, json=json)
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            raise ProxyError(f"Toxiproxy request {method} {path} failed: {e}") from e

    def _add_toxic(self, name: str, toxic_type: str, stream: str, attributes: Dict[str, int]) -> None:
        self._request("POST", f"/proxies/{self.name}/toxics", json={
            "name": name,
            "type": toxic_type,
            "stream": stream,
            "toxicity": 1.0,
            "attributes": attributes
        })
        self._toxics.append(name)
        logger.debug(f"Added toxic {name} ({toxic_type}, {stream}) to {self.name}")

    def remove_toxic(self, name: str) -> None:
        """Remove a toxic from this proxy"""
        self._request("DELETE", f"/proxies/{self.name}/toxics/{name}")
        if name in self._toxics:
            self._toxics.remove(name)
        logger.debug(f"Removed toxic {name} from {self.name}")

    def set_connection_cut(self, cut: bool) -> None:
        """
        Cut or restore traffic in both directions

        A cut is two bandwidth toxics with zero rate, so connections stay open
        but nothing gets through.
        """
        if cut:
            self._add_toxic(CUT_CONNECTION_DOWNSTREAM, "bandwidth", DOWNSTREAM, {"rate": 0})
            self._add_toxic(CUT_CONNECTION_UPSTREAM, "bandwidth", UPSTREAM, {"rate": 0})
        else:
            self.remove_toxic(CUT_CONNECTION_DOWNSTREAM)
            self.remove_toxic(CUT_CONNECTION_UPSTREAM)

    def add_latency(self, name: str, direction: str, latency_ms: int, jitter_ms: int = 0) -> None:
        """Delay traffic in one direction"""
        if direction not in (DOWNSTREAM, UPSTREAM):
            raise ValueError(f"Unknown toxic direction: {direction}")
        self._add_toxic(name, "latency", direction, {"latency": latency_ms, "jitter": jitter_ms})

    @property
    def toxics(self) -> List[str]:
        return list(self._toxics)


class ToxiproxyContainer:
    """
    Toxiproxy sidecar attached to the replica set network

    Proxies are handed out on consecutive listen ports starting at 8666.
    """

    def __init__(self, docker_manager, network: Optional[str], image: str = TOXIPROXY_IMAGE):
        self.docker_manager = docker_manager
        self.network = network
        self.image = image
        self.container = None
        self._client: Optional[httpx.Client] = None
        self._proxies: Dict[str, ContainerProxy] = {}
        self._next_port = FIRST_PROXIED_PORT

    def start(self, startup_timeout: float = 60):
        """Start the sidecar and open its API client"""
        self.container = self.docker_manager.start_container(
            image=self.image,
            exposed_ports=[CONTROL_PORT] + list(range(FIRST_PROXIED_PORT, LAST_PROXIED_PORT + 1)),
            network=self.network,
            wait_strategy=ToxiproxyApiWait(),
            startup_timeout=startup_timeout
        )
        host = self.docker_manager.docker_host_ip_address()
        control_port = self.docker_manager.mapped_port(self.container, CONTROL_PORT)
        self._client = httpx.Client(base_url=f"http://{host}:{control_port}", timeout=10.0)
        logger.info(f"Toxiproxy started, API on {host}:{control_port}")
        return self.container

    def get_proxy(self, target, port: int) -> ContainerProxy:
        """
        Get or create a proxy forwarding to a container port

        Args:
            target: Node container reachable by name on the shared network
            port: Target port inside the node container

        Returns:
            ContainerProxy
        """
        if self._client is None:
            raise ProxyError("Toxiproxy is not started")

        name = f"{target.name}:{port}"
        if name in self._proxies:
            return self._proxies[name]

        if self._next_port > LAST_PROXIED_PORT:
            raise ProxyError(f"No free proxy ports left on the toxiproxy container for {name}")

        listen_port = self._next_port
        try:
            response = self._client.post("/proxies", json={
                "name": name,
                "listen": f"0.0.0.0:{listen_port}",
                "upstream": name,
                "enabled": True
            })
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProxyError(f"Cannot create proxy {name}: {e}") from e

        self._next_port += 1
        proxy = ContainerProxy(
            client=self._client,
            name=name,
            original_proxy_port=listen_port,
            proxy_port=self.docker_manager.mapped_port(self.container, listen_port)
        )
        self._proxies[name] = proxy
        logger.info(f"Created proxy {name} on port {listen_port} (mapped {proxy.proxy_port})")
        return proxy

    def close(self) -> None:
        """Close the API client, the container is removed by its owner"""
        if self._client is not None:
            self._client.close()
            self._client = None
        self._proxies.clear()
