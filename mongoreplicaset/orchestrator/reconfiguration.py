"""
Reconfiguration Engine - membership changes on a running replica set

Builds the membership commands and submits them against the right member:
add, graceful or forced remove, dropping dead members and resetting delayed
members back to regular voting secondaries.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, List, Sequence

from ..exceptions import ReconfigurationTimeoutError
from ..models import ClusterStatus, MemberState, MongoDbVersion, Node, SocketAddress
from ..status import verify_version
from . import commands
from .commands import RECONFIG_MAX_TIME_MS

RESET_DEADLINE_SECONDS = RECONFIG_MAX_TIME_MS * 2 / 1000

DEAD_STATES = (MemberState.DOWN, MemberState.UNKNOWN)


class ReconfigurationEngine:
    """
    Issues and verifies replica set membership commands

    Attributes:
        shell: MongoShell used for every remote call
        registry: NodeRegistry resolving the member to talk to
        properties: ApplicationProperties of the replica set
        reset_deadline_seconds: Host-side deadline of reset_delayed_members_to_default
    """

    def __init__(self, shell, registry, properties, reset_deadline_seconds: float = RESET_DEADLINE_SECONDS):
        self.shell = shell
        self.registry = registry
        self.properties = properties
        self.reset_deadline_seconds = reset_deadline_seconds
        self.logger = logging.getLogger("ReconfigurationEngine")

    def current_status(self) -> ClusterStatus:
        return self.shell.status(self.registry.first_working())

    # Provisioning

    def initiate(self, container, addresses: Sequence[SocketAddress]) -> MongoDbVersion:
        """
        Initiate the replica set and verify the server version

        Returns:
            Server version reported by the initiating member

        Raises:
            IncorrectUserInputError: If the server is older than the first supported version
        """
        command = commands.initiate(
            addresses,
            self.properties.working_node_number,
            self.properties.slave_delay_timeout
        )
        self.logger.debug(f"Initializing a {len(addresses)} node replica set: {command.script}")
        result = self.shell.submit(container, command)
        return verify_version(self.shell.parser.parse(result.stdout).version)

    def add_arbiter_on_start(self, primary, address: SocketAddress, version: MongoDbVersion) -> None:
        command = commands.add_arbiter_on_start(
            address,
            commands.requires_default_rw_concern(version, self.properties.add_arbiter)
        )
        result = self.shell.submit(primary, command)
        self.logger.debug(f"Add an arbiter node result: {result.stdout}")

    # Membership

    def add_member(self, primary, address: SocketAddress, is_working_node: bool) -> None:
        """
        Add a member, through the PSA-aware reconfiguration where the server requires it

        Args:
            primary: Container of the current primary
            address: Address of the member to add
            is_working_node: False for the arbiter
        """
        version = self.current_status().version
        path = commands.membership_path(version, self.properties.add_arbiter)
        if path is commands.MembershipPath.PSA_RECONFIG:
            self.logger.debug(f"Reconfiguring for PSA a node: {address}")
            command, target = commands.reconfigure_for_psa(address, is_working_node), self.registry.first_working()
        elif is_working_node:
            command, target = commands.add_working_member(address), primary
        else:
            command, target = commands.add_arbiter_member(address), primary
        result = self.shell.submit(target, command)
        self.logger.debug(f"Add a node: {address} to a replica set, stdout: {result.stdout}")

    def remove_member(self, primary, address: SocketAddress, force: bool = False) -> None:
        """
        Remove a member gracefully with rs.remove or by a forced configuration rewrite

        The forced form works without a majority, e.g. while the removed member is unreachable.
        """
        if force:
            command = commands.remove_members_forcibly(
                [_name(n) for n in self.current_status().members if _same_member(n, address)],
                "reconfiguring a replica set"
            )
        else:
            command = commands.remove_member(address)
        result = self.shell.submit(primary, command)
        self.logger.debug(f"Remove a node: {address} from a replica set, stdout {result.stdout}")

    def remove_down_and_unknown(self) -> None:
        """Forcibly drop every DOWN or UNKNOWN member so the rest can elect a primary"""
        members = self.current_status().members
        command = commands.remove_members_forcibly(
            [_name(n) for n in members if n.state in DEAD_STATES],
            "reconfiguring a replica set"
        )
        self.logger.debug(f"Reconfiguring a replica set as per: {command.script}")
        result = self.shell.submit(self.registry.first_working(), command)
        self.logger.debug(result.stdout)

    def reset_delayed_members_to_default(self, find_primary: Callable[[], object]) -> None:
        """
        Turn delayed members back into regular secondaries

        Bounded by a host-side deadline: the remote call is abandoned, not
        cancelled, when the deadline passes.

        Args:
            find_primary: Resolves the container of the current primary

        Raises:
            ReconfigurationTimeoutError: If the deadline passes first
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rs-reconfig")
        future = executor.submit(self._reset_delayed_members, find_primary)
        try:
            future.result(timeout=self.reset_deadline_seconds)
        except FutureTimeoutError as e:
            raise ReconfigurationTimeoutError(
                f"Timeout exceeded for resetting delayed members: {self.reset_deadline_seconds}s"
            ) from e
        finally:
            executor.shutdown(wait=False)

    def _reset_delayed_members(self, find_primary: Callable[[], object]) -> None:
        command = commands.reset_delayed_members(
            self.properties.working_node_number,
            len(self.current_status().members)
        )
        self.logger.debug(f"Reconfiguring a replica set as per: {command.script}")
        result = self.shell.submit(find_primary(), command)
        self.logger.debug(result.stdout)

    # Connections

    def operate_on_connections(self, members: List[Node], drop: bool) -> None:
        """Drop or re-enable outgoing connections of the first working member to the given members"""
        command = commands.drop_connections([_name(n) for n in members], drop)
        self.logger.debug(f"Dropping connections: {command.script}")
        result = self.shell.submit(self.registry.first_working(), command)
        self.logger.debug(result.stdout)


def _name(node: Node) -> str:
    return f"{node.ip}:{node.port}"


def _same_member(node: Node, address: SocketAddress) -> bool:
    return node.ip == address.ip and node.port == address.mapped_port
