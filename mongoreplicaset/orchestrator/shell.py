"""
Mongo Shell - runs remote commands inside node containers and checks replies
"""

import logging
from typing import Optional

from ..exceptions import MongoNodeInitializationError, ReconfigurationError
from ..models import ClusterStatus, SocketAddress
from ..status import StatusParser
from . import commands
from .commands import RemoteCommand, WaitCondition, WAIT_EXHAUSTED_EXIT_CODE
from .docker_manager import ExecResult

CONTAINER_EXIT_CODE_OK = 0


class MongoShell:
    """
    Executes `mongo --eval` in a container, one blocking round trip per call
    """

    def __init__(self, docker_manager, parser: Optional[StatusParser] = None):
        self.docker_manager = docker_manager
        self.parser = parser or StatusParser()
        self.logger = logging.getLogger("MongoShell")

    def execute(self, container, command: RemoteCommand) -> ExecResult:
        self.logger.debug(f"Executing {command.description}: {command.script}")
        result = self.docker_manager.exec(container, command.argv())
        self.logger.debug(f"Exit code {result.exit_code}, stdout: {result.stdout}")
        return result

    def raw_status(self, container) -> str:
        return self.execute(container, commands.status()).stdout

    def status(self, container) -> ClusterStatus:
        """Fresh rs.status() snapshot of the given member"""
        return self.parser.parse(self.raw_status(container))

    def check_exit_code(self, result: ExecResult, description: str) -> None:
        if result.exit_code != CONTAINER_EXIT_CODE_OK:
            message = f"Error occurred while {description}: {result.stdout}"
            self.logger.error(message)
            raise MongoNodeInitializationError(message)

    def check_exit_code_and_status(self, result: ExecResult, description: str) -> None:
        self.check_exit_code(result, description)
        if self.parser.parse(result.stdout).status != 1:
            message = f"Error occurred while {description}: {result.stdout}"
            self.logger.error(message)
            raise MongoNodeInitializationError(message)

    def submit(self, container, command: RemoteCommand) -> ExecResult:
        """
        Execute a membership command and verify its reply

        Raises:
            ReconfigurationError: If the exit code, or the ok status where the
                command requires it, is not successful
        """
        result = self.execute(container, command)
        failed = result.exit_code != CONTAINER_EXIT_CODE_OK
        if not failed and command.verify_status:
            failed = self.parser.parse(result.stdout).status != 1
        if failed:
            self.logger.error(f"Error occurred while {command.description}: {result.stdout}")
            raise ReconfigurationError(
                f"Error occurred while {command.description}", command.script, result.stdout
            )
        return result

    def wait(self, container, condition: WaitCondition, attempts: int) -> ExecResult:
        """
        Block until the condition clears inside the shell loop

        Raises:
            MongoNodeInitializationError: With the member's status dump when the
                attempt budget is exhausted, or with the output on any other failure
        """
        result = self.execute(container, commands.wait(condition, attempts))
        if result.exit_code == WAIT_EXHAUSTED_EXIT_CODE:
            self._raise_exhausted(container, condition.label, attempts * condition.attempts_factor)
        self.check_exit_code(result, condition.label)
        return result

    def find_primary_address(self, container, attempts: int) -> SocketAddress:
        """
        Address of the single primary as named by the replica set

        The configured port is used as both the replica set and the mapped port.
        """
        result = self.execute(container, commands.find_primary(attempts))
        if result.exit_code == WAIT_EXHAUSTED_EXIT_CODE:
            self._raise_exhausted(container, "a single master node", attempts)
        self.check_exit_code(result, "finding a master node")

        payload = self.parser.extract_raw_payload(result.stdout)
        ip, sep, port = (payload or "").rpartition(":")
        if not sep or not ip or not port.isdigit():
            raise MongoNodeInitializationError(
                f"Cannot find an address in a MongoDb reply:\n {result.stdout}"
            )
        address = SocketAddress(ip=ip, repl_set_port=int(port), mapped_port=int(port))
        self.logger.debug(f"Found the master elected: {address}")
        return address

    def _raise_exhausted(self, container, label: str, attempts: int) -> None:
        message = (
            f"{label} was not reached in a set timeout: {attempts} attempts. "
            f"Replica set status: {self.raw_status(container)}"
        )
        self.logger.error(message)
        raise MongoNodeInitializationError(message)
