"""
Tests for the mongo shell runner
"""

from unittest.mock import Mock

import pytest

from ..exceptions import MongoNodeInitializationError, ReconfigurationError
from ..models import SocketAddress
from ..orchestrator import commands
from ..orchestrator.docker_manager import ExecResult
from ..orchestrator.shell import MongoShell
from .fakes import SHELL_BANNER, ok_transcript, primary_transcript, status_transcript


@pytest.fixture
def docker():
    return Mock()


@pytest.fixture
def shell(docker):
    return MongoShell(docker)


class TestMongoShell:
    """Test MongoShell remote calls"""

    def test_status(self, shell, docker):
        docker.exec.return_value = ExecResult(0, status_transcript([("dockerhost:33002", 1)]))

        status = shell.status("node")

        docker.exec.assert_called_once_with("node", ["mongo", "--eval", "rs.status()"])
        assert status.members[0].port == 33002

    def test_submit_verifies_ok(self, shell, docker):
        docker.exec.return_value = ExecResult(0, ok_transcript(ok="0"))

        with pytest.raises(ReconfigurationError) as exc_info:
            shell.submit("node", commands.remove_member(SocketAddress("dockerhost", 33003, 33003)))

        assert exc_info.value.command == 'rs.remove("dockerhost:33003")'
        assert '"ok" : 0' in exc_info.value.output

    def test_submit_ignores_ok_when_not_required(self, shell, docker):
        docker.exec.return_value = ExecResult(0, ok_transcript(ok="0"))

        result = shell.submit("node", commands.add_arbiter_member(SocketAddress("dockerhost", 33005, 33005)))

        assert result.exit_code == 0

    def test_submit_fails_on_exit_code(self, shell, docker):
        docker.exec.return_value = ExecResult(1, "uncaught exception")

        with pytest.raises(ReconfigurationError, match="adding a node"):
            shell.submit("node", commands.add_arbiter_member(SocketAddress("dockerhost", 33005, 33005)))

    def test_check_exit_code_and_status(self, shell):
        shell.check_exit_code_and_status(ExecResult(0, ok_transcript()), "doing a thing")

        with pytest.raises(MongoNodeInitializationError, match="Error occurred while doing a thing"):
            shell.check_exit_code_and_status(ExecResult(0, ok_transcript(ok="0")), "doing a thing")


class TestWait:
    """Test wait loops and exhaustion"""

    def test_success(self, shell, docker):
        docker.exec.return_value = ExecResult(0, SHELL_BANNER.format(version="4.0.10"))

        shell.wait("node", commands.any_primary(), 3)

        argv = docker.exec.call_args[0][1]
        assert "if (attempt > 3)" in argv[2]

    def test_exhaustion_includes_status_dump(self, shell, docker):
        dump = status_transcript([("dockerhost:33002", 8), ("dockerhost:33003", 2)])
        docker.exec.side_effect = [ExecResult(99, ""), ExecResult(0, dump)]

        with pytest.raises(MongoNodeInitializationError) as exc_info:
            shell.wait("node", commands.any_primary(), 3)

        assert "was not reached in a set timeout: 3 attempts" in str(exc_info.value)
        assert "dockerhost:33003" in str(exc_info.value)

    def test_other_failure(self, shell, docker):
        docker.exec.return_value = ExecResult(1, "Error: network error while attempting to run command")

        with pytest.raises(MongoNodeInitializationError, match="network error"):
            shell.wait("node", commands.all_nodes_up(), 3)
        assert docker.exec.call_count == 1


class TestFindPrimary:
    """Test find_primary_address"""

    def test_parses_last_line(self, shell, docker):
        docker.exec.return_value = ExecResult(0, primary_transcript("dockerhost:33004"))

        address = shell.find_primary_address("node", 5)

        assert address == SocketAddress("dockerhost", 33004, 33004)
        assert address.repl_set_port == 33004

    def test_exhausted(self, shell, docker):
        docker.exec.side_effect = [
            ExecResult(99, ""),
            ExecResult(0, status_transcript([("dockerhost:33002", 2)])),
        ]

        with pytest.raises(MongoNodeInitializationError, match="a single master node"):
            shell.find_primary_address("node", 5)

    def test_unparseable_reply(self, shell, docker):
        docker.exec.return_value = ExecResult(0, SHELL_BANNER.format(version="4.0.10") + "undefined\n")

        with pytest.raises(MongoNodeInitializationError, match="Cannot find an address"):
            shell.find_primary_address("node", 5)
