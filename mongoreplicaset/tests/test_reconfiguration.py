"""
Tests for membership changes on a running replica set
"""

import threading
from unittest.mock import Mock

import pytest

from ..config import ApplicationProperties
from ..exceptions import IncorrectUserInputError, ReconfigurationTimeoutError
from ..models import ClusterStatus, MemberState, MongoDbVersion, Node, SocketAddress
from ..orchestrator.docker_manager import ExecResult
from ..orchestrator.reconfiguration import ReconfigurationEngine
from ..status import StatusParser
from .fakes import ok_transcript


def node(port, state):
    return Node(ip="dockerhost", port=port, health=0.0 if state is MemberState.DOWN else 1.0, state=state)


def cluster(version, *members):
    return ClusterStatus(status=1, version=MongoDbVersion.parse(version), members=tuple(members))


@pytest.fixture
def shell():
    shell = Mock()
    shell.parser = StatusParser()
    shell.submit.return_value = ExecResult(0, ok_transcript())
    shell.status.return_value = cluster(
        "4.0.10",
        node(33002, MemberState.PRIMARY),
        node(33003, MemberState.DOWN),
        node(33004, MemberState.UNKNOWN),
    )
    return shell


@pytest.fixture
def registry():
    registry = Mock()
    registry.first_working.return_value = "first"
    return registry


def make_engine(shell, registry, **kwargs):
    return ReconfigurationEngine(shell, registry, ApplicationProperties(**kwargs))


class TestInitiate:
    """Test initiation and the version gate"""

    def test_returns_version(self, shell, registry):
        engine = make_engine(shell, registry, replica_set_number=3)

        version = engine.initiate("first", [SocketAddress("dockerhost", 33002, 33002)])

        assert version == MongoDbVersion(4, 0, 10)

    def test_rejects_old_server(self, shell, registry):
        shell.submit.return_value = ExecResult(0, ok_transcript(version="3.6.13"))
        engine = make_engine(shell, registry, replica_set_number=3)

        with pytest.raises(IncorrectUserInputError):
            engine.initiate("first", [SocketAddress("dockerhost", 33002, 33002)])


class TestAddMember:
    """Test the membership path selection"""

    def test_plain_add_on_primary(self, shell, registry):
        engine = make_engine(shell, registry, replica_set_number=3)

        engine.add_member("primary", SocketAddress("dockerhost", 33006, 33006), is_working_node=True)

        target, command = shell.submit.call_args[0]
        assert target == "primary"
        assert command.script == 'rs.add("dockerhost:33006")'

    def test_plain_add_arbiter(self, shell, registry):
        engine = make_engine(shell, registry, replica_set_number=3, add_arbiter=True)

        engine.add_member("primary", SocketAddress("dockerhost", 33006, 33006), is_working_node=False)

        assert shell.submit.call_args[0][1].script == 'rs.addArb("dockerhost:33006")'

    def test_psa_reconfig_on_new_servers(self, shell, registry):
        shell.status.return_value = cluster("5.0.3", node(33002, MemberState.PRIMARY))
        engine = make_engine(shell, registry, replica_set_number=3, add_arbiter=True)

        engine.add_member("primary", SocketAddress("dockerhost", 33006, 33006), is_working_node=True)

        target, command = shell.submit.call_args[0]
        assert target == "first"
        assert "rs.reconfigForPSASet" in command.script
        assert '"arbiterOnly": false' in command.script


class TestRemoveMember:
    """Test graceful and forced removal"""

    def test_graceful(self, shell, registry):
        engine = make_engine(shell, registry, replica_set_number=3)

        engine.remove_member("primary", SocketAddress("dockerhost", 33003, 33003))

        assert shell.submit.call_args[0][1].script == 'rs.remove("dockerhost:33003")'

    def test_forced_uses_host_names(self, shell, registry):
        engine = make_engine(shell, registry, replica_set_number=3)

        engine.remove_member("primary", SocketAddress("dockerhost", 33003, 33003), force=True)

        script = shell.submit.call_args[0][1].script
        assert '["dockerhost:33003"].indexOf(m.host)' in script
        assert "force : true" in script

    def test_remove_down_and_unknown(self, shell, registry):
        engine = make_engine(shell, registry, replica_set_number=3)

        engine.remove_down_and_unknown()

        target, command = shell.submit.call_args[0]
        assert target == "first"
        assert '["dockerhost:33003", "dockerhost:33004"]' in command.script


class TestResetDelayedMembers:
    """Test the bounded reset of delayed members"""

    def test_resets_members_past_working_number(self, shell, registry):
        engine = make_engine(
            shell, registry, replica_set_number=3, slave_delay_timeout=5000, slave_delay_number=1
        )

        engine.reset_delayed_members_to_default(lambda: "primary")

        target, command = shell.submit.call_args[0]
        assert target == "primary"
        assert "cfg.members[2].slaveDelay=0" in command.script

    def test_deadline(self, shell, registry):
        release = threading.Event()
        shell.submit.side_effect = lambda *args: release.wait(5)
        engine = ReconfigurationEngine(
            shell, registry,
            ApplicationProperties(replica_set_number=3, slave_delay_timeout=5000, slave_delay_number=1),
            reset_deadline_seconds=0.1
        )

        try:
            with pytest.raises(ReconfigurationTimeoutError):
                engine.reset_delayed_members_to_default(lambda: "primary")
        finally:
            release.set()

    def test_remote_failure_propagates(self, shell, registry):
        shell.submit.side_effect = RuntimeError("boom")
        engine = make_engine(shell, registry, replica_set_number=3, slave_delay_timeout=5000, slave_delay_number=1)

        with pytest.raises(RuntimeError, match="boom"):
            engine.reset_delayed_members_to_default(lambda: "primary")


class TestConnections:
    """Test dropConnections"""

    def test_enable(self, shell, registry):
        engine = make_engine(shell, registry, replica_set_number=3)

        engine.operate_on_connections([node(33003, MemberState.SECONDARY)], drop=False)

        assert '"dropConnections" : 0' in shell.submit.call_args[0][1].script
