"""
Tests for replica set value types
"""

import pytest

from ..models import ClusterStatus, MemberState, MongoDbVersion, Node, SocketAddress


class TestSocketAddress:
    """Test SocketAddress identity"""

    def test_equality_ignores_repl_set_port(self):
        a = SocketAddress(ip="dockerhost", repl_set_port=27017, mapped_port=33001)
        b = SocketAddress(ip="dockerhost", repl_set_port=33001, mapped_port=33001)

        assert a == b
        assert hash(a) == hash(b)
        assert {a: "node"}[b] == "node"

    def test_mapped_port_distinguishes(self):
        a = SocketAddress(ip="dockerhost", repl_set_port=33001, mapped_port=33001)
        b = SocketAddress(ip="dockerhost", repl_set_port=33001, mapped_port=33002)

        assert a != b

    def test_host_strings(self):
        address = SocketAddress(ip="localhost", repl_set_port=27017, mapped_port=33001)

        assert address.host == "localhost:27017"
        assert address.mapped_host == "localhost:33001"
        assert str(address) == "localhost:33001"

    def test_immutable(self):
        address = SocketAddress(ip="localhost", repl_set_port=27017, mapped_port=33001)

        with pytest.raises(AttributeError):
            address.ip = "dockerhost"


class TestMemberState:
    """Test MemberState lookup"""

    @pytest.mark.parametrize("value,state", [
        (0, MemberState.STARTUP),
        (1, MemberState.PRIMARY),
        (2, MemberState.SECONDARY),
        (7, MemberState.ARBITER),
        (8, MemberState.DOWN),
    ])
    def test_known_codes(self, value, state):
        assert MemberState.from_value(value) is state

    @pytest.mark.parametrize("value", [4, 10, -1])
    def test_unknown_codes(self, value):
        assert MemberState.from_value(value) is MemberState.NOT_RECOGNIZED


class TestMongoDbVersion:
    """Test MongoDbVersion parsing and ordering"""

    def test_parse_full(self):
        assert MongoDbVersion.parse("4.0.10") == MongoDbVersion(4, 0, 10)

    def test_parse_without_patch(self):
        assert MongoDbVersion.parse("4.2") == MongoDbVersion(4, 2, 0)

    def test_parse_rejects_single_part(self):
        with pytest.raises(ValueError):
            MongoDbVersion.parse("4")

    def test_ordering_is_component_wise(self):
        assert MongoDbVersion(3, 6, 13) < MongoDbVersion(3, 6, 14)
        assert MongoDbVersion(3, 10, 0) > MongoDbVersion(3, 6, 14)
        assert MongoDbVersion(4, 0, 0) > MongoDbVersion(3, 99, 99)

    def test_str(self):
        assert str(MongoDbVersion(5, 0, 3)) == "5.0.3"


class TestNode:
    """Test Node conversion"""

    def test_to_socket_address_discards_health_and_state(self):
        node = Node(ip="dockerhost", port=33002, health=0.0, state=MemberState.DOWN)

        address = node.to_socket_address()

        assert address == SocketAddress(ip="dockerhost", repl_set_port=33002, mapped_port=33002)
        assert address.repl_set_port == 33002

    def test_cluster_status_to_dict(self):
        status = ClusterStatus(
            status=1,
            version=MongoDbVersion(4, 0, 10),
            members=(Node("dockerhost", 33002, 1.0, MemberState.PRIMARY),)
        )

        assert status.to_dict() == {
            "status": 1,
            "version": "4.0.10",
            "members": [{"ip": "dockerhost", "port": 33002, "health": 1.0, "state": "PRIMARY"}],
        }
