"""
Tests for configuration resolution and input validation
"""

import pytest

from ..config import (
    ApplicationProperties,
    ENV_DOCKER_IMAGE_NAME,
    ENV_ENABLED,
    ENV_USE_HOST_DOCKER_INTERNAL,
    load_file_properties,
    resolve_properties,
    validate_input,
)
from ..exceptions import IncorrectUserInputError


@pytest.fixture
def property_file(tmp_path):
    path = tmp_path / "replica-set.yml"
    path.write_text(
        "mongoReplicaSetProperties:\n"
        "  enabled: false\n"
        "  mongoDockerImageName: mongo:4.2.8\n"
        "  useHostDockerInternal: true\n"
    )
    return str(path)


class TestValidateInput:
    """Test topology validation"""

    @pytest.mark.parametrize("number", [0, 8, -1])
    def test_replica_set_number_out_of_range(self, number):
        with pytest.raises(IncorrectUserInputError):
            validate_input(number, None, None, None)

    def test_arbiter_with_single_node(self):
        with pytest.raises(IncorrectUserInputError, match="arbiter"):
            validate_input(1, True, None, None)

    def test_arbiter_with_default_member_count(self):
        with pytest.raises(IncorrectUserInputError, match="arbiter"):
            validate_input(None, True, None, None)

    def test_delay_with_default_member_count(self):
        with pytest.raises(IncorrectUserInputError, match="only one member"):
            validate_input(None, None, 5000, None)

    def test_delay_with_single_node(self):
        with pytest.raises(IncorrectUserInputError):
            validate_input(1, None, 5000, None)

    def test_more_delayed_members_than_members(self):
        with pytest.raises(IncorrectUserInputError, match="slaveDelayNumber"):
            validate_input(3, None, 5000, 4)

    def test_delay_number_without_timeout(self):
        with pytest.raises(IncorrectUserInputError, match="slaveDelayTimeout"):
            validate_input(3, None, None, 1)

    @pytest.mark.parametrize("args", [
        (None, None, None, None),
        (1, False, None, None),
        (3, True, None, None),
        (7, False, 5000, 2),
    ])
    def test_valid_topologies(self, args):
        validate_input(*args)


class TestLoadFileProperties:
    """Test YAML property files"""

    def test_no_file(self):
        assert load_file_properties(None) == {}
        assert load_file_properties("  ") == {}

    def test_reads_section(self, property_file):
        section = load_file_properties(property_file)

        assert section["enabled"] is False
        assert section["mongoDockerImageName"] == "mongo:4.2.8"

    def test_wrong_extension(self, tmp_path):
        path = tmp_path / "replica-set.yaml"
        path.write_text("mongoReplicaSetProperties: {}\n")

        with pytest.raises(IncorrectUserInputError, match="Incorrect file format"):
            load_file_properties(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(IncorrectUserInputError, match="Cannot find"):
            load_file_properties(str(tmp_path / "absent.yml"))

    def test_file_without_section(self, tmp_path):
        path = tmp_path / "other.yml"
        path.write_text("somethingElse:\n  enabled: false\n")

        assert load_file_properties(str(path)) == {}


class TestResolveProperties:
    """Test precedence of configuration sources"""

    def test_defaults(self):
        props = resolve_properties(environ={})

        assert props == ApplicationProperties()
        assert props.replica_set_number == 1
        assert props.await_node_init_attempts == 29
        assert props.mongo_docker_image_name == "mongo:4.0.10"
        assert props.enabled is True
        assert props.use_host_docker_internal is False

    def test_file_overrides_defaults(self, property_file):
        props = resolve_properties(property_file_name=property_file, environ={})

        assert props.enabled is False
        assert props.mongo_docker_image_name == "mongo:4.2.8"
        assert props.use_host_docker_internal is True

    def test_environment_overrides_file(self, property_file):
        environ = {
            ENV_ENABLED: "true",
            ENV_DOCKER_IMAGE_NAME: "mongo:4.4.4",
            ENV_USE_HOST_DOCKER_INTERNAL: "false",
        }

        props = resolve_properties(property_file_name=property_file, environ=environ)

        assert props.enabled is True
        assert props.mongo_docker_image_name == "mongo:4.4.4"
        assert props.use_host_docker_internal is False

    def test_explicit_arguments_win(self, property_file):
        props = resolve_properties(
            property_file_name=property_file,
            mongo_docker_image_name="mongo:5.0.3",
            enabled=True,
            environ={ENV_DOCKER_IMAGE_NAME: "mongo:4.4.4", ENV_ENABLED: "false"}
        )

        assert props.mongo_docker_image_name == "mongo:5.0.3"
        assert props.enabled is True

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv(ENV_ENABLED, "false")

        assert resolve_properties().enabled is False

    def test_validation_runs_first(self, property_file):
        with pytest.raises(IncorrectUserInputError):
            resolve_properties(replica_set_number=9, property_file_name=property_file, environ={})

    def test_command_line_options_are_frozen(self):
        options = ["--oplogSize", "50"]

        props = resolve_properties(command_line_options=options, environ={})
        options.append("--quiet")

        assert props.command_line_options == ("--oplogSize", "50")


class TestApplicationProperties:
    """Test derived values"""

    @pytest.mark.parametrize("kwargs,expected", [
        ({"replica_set_number": 3}, 3),
        ({"replica_set_number": 3, "add_arbiter": True}, 4),
        ({"replica_set_number": 5, "slave_delay_timeout": 5000, "slave_delay_number": 2}, 3),
        ({"replica_set_number": 3, "add_arbiter": True, "slave_delay_timeout": 5000,
          "slave_delay_number": 1}, 3),
    ])
    def test_working_node_number(self, kwargs, expected):
        assert ApplicationProperties(**kwargs).working_node_number == expected

    def test_to_dict(self):
        props = ApplicationProperties(replica_set_number=3, command_line_options=("--quiet",))

        data = props.to_dict()

        assert data["replica_set_number"] == 3
        assert data["command_line_options"] == ["--quiet"]
