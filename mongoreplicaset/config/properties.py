"""
Replica Set Properties

Resolves the topology configuration once, at construction time, from:
1. explicit keyword arguments
2. process-level overrides (environment variables)
3. a YAML property file
4. hardcoded defaults

Example property file:

    mongoReplicaSetProperties:
      enabled: false
      mongoDockerImageName: mongo:4.4.4
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from ..exceptions import IncorrectUserInputError

logger = logging.getLogger("ReplicaSetProperties")

MAX_VOTING_MEMBERS = 7
REPLICA_SET_NUMBER_DEFAULT = 1
AWAIT_NODE_INIT_ATTEMPTS = 29
MONGO_DOCKER_IMAGE_DEFAULT = "mongo:4.0.10"
USE_HOST_DOCKER_INTERNAL_DEFAULT = False
ENABLED_DEFAULT = True

YML_FORMAT = "yml"
FILE_ROOT_KEY = "mongoReplicaSetProperties"

ENV_ENABLED = "MONGO_REPLICA_SET_ENABLED"
ENV_DOCKER_IMAGE_NAME = "MONGO_REPLICA_SET_DOCKER_IMAGE_NAME"
ENV_USE_HOST_DOCKER_INTERNAL = "MONGO_REPLICA_SET_USE_HOST_DOCKER_INTERNAL"


@dataclass(frozen=True)
class ApplicationProperties:
    """Resolved, immutable topology configuration"""
    replica_set_number: int = REPLICA_SET_NUMBER_DEFAULT
    await_node_init_attempts: int = AWAIT_NODE_INIT_ATTEMPTS
    mongo_docker_image_name: str = MONGO_DOCKER_IMAGE_DEFAULT
    enabled: bool = ENABLED_DEFAULT
    add_arbiter: bool = False
    add_toxiproxy: bool = False
    slave_delay_timeout: int = 0
    slave_delay_number: int = 0
    use_host_docker_internal: bool = USE_HOST_DOCKER_INTERNAL_DEFAULT
    command_line_options: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def working_node_number(self) -> int:
        """Voting members that are neither delayed nor hidden"""
        return self.replica_set_number + (1 if self.add_arbiter else 0) - self.slave_delay_number

    def to_dict(self) -> Dict[str, Any]:
        return {
            "replica_set_number": self.replica_set_number,
            "await_node_init_attempts": self.await_node_init_attempts,
            "mongo_docker_image_name": self.mongo_docker_image_name,
            "enabled": self.enabled,
            "add_arbiter": self.add_arbiter,
            "add_toxiproxy": self.add_toxiproxy,
            "slave_delay_timeout": self.slave_delay_timeout,
            "slave_delay_number": self.slave_delay_number,
            "use_host_docker_internal": self.use_host_docker_internal,
            "command_line_options": list(self.command_line_options),
        }


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _first_not_none(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def load_file_properties(property_file_name: Optional[str]) -> Dict[str, Any]:
    """
    Load the mongoReplicaSetProperties section of a YAML file

    Args:
        property_file_name: Path to a .yml file, or None

    Returns:
        Dict of file properties (empty when no file is given)

    Raises:
        IncorrectUserInputError: If the file is not a .yml file or does not exist
    """
    if property_file_name is None or not property_file_name.strip():
        return {}

    extension = property_file_name.rsplit(".", 1)[-1]
    if extension != YML_FORMAT:
        raise IncorrectUserInputError(
            f"Incorrect file format: {property_file_name} is not a {YML_FORMAT} file."
        )

    path = Path(property_file_name)
    if not path.is_file():
        raise IncorrectUserInputError(f"Cannot find a property file: {property_file_name}")

    with path.open("r", encoding="utf-8") as f:
        content = yaml.safe_load(f) or {}

    section = content.get(FILE_ROOT_KEY) or {}
    logger.debug(f"Loaded file properties from {property_file_name}: {section}")
    return section


def validate_input(
    replica_set_number: Optional[int],
    add_arbiter: Optional[bool],
    slave_delay_timeout: Optional[int],
    slave_delay_number: Optional[int]
) -> None:
    """
    Reject unsupported topologies before anything is started

    Raises:
        IncorrectUserInputError: On any invalid combination
    """
    if replica_set_number is not None and not 1 <= replica_set_number <= MAX_VOTING_MEMBERS:
        raise IncorrectUserInputError(
            f"Please, set replicaSetNumber more than 0 and less than or equal to {MAX_VOTING_MEMBERS}"
        )

    members = REPLICA_SET_NUMBER_DEFAULT if replica_set_number is None else replica_set_number

    if add_arbiter and members == 1:
        raise IncorrectUserInputError(
            "Adding an arbiter node is not supported for a single node replica set"
        )

    if slave_delay_timeout is not None and slave_delay_timeout > 0 and members == 1:
        raise IncorrectUserInputError(
            "Cannot create a replica set with delayed members having only one member"
        )

    if slave_delay_number is not None and slave_delay_number > members:
        raise IncorrectUserInputError(
            "Cannot create a replica set with delayed members because slaveDelayNumber>replicaSetNumber"
        )

    if slave_delay_number is not None and not slave_delay_timeout:
        raise IncorrectUserInputError("Please, specify slaveDelayTimeout")


def resolve_properties(
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
    environ: Optional[Mapping[str, str]] = None
) -> ApplicationProperties:
    """
    Merge every configuration source into ApplicationProperties

    Args:
        environ: Process-level overrides, os.environ by default

    Returns:
        ApplicationProperties

    Raises:
        IncorrectUserInputError: If the input describes an unsupported topology
    """
    validate_input(replica_set_number, add_arbiter, slave_delay_timeout, slave_delay_number)

    env = os.environ if environ is None else environ
    file_properties = load_file_properties(property_file_name)

    image = _first_not_none(
        mongo_docker_image_name,
        env.get(ENV_DOCKER_IMAGE_NAME),
        file_properties.get("mongoDockerImageName"),
        MONGO_DOCKER_IMAGE_DEFAULT
    )
    resolved_enabled = _parse_bool(_first_not_none(
        enabled,
        env.get(ENV_ENABLED),
        file_properties.get("enabled"),
        ENABLED_DEFAULT
    ))
    host_docker_internal = _parse_bool(_first_not_none(
        use_host_docker_internal,
        env.get(ENV_USE_HOST_DOCKER_INTERNAL),
        file_properties.get("useHostDockerInternal"),
        USE_HOST_DOCKER_INTERNAL_DEFAULT
    ))

    return ApplicationProperties(
        replica_set_number=_first_not_none(replica_set_number, REPLICA_SET_NUMBER_DEFAULT),
        await_node_init_attempts=_first_not_none(await_node_init_attempts, AWAIT_NODE_INIT_ATTEMPTS),
        mongo_docker_image_name=image,
        enabled=resolved_enabled,
        add_arbiter=bool(add_arbiter),
        add_toxiproxy=bool(add_toxiproxy),
        slave_delay_timeout=slave_delay_timeout or 0,
        slave_delay_number=slave_delay_number or 0,
        use_host_docker_internal=host_docker_internal,
        command_line_options=tuple(command_line_options or ()),
    )
