"""
Configuration Module

Resolves replica set topology settings from keyword arguments, environment
variables, a YAML property file and defaults.
"""

from .properties import (
    ApplicationProperties,
    resolve_properties,
    load_file_properties,
    validate_input,
    MAX_VOTING_MEMBERS,
    REPLICA_SET_NUMBER_DEFAULT,
    AWAIT_NODE_INIT_ATTEMPTS,
    MONGO_DOCKER_IMAGE_DEFAULT,
    USE_HOST_DOCKER_INTERNAL_DEFAULT,
    ENV_ENABLED,
    ENV_DOCKER_IMAGE_NAME,
    ENV_USE_HOST_DOCKER_INTERNAL,
)

__all__ = [
    "ApplicationProperties",
    "resolve_properties",
    "load_file_properties",
    "validate_input",
    "MAX_VOTING_MEMBERS",
    "REPLICA_SET_NUMBER_DEFAULT",
    "AWAIT_NODE_INIT_ATTEMPTS",
    "MONGO_DOCKER_IMAGE_DEFAULT",
    "USE_HOST_DOCKER_INTERNAL_DEFAULT",
    "ENV_ENABLED",
    "ENV_DOCKER_IMAGE_NAME",
    "ENV_USE_HOST_DOCKER_INTERNAL",
]
