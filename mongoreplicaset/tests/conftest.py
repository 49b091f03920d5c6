"""
Pytest configuration file

Adds the project root to the Python path so tests can import modules,
and provides in-memory replacements for Docker.
"""
import sys
import os

import pytest

# Add the project root to the path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from mongoreplicaset.config import (  # noqa: E402
    ENV_DOCKER_IMAGE_NAME,
    ENV_ENABLED,
    ENV_USE_HOST_DOCKER_INTERNAL,
    resolve_properties,
)
from mongoreplicaset.orchestrator import ReplicaSetLifecycle  # noqa: E402
from mongoreplicaset.tests.fakes import FakeDockerManager  # noqa: E402


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep process-level overrides of the developer machine out of the tests"""
    for name in (ENV_ENABLED, ENV_DOCKER_IMAGE_NAME, ENV_USE_HOST_DOCKER_INTERNAL):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_docker():
    return FakeDockerManager()


@pytest.fixture
def make_lifecycle(fake_docker):
    """Build a lifecycle over the fake runtime from keyword properties"""
    def _make(**kwargs):
        properties = resolve_properties(environ={}, **kwargs)
        return ReplicaSetLifecycle(properties, docker_manager=fake_docker)
    return _make


@pytest.fixture
def running_psa(make_lifecycle):
    """Started three member replica set with an arbiter"""
    lifecycle = make_lifecycle(replica_set_number=3, add_arbiter=True)
    lifecycle.start()
    return lifecycle
