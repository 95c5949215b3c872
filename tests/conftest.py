"""Shared pytest fixtures for all tests."""

import pytest

from common.constants import (
    ALLOWED_NAMESPACES_KEY,
    EXCLUDED_NAMESPACES_KEY,
    REPLICATED_FROM_KEY,
    REPLICATION_ALLOWED_KEY,
)
from common.types import ConfigMapSnapshot
from replicator.config import ReplicatorConfig
from replicator.context import ReplicatorContext
from replicator.convergence import ConvergenceEngine
from replicator.store.memory import InMemoryPartitionStore


def make_configmap(
    namespace="team1",
    name="app-config",
    data=None,
    enabled="true",
    allowed=None,
    excluded=None,
    annotations=None,
):
    """
    Build a source ConfigMap snapshot with replication annotations.

    Pass enabled=None to omit the replication-allowed annotation.
    """
    all_annotations = dict(annotations or {})
    if enabled is not None:
        all_annotations[REPLICATION_ALLOWED_KEY] = enabled
    if allowed is not None:
        all_annotations[ALLOWED_NAMESPACES_KEY] = allowed
    if excluded is not None:
        all_annotations[EXCLUDED_NAMESPACES_KEY] = excluded
    return ConfigMapSnapshot(
        namespace=namespace,
        name=name,
        data={"key": "value"} if data is None else data,
        annotations=all_annotations,
    )


def make_foreign(namespace, name="app-config", provenance=None, data=None):
    """Build a same-named ConfigMap that is not a replica of the test source."""
    annotations = {REPLICATED_FROM_KEY: provenance} if provenance else {}
    return ConfigMapSnapshot(
        namespace=namespace,
        name=name,
        data=data or {"owner": "someone-else"},
        annotations=annotations,
    )


@pytest.fixture
def namespaces():
    return {"team1", "team2", "kube-system"}


@pytest.fixture
def store(namespaces):
    """
    In-memory store with the three standard namespaces.
    """
    return InMemoryPartitionStore(namespaces)


@pytest.fixture
def config():
    """
    Default configuration with a short resync interval for dispatcher tests.
    """
    return ReplicatorConfig(reconciliation_interval="50ms", watch_retry_delay=0.01)


@pytest.fixture
def context(store, config):
    return ReplicatorContext(store=store, config=config)


@pytest.fixture
def engine(context):
    return ConvergenceEngine(context)
