"""Target namespace resolution."""

from typing import FrozenSet, Iterable

from common.logging_config import get_logger
from replicator.policy import ReplicationPolicy

logger = get_logger(__name__)


def needs_namespace_listing(policy: ReplicationPolicy) -> bool:
    """Whether resolving targets for this policy requires the live namespace list."""
    return policy.enabled and not policy.explicit


def resolve_targets(
    policy: ReplicationPolicy,
    source_namespace: str,
    all_namespaces: Iterable[str] = (),
) -> FrozenSet[str]:
    """
    Compute the namespaces a ConfigMap should be replicated to.

    With an allow-list the targets are exactly that list; the deny-list is
    not consulted and the namespaces need not currently exist. Without one,
    every known namespace except the excluded ones is a target. The source
    namespace is never a target.

    Args:
        policy: Valid replication policy
        source_namespace: Namespace of the source ConfigMap
        all_namespaces: Live namespace names (ignored in allow-list mode)

    Returns:
        Set of target namespace names
    """
    if not policy.enabled:
        return frozenset()

    if policy.explicit:
        return policy.allowed_namespaces - {source_namespace}

    targets = set()
    for namespace in all_namespaces:
        if namespace == source_namespace:
            continue
        if namespace in policy.excluded_namespaces:
            logger.debug(f"Namespace {namespace} is excluded; skipping")
            continue
        targets.add(namespace)
    return frozenset(targets)
