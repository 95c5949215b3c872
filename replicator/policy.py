"""Replication policy resolution from ConfigMap annotations."""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from common.constants import (
    ALLOWED_NAMESPACES_KEY,
    EXCLUDED_NAMESPACES_KEY,
    NAMESPACE_LIST_SEPARATOR,
    PROVENANCE_SEPARATOR,
    REPLICATED_FROM_KEY,
    REPLICATION_ALLOWED_KEY,
)
from common.types import ConfigMapSnapshot
from replicator.exceptions import PolicyError

_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass(frozen=True)
class ReplicationPolicy:
    """
    Replication settings for one ConfigMap, derived from its annotations.
    Never cached: resolve again on every event.

    explicit is True when an allow-list decides the targets on its own. It
    stays True when a default allow-list was emptied by the annotated
    deny-list, so such a policy targets nothing.
    """
    enabled: bool
    allowed_namespaces: FrozenSet[str] = frozenset()
    excluded_namespaces: FrozenSet[str] = frozenset()
    explicit: bool = False

    def __post_init__(self):
        if self.allowed_namespaces and not self.explicit:
            object.__setattr__(self, "explicit", True)


DISABLED = ReplicationPolicy(enabled=False)


def parse_bool(value: Optional[str]) -> Optional[bool]:
    """Parse a boolean annotation value; None when absent or unrecognised."""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def split_namespaces(value: str) -> FrozenSet[str]:
    """
    Split a comma-separated annotation into namespace names.

    Segments are taken verbatim (no whitespace trimming); empty segments
    from stray or trailing commas are dropped.
    """
    return frozenset(part for part in value.split(NAMESPACE_LIST_SEPARATOR) if part)


def provenance_value(source: ConfigMapSnapshot) -> str:
    """Provenance annotation value identifying a source ConfigMap."""
    return f"{source.namespace}{PROVENANCE_SEPARATOR}{source.name}"


def provenance_of(obj: ConfigMapSnapshot) -> Optional[str]:
    """Provenance recorded on an object, or None if it is not a replica."""
    return obj.annotations.get(REPLICATED_FROM_KEY)


def is_replica(obj: ConfigMapSnapshot) -> bool:
    return REPLICATED_FROM_KEY in obj.annotations


def is_owned_by(obj: ConfigMapSnapshot, source: ConfigMapSnapshot) -> bool:
    """True only when obj carries provenance naming exactly this source."""
    return provenance_of(obj) == provenance_value(source)


def resolve_policy(
    obj: ConfigMapSnapshot,
    default_allowed: Iterable[str] = (),
    default_excluded: Iterable[str] = (),
) -> ReplicationPolicy:
    """
    Resolve the replication policy of a ConfigMap.

    Missing or unparsable replication-allowed flag disables replication.
    A namespace list annotation that is present replaces the matching
    startup default; an absent one falls back to it, minus any namespace
    the other annotated list names, so the two lists never overlap.

    Args:
        obj: Source ConfigMap snapshot
        default_allowed: Startup default allow-list
        default_excluded: Startup default deny-list

    Returns:
        Resolved policy

    Raises:
        PolicyError: If the annotated allow and deny lists overlap
    """
    annotations = obj.annotations

    if not parse_bool(annotations.get(REPLICATION_ALLOWED_KEY)):
        return DISABLED

    raw_allowed = annotations.get(ALLOWED_NAMESPACES_KEY)
    raw_excluded = annotations.get(EXCLUDED_NAMESPACES_KEY)

    annotated_allowed = split_namespaces(raw_allowed) if raw_allowed is not None else frozenset()
    annotated_excluded = split_namespaces(raw_excluded) if raw_excluded is not None else frozenset()

    overlap = annotated_allowed & annotated_excluded
    if overlap:
        raise PolicyError(str(obj.ref), overlap)

    # annotations outrank defaults: a defaulted list loses whatever the other annotation names
    if raw_allowed is not None:
        allowed = annotated_allowed
        explicit = bool(annotated_allowed)
    else:
        allowed = frozenset(default_allowed) - annotated_excluded
        explicit = bool(frozenset(default_allowed))

    if raw_excluded is not None:
        excluded = annotated_excluded
    else:
        excluded = frozenset(default_excluded) - annotated_allowed

    return ReplicationPolicy(
        enabled=True,
        allowed_namespaces=allowed,
        excluded_namespaces=excluded,
        explicit=explicit,
    )
