"""Shared data type definitions (ConfigMap snapshots and object references)."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


def _freeze(mapping: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ObjectRef:
    """
    Identity of a ConfigMap inside the cluster.
    """
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ConfigMapSnapshot:
    """
    Immutable point-in-time copy of a ConfigMap.

    Mappings are wrapped read-only so a snapshot handed to several
    concurrent tasks can never be mutated by one of them.
    """
    namespace: str
    name: str
    data: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)
    labels: Mapping[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "data", _freeze(self.data))
        object.__setattr__(self, "annotations", _freeze(self.annotations))
        object.__setattr__(self, "labels", _freeze(self.labels))

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef(self.namespace, self.name)

    def with_changes(self, **changes: Any) -> "ConfigMapSnapshot":
        """Return a copy with the given fields replaced."""
        values = {
            "namespace": self.namespace,
            "name": self.name,
            "data": self.data,
            "annotations": self.annotations,
            "labels": self.labels,
            "resource_version": self.resource_version,
        }
        values.update(changes)
        return ConfigMapSnapshot(**values)

    def to_manifest(self) -> Dict[str, Any]:
        """Serialize to a Kubernetes ConfigMap manifest."""
        metadata: Dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
        }
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": metadata,
            "data": dict(self.data),
        }

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any]) -> "ConfigMapSnapshot":
        """Build a snapshot from a Kubernetes ConfigMap manifest."""
        metadata = manifest.get("metadata") or {}
        return cls(
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            data=manifest.get("data") or {},
            annotations=metadata.get("annotations") or {},
            labels=metadata.get("labels") or {},
            resource_version=metadata.get("resourceVersion"),
        )
