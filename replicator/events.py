"""
Watch event variants.

A change observed on a ConfigMap is exactly one of Added, Updated or Deleted.
Consumers match on the concrete class; anything else is a programming error.
"""

from dataclasses import dataclass
from typing import Union

from common.types import ConfigMapSnapshot, ObjectRef


@dataclass(frozen=True, eq=False)
class Added:
    """A ConfigMap appeared, or is being re-announced by a resync pass."""
    obj: ConfigMapSnapshot
    resync: bool = False

    @property
    def ref(self) -> ObjectRef:
        return self.obj.ref


@dataclass(frozen=True, eq=False)
class Updated:
    """A ConfigMap changed. before and after are distinct snapshots."""
    before: ConfigMapSnapshot
    after: ConfigMapSnapshot

    def __post_init__(self):
        if self.before is self.after:
            raise ValueError("Updated event requires distinct before and after snapshots")

    @property
    def ref(self) -> ObjectRef:
        return self.after.ref


@dataclass(frozen=True, eq=False)
class Deleted:
    """A ConfigMap was removed. obj is its last known state."""
    obj: ConfigMapSnapshot

    @property
    def ref(self) -> ObjectRef:
        return self.obj.ref


WatchEvent = Union[Added, Updated, Deleted]


def describe(event: WatchEvent) -> str:
    """Short human-readable label for log lines."""
    match event:
        case Added(resync=True):
            return f"resync {event.ref}"
        case Added():
            return f"added {event.ref}"
        case Updated():
            return f"updated {event.ref}"
        case Deleted():
            return f"deleted {event.ref}"
        case _:
            raise TypeError(f"Unknown watch event type: {type(event).__name__}")
