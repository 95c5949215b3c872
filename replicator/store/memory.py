"""In-memory PartitionStore used by tests and local dry runs."""

import asyncio
import itertools
from typing import AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

from common.logging_config import get_logger
from common.types import ConfigMapSnapshot
from replicator.events import Added, Deleted, Updated, WatchEvent
from replicator.exceptions import ObjectAlreadyExistsError, ObjectNotFoundError
from replicator.store.base import PartitionStore

logger = get_logger(__name__)

_CLOSED = object()


class InMemoryPartitionStore(PartitionStore):
    """
    Dictionary-backed store with watch fan-out.

    Every create, update and delete issued through the PartitionStore API is
    recorded in `mutations` as (operation, namespace, name). Changes made by
    external actors go through seed() and remove(), which emit watch events
    but are not recorded. Errors can be injected per (operation, namespace)
    with fail().
    """

    def __init__(self, namespaces: Iterable[str] = ()):
        self.namespaces: Set[str] = set(namespaces)
        self.objects: Dict[Tuple[str, str], ConfigMapSnapshot] = {}
        self.mutations: List[Tuple[str, str, str]] = []
        self._failures: Dict[Tuple[str, str], Exception] = {}
        self._watchers: List[asyncio.Queue] = []
        self._versions = itertools.count(1)

    def fail(self, operation: str, namespace: str, error: Exception) -> None:
        """Make every `operation` call against `namespace` raise `error`."""
        self._failures[(operation, namespace)] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def _check_failure(self, operation: str, namespace: str) -> None:
        error = self._failures.get((operation, namespace)) or self._failures.get((operation, "*"))
        if error is not None:
            raise error

    def _stamp(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        return obj.with_changes(resource_version=str(next(self._versions)))

    def _emit(self, event: WatchEvent, namespace: str) -> None:
        for queue, watched_namespace in list(self._watchers):
            if not watched_namespace or watched_namespace == namespace:
                queue.put_nowait(event)

    def _store(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        key = (obj.namespace, obj.name)
        before = self.objects.get(key)
        stored = self._stamp(obj)
        self.objects[key] = stored
        self.namespaces.add(obj.namespace)
        if before is None:
            self._emit(Added(stored), obj.namespace)
        else:
            self._emit(Updated(before, stored), obj.namespace)
        return stored

    def _drop(self, namespace: str, name: str) -> ConfigMapSnapshot:
        removed = self.objects.pop((namespace, name))
        self._emit(Deleted(removed), namespace)
        return removed

    def seed(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        """Create or replace an object as an external actor would."""
        return self._store(obj)

    def remove(self, namespace: str, name: str) -> ConfigMapSnapshot:
        """Delete an object as an external actor would."""
        return self._drop(namespace, name)

    def lookup(self, namespace: str, name: str) -> Optional[ConfigMapSnapshot]:
        return self.objects.get((namespace, name))

    async def wait_for_watchers(self, count: int = 1) -> None:
        """Block until at least `count` watch streams are subscribed."""
        while len(self._watchers) < count:
            await asyncio.sleep(0)

    def close_watches(self) -> None:
        """End every open watch stream."""
        for queue, _ in self._watchers:
            queue.put_nowait(_CLOSED)

    async def list_namespaces(self) -> Set[str]:
        self._check_failure("list_namespaces", "*")
        return set(self.namespaces)

    async def list_configmaps(self, namespace: str = "") -> List[ConfigMapSnapshot]:
        self._check_failure("list_configmaps", namespace or "*")
        return [
            obj for (obj_namespace, _), obj in sorted(self.objects.items())
            if not namespace or obj_namespace == namespace
        ]

    async def watch_configmaps(self, namespace: str = "") -> AsyncIterator[WatchEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        entry = (queue, namespace)
        self._watchers.append(entry)
        try:
            while True:
                event = await queue.get()
                if event is _CLOSED:
                    return
                yield event
        finally:
            self._watchers.remove(entry)

    async def get_configmap(self, namespace: str, name: str) -> ConfigMapSnapshot:
        self._check_failure("get", namespace)
        obj = self.objects.get((namespace, name))
        if obj is None:
            raise ObjectNotFoundError(f"ConfigMap {namespace}/{name} not found")
        return obj

    async def create_configmap(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        self._check_failure("create", obj.namespace)
        if (obj.namespace, obj.name) in self.objects:
            raise ObjectAlreadyExistsError(f"ConfigMap {obj.ref} already exists")
        self.mutations.append(("create", obj.namespace, obj.name))
        return self._store(obj)

    async def update_configmap(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        self._check_failure("update", obj.namespace)
        if (obj.namespace, obj.name) not in self.objects:
            raise ObjectNotFoundError(f"ConfigMap {obj.ref} not found")
        self.mutations.append(("update", obj.namespace, obj.name))
        return self._store(obj)

    async def delete_configmap(self, namespace: str, name: str) -> None:
        self._check_failure("delete", namespace)
        if (namespace, name) not in self.objects:
            raise ObjectNotFoundError(f"ConfigMap {namespace}/{name} not found")
        self.mutations.append(("delete", namespace, name))
        self._drop(namespace, name)
