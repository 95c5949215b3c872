"""Abstract interface for the ConfigMap and namespace store."""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Set

from common.types import ConfigMapSnapshot
from replicator.events import WatchEvent


class PartitionStore(ABC):
    """
    Async CRUD, list and watch access to ConfigMaps across namespaces.

    Implementations raise ObjectNotFoundError, ObjectAlreadyExistsError and
    TransientStoreError from replicator.exceptions; nothing else is expected
    to escape a call.
    """

    @abstractmethod
    async def list_namespaces(self) -> Set[str]:
        """Return the names of all namespaces."""

    @abstractmethod
    async def list_configmaps(self, namespace: str = "") -> List[ConfigMapSnapshot]:
        """List ConfigMaps in one namespace, or in all namespaces when empty."""

    @abstractmethod
    def watch_configmaps(self, namespace: str = "") -> AsyncIterator[WatchEvent]:
        """
        Stream changes to ConfigMaps as Added, Updated and Deleted events.

        The stream may end or raise TransientStoreError at any time; callers
        re-subscribe.
        """

    @abstractmethod
    async def get_configmap(self, namespace: str, name: str) -> ConfigMapSnapshot:
        """Fetch one ConfigMap. Raises ObjectNotFoundError if absent."""

    @abstractmethod
    async def create_configmap(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        """Create a ConfigMap. Raises ObjectAlreadyExistsError if the name is taken."""

    @abstractmethod
    async def update_configmap(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        """Replace an existing ConfigMap. Raises ObjectNotFoundError if absent."""

    @abstractmethod
    async def delete_configmap(self, namespace: str, name: str) -> None:
        """Delete a ConfigMap. Raises ObjectNotFoundError if absent."""

    async def close(self) -> None:
        """Release connections held by the store."""
