"""PartitionStore backed by the Kubernetes API server over HTTP."""

import json
import os
import ssl
import time
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set, Tuple, Union

import httpx

from common.constants import (
    KUBERNETES_REQUEST_TIMEOUT_SECONDS,
    SERVICE_ACCOUNT_DIR,
    TOKEN_REFRESH_INTERVAL_SECONDS,
)
from common.logging_config import get_logger
from common.types import ConfigMapSnapshot
from replicator.events import Added, Deleted, Updated, WatchEvent
from replicator.exceptions import (
    ConfigurationError,
    ObjectAlreadyExistsError,
    ObjectNotFoundError,
    TransientStoreError,
)
from replicator.store.base import PartitionStore

logger = get_logger(__name__)

WATCH_TIMEOUT_SECONDS = 300

_Key = Tuple[str, str]


def _configmaps_path(namespace: str = "") -> str:
    if namespace:
        return f"/api/v1/namespaces/{namespace}/configmaps"
    return "/api/v1/configmaps"


class ServiceAccountTokenAuth(httpx.Auth):
    """
    Bearer auth that re-reads a projected service account token from disk.

    The kubelet rotates the token file in place, so the cached value is
    refreshed every refresh_interval seconds and again after any 401.
    """

    def __init__(self, token_path: Union[str, Path], refresh_interval: float = TOKEN_REFRESH_INTERVAL_SECONDS):
        self.token_path = Path(token_path)
        self.refresh_interval = refresh_interval
        self._token = self._read()
        self._read_at = time.monotonic()

    def _read(self) -> str:
        return self.token_path.read_text().strip()

    @property
    def token(self) -> str:
        if time.monotonic() - self._read_at >= self.refresh_interval:
            self.reload()
        return self._token

    def reload(self) -> None:
        try:
            self._token = self._read()
        except OSError as e:
            logger.warning(f"Unable to reload service account token {self.token_path}: {e}")
        self._read_at = time.monotonic()

    def auth_flow(self, request: httpx.Request):
        sent = self.token
        request.headers["Authorization"] = f"Bearer {sent}"
        response = yield request

        if response.status_code == 401:
            self.reload()
            if self._token != sent:
                logger.info("Service account token rotated; retrying request")
                request.headers["Authorization"] = f"Bearer {self._token}"
                yield request


class KubernetesPartitionStore(PartitionStore):
    """
    Talks to the core/v1 ConfigMap and Namespace endpoints.

    The watch keeps a per-namespace-filter cache of the last seen snapshot of
    every object so that MODIFIED notifications can be delivered as
    Updated(before, after). When a watch expires the stream ends; the next
    subscription relists and reconciles the cache against the fresh list.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        auth: Optional[httpx.Auth] = None,
        verify: Union[bool, ssl.SSLContext] = True,
        timeout: float = KUBERNETES_REQUEST_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.base_url = base_url
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            auth=auth,
            verify=verify,
            timeout=timeout,
        )
        self._caches: Dict[str, Dict[_Key, ConfigMapSnapshot]] = {}
        logger.info(f"Initialized KubernetesPartitionStore [base_url={base_url}]")

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "KubernetesPartitionStore":
        """
        Build a store from the pod's service account or from explicit settings.

        REPLICATOR_API_SERVER (with optional REPLICATOR_API_TOKEN and
        REPLICATOR_API_CA_FILE) wins over the in-cluster service account.

        Raises:
            ConfigurationError: If no API server can be located
        """
        env = os.environ if environ is None else environ

        api_server = env.get("REPLICATOR_API_SERVER")
        if api_server:
            ca_file = env.get("REPLICATOR_API_CA_FILE")
            verify: Union[bool, ssl.SSLContext] = ssl.create_default_context(cafile=ca_file) if ca_file else True
            if env.get("REPLICATOR_API_INSECURE", "").lower() in ("1", "true", "yes"):
                verify = False
            return cls(api_server, token=env.get("REPLICATOR_API_TOKEN"), verify=verify)

        host = env.get("KUBERNETES_SERVICE_HOST")
        port = env.get("KUBERNETES_SERVICE_PORT", "443")
        if not host:
            raise ConfigurationError(
                "Unable to locate the Kubernetes API server: set REPLICATOR_API_SERVER "
                "or run inside a cluster"
            )

        account_dir = Path(env.get("REPLICATOR_SERVICE_ACCOUNT_DIR", SERVICE_ACCOUNT_DIR))
        token_path = account_dir / "token"
        ca_path = account_dir / "ca.crt"
        try:
            auth = ServiceAccountTokenAuth(token_path)
        except OSError as e:
            raise ConfigurationError(f"Unable to read service account token {token_path}: {e}")

        if ":" in host:
            host = f"[{host}]"
        verify = ssl.create_default_context(cafile=str(ca_path)) if ca_path.exists() else True
        return cls(f"https://{host}:{port}", auth=auth, verify=verify)

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """
        Issue one API request and translate failures into store errors.

        Raises:
            ObjectNotFoundError: On 404
            ObjectAlreadyExistsError: On 409 for a POST
            TransientStoreError: On network errors and any other non-2xx status
        """
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransientStoreError(f"{method} {path} failed: {type(e).__name__}: {e}")

        if response.status_code == 404:
            raise ObjectNotFoundError(f"{method} {path}: not found")
        if response.status_code == 409 and method == "POST":
            raise ObjectAlreadyExistsError(f"{method} {path}: already exists")
        if response.status_code >= 400:
            raise TransientStoreError(
                f"{method} {path} failed: status={response.status_code} {self._reason(response)}"
            )

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _reason(response: httpx.Response) -> str:
        try:
            return response.json().get("message", "")
        except ValueError:
            return response.text

    async def list_namespaces(self) -> Set[str]:
        body = await self._request("GET", "/api/v1/namespaces")
        return {item["metadata"]["name"] for item in body.get("items", [])}

    async def _list(self, namespace: str) -> Tuple[List[ConfigMapSnapshot], Optional[str]]:
        body = await self._request("GET", _configmaps_path(namespace))
        items = [ConfigMapSnapshot.from_manifest(item) for item in body.get("items", [])]
        return items, (body.get("metadata") or {}).get("resourceVersion")

    async def list_configmaps(self, namespace: str = "") -> List[ConfigMapSnapshot]:
        items, _ = await self._list(namespace)
        return items

    def _relist_events(
        self, cache: Dict[_Key, ConfigMapSnapshot], items: List[ConfigMapSnapshot]
    ) -> List[WatchEvent]:
        """Diff a fresh list against the cache and bring the cache up to date."""
        events: List[WatchEvent] = []
        fresh = {(obj.namespace, obj.name): obj for obj in items}

        for key, obj in fresh.items():
            before = cache.get(key)
            if before is None:
                events.append(Added(obj))
            elif before.resource_version != obj.resource_version:
                events.append(Updated(before, obj))

        for key in set(cache) - set(fresh):
            events.append(Deleted(cache[key]))

        cache.clear()
        cache.update(fresh)
        return events

    async def watch_configmaps(self, namespace: str = "") -> AsyncIterator[WatchEvent]:
        cache = self._caches.setdefault(namespace, {})

        items, resource_version = await self._list(namespace)
        for event in self._relist_events(cache, items):
            yield event

        params = {
            "watch": "true",
            "allowWatchBookmarks": "true",
            "timeoutSeconds": str(WATCH_TIMEOUT_SECONDS),
        }
        if resource_version:
            params["resourceVersion"] = resource_version

        path = _configmaps_path(namespace)
        try:
            async with self.client.stream(
                "GET", path, params=params, timeout=httpx.Timeout(KUBERNETES_REQUEST_TIMEOUT_SECONDS, read=None)
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise TransientStoreError(
                        f"Watch on {path} failed: status={response.status_code} {self._reason(response)}"
                    )

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    event = self._translate(cache, json.loads(line))
                    if event is not None:
                        yield event
        except httpx.HTTPError as e:
            raise TransientStoreError(f"Watch on {path} interrupted: {type(e).__name__}: {e}")

    def _translate(self, cache: Dict[_Key, ConfigMapSnapshot], notification: Dict[str, Any]) -> Optional[WatchEvent]:
        kind = notification.get("type")
        payload = notification.get("object") or {}

        if kind == "BOOKMARK":
            return None
        if kind == "ERROR":
            # 410 Gone: resource version expired, the caller relists on resubscribe
            raise TransientStoreError(f"Watch error: {payload.get('code')} {payload.get('message', '')}")

        obj = ConfigMapSnapshot.from_manifest(payload)
        key = (obj.namespace, obj.name)

        if kind in ("ADDED", "MODIFIED"):
            before = cache.get(key)
            cache[key] = obj
            return Updated(before, obj) if before is not None else Added(obj)
        if kind == "DELETED":
            last_known = cache.pop(key, obj)
            return Deleted(last_known)

        logger.warning(f"Ignoring unknown watch notification type {kind!r}")
        return None

    async def get_configmap(self, namespace: str, name: str) -> ConfigMapSnapshot:
        body = await self._request("GET", f"{_configmaps_path(namespace)}/{name}")
        return ConfigMapSnapshot.from_manifest(body)

    async def create_configmap(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        manifest = obj.with_changes(resource_version=None).to_manifest()
        body = await self._request("POST", _configmaps_path(obj.namespace), json=manifest)
        return ConfigMapSnapshot.from_manifest(body)

    async def update_configmap(self, obj: ConfigMapSnapshot) -> ConfigMapSnapshot:
        body = await self._request(
            "PUT", f"{_configmaps_path(obj.namespace)}/{obj.name}", json=obj.to_manifest()
        )
        return ConfigMapSnapshot.from_manifest(body)

    async def delete_configmap(self, namespace: str, name: str) -> None:
        await self._request("DELETE", f"{_configmaps_path(namespace)}/{name}")
