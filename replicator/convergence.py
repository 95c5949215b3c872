"""
Convergence engine.

Drives each target namespace towards the desired state of a source ConfigMap:
create or overwrite an owned replica, or delete it. Objects that do not carry
this source's provenance annotation are never modified.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from common.constants import REPLICATED_FROM_KEY
from common.logging_config import get_logger
from common.types import ConfigMapSnapshot, ObjectRef
from replicator.context import ReplicatorContext
from replicator.exceptions import (
    ObjectAlreadyExistsError,
    ObjectNotFoundError,
    OwnershipConflictError,
    ReplicatorException,
)
from replicator.policy import (
    ReplicationPolicy,
    is_owned_by,
    is_replica,
    provenance_of,
    provenance_value,
    resolve_policy,
)
from replicator.targets import needs_namespace_listing, resolve_targets

logger = get_logger(__name__)


class Outcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(frozen=True)
class TargetResult:
    """Outcome of one per-target operation."""
    namespace: str
    outcome: Outcome
    error: Optional[str] = None


@dataclass
class ConvergenceReport:
    """Aggregated per-target results for one handled event."""
    source: ObjectRef
    action: str
    results: List[TargetResult] = field(default_factory=list)

    @property
    def targets(self) -> FrozenSet[str]:
        return frozenset(result.namespace for result in self.results)

    def by_outcome(self, outcome: Outcome) -> FrozenSet[str]:
        return frozenset(r.namespace for r in self.results if r.outcome == outcome)

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for result in self.results:
            counts[result.outcome.value] = counts.get(result.outcome.value, 0) + 1
        return counts

    @property
    def ok(self) -> bool:
        return not any(r.outcome in (Outcome.CONFLICT, Outcome.FAILED) for r in self.results)


def build_replica(
    source: ConfigMapSnapshot,
    namespace: str,
    existing: Optional[ConfigMapSnapshot] = None,
) -> ConfigMapSnapshot:
    """
    Desired replica of `source` in `namespace`.

    When overwriting an existing replica its other annotations and labels are
    kept; data is replaced wholesale and provenance re-asserted.
    """
    annotations = dict(existing.annotations) if existing else {}
    annotations[REPLICATED_FROM_KEY] = provenance_value(source)
    return ConfigMapSnapshot(
        namespace=namespace,
        name=source.name,
        data=dict(source.data),
        annotations=annotations,
        labels=dict(existing.labels) if existing else {},
    )


class ConvergenceEngine:
    """
    Applies the create, update and delete paths for a source ConfigMap.

    Per-target operations of one event run concurrently, bounded by the
    context's semaphore, and are joined before the call returns. A failure
    against one target never affects its siblings.
    """

    def __init__(self, context: ReplicatorContext):
        self.context = context
        self.store = context.store
        self.config = context.config

    def policy_for(self, obj: ConfigMapSnapshot) -> ReplicationPolicy:
        """Resolve the policy of obj. Raises PolicyError on overlapping lists."""
        return resolve_policy(
            obj,
            default_allowed=self.config.default_allowed_namespaces,
            default_excluded=self.config.default_excluded_namespaces,
        )

    async def targets_for(self, source: ConfigMapSnapshot, policy: ReplicationPolicy) -> FrozenSet[str]:
        namespaces = await self.store.list_namespaces() if needs_namespace_listing(policy) else ()
        return resolve_targets(policy, source.namespace, namespaces)

    async def apply(self, source: ConfigMapSnapshot) -> ConvergenceReport:
        """Create path, used for Added events and resync passes."""
        return await self._converge("apply", source, self._create_one)

    async def update(self, before: ConfigMapSnapshot, after: ConfigMapSnapshot) -> ConvergenceReport:
        """Update path: create missing replicas, overwrite owned ones."""
        if before.data != after.data:
            logger.debug(f"ConfigMap {after.ref} data changed ({len(before.data)} -> {len(after.data)} keys)")
        return await self._converge("update", after, self._update_one)

    async def remove(self, source: ConfigMapSnapshot) -> ConvergenceReport:
        """Delete path, driven by the policy of the last known snapshot."""
        return await self._converge("remove", source, self._delete_one)

    async def _converge(
        self,
        action: str,
        source: ConfigMapSnapshot,
        operation: Callable[[ConfigMapSnapshot, str], Awaitable[Outcome]],
    ) -> ConvergenceReport:
        report = ConvergenceReport(source=source.ref, action=action)

        if is_replica(source):
            logger.debug(f"ConfigMap {source.ref} is a replica of {provenance_of(source)}; ignoring")
            return report

        policy = self.policy_for(source)
        if not policy.enabled:
            return report

        targets = await self.targets_for(source, policy)
        if not targets:
            logger.info(f"ConfigMap {source.ref} has no target namespaces")
            return report

        logger.info(f"Converging ConfigMap {source.ref} [{action}] across {len(targets)} namespaces")

        ordered = sorted(targets)
        report.results = list(await asyncio.gather(
            *(self._run_target(source, namespace, operation) for namespace in ordered)
        ))

        logger.info(f"ConfigMap {source.ref} [{action}] complete: {report.counts()}")
        return report

    async def _run_target(
        self,
        source: ConfigMapSnapshot,
        namespace: str,
        operation: Callable[[ConfigMapSnapshot, str], Awaitable[Outcome]],
    ) -> TargetResult:
        async with self.context.target_slots:
            try:
                outcome = await operation(source, namespace)
                return TargetResult(namespace, outcome)
            except OwnershipConflictError as e:
                logger.warning(str(e))
                return TargetResult(namespace, Outcome.CONFLICT, str(e))
            except ReplicatorException as e:
                logger.error(f"Error replicating ConfigMap {source.ref} to namespace {namespace}: {e}")
                return TargetResult(namespace, Outcome.FAILED, str(e))
            except Exception as e:
                logger.error(
                    f"Unexpected error replicating ConfigMap {source.ref} to namespace {namespace}: {e}",
                    exc_info=True
                )
                return TargetResult(namespace, Outcome.FAILED, str(e))

    async def _create_one(self, source: ConfigMapSnapshot, namespace: str) -> Outcome:
        try:
            await self.store.create_configmap(build_replica(source, namespace))
        except ObjectAlreadyExistsError:
            existing = await self.store.get_configmap(namespace, source.name)
            return await self._overwrite(source, existing)

        logger.info(f"Replicated ConfigMap {source.ref} to namespace {namespace}")
        return Outcome.CREATED

    async def _update_one(self, source: ConfigMapSnapshot, namespace: str) -> Outcome:
        try:
            existing = await self.store.get_configmap(namespace, source.name)
        except ObjectNotFoundError:
            return await self._create_one(source, namespace)
        return await self._overwrite(source, existing)

    async def _overwrite(self, source: ConfigMapSnapshot, existing: ConfigMapSnapshot) -> Outcome:
        target = str(existing.ref)
        if not is_owned_by(existing, source):
            raise OwnershipConflictError(str(source.ref), target, provenance_of(existing))

        desired = build_replica(source, existing.namespace, existing)
        if existing.data == desired.data and existing.annotations == desired.annotations:
            logger.debug(f"ConfigMap {target} already matches {source.ref}")
            return Outcome.UNCHANGED

        await self.store.update_configmap(desired)
        logger.info(f"Updated ConfigMap {source.name} in namespace {existing.namespace}")
        return Outcome.UPDATED

    async def _delete_one(self, source: ConfigMapSnapshot, namespace: str) -> Outcome:
        try:
            existing = await self.store.get_configmap(namespace, source.name)
        except ObjectNotFoundError:
            return Outcome.UNCHANGED

        if not is_owned_by(existing, source):
            logger.info(
                f"ConfigMap {existing.ref} is not a replica of {source.ref}; leaving it in place"
            )
            return Outcome.SKIPPED

        try:
            await self.store.delete_configmap(namespace, source.name)
        except ObjectNotFoundError:
            return Outcome.UNCHANGED

        logger.info(f"Deleted ConfigMap {source.name} in namespace {namespace}")
        return Outcome.DELETED
