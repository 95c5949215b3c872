"""Explicit handle bundle shared by the dispatcher and the convergence engine."""

import asyncio
from dataclasses import dataclass, field

from replicator.config import ReplicatorConfig
from replicator.store.base import PartitionStore


@dataclass
class ReplicatorContext:
    """
    Everything a component needs: the store, the startup settings and the
    semaphore that bounds concurrent per-target store calls.
    """
    store: PartitionStore
    config: ReplicatorConfig = field(default_factory=ReplicatorConfig)
    target_slots: asyncio.Semaphore = field(init=False)

    def __post_init__(self):
        self.target_slots = asyncio.Semaphore(self.config.max_concurrency)
