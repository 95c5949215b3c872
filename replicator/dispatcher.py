"""
Event dispatcher.

Merges the ConfigMap watch stream with a periodic full relist into one
ordered stream of commands per ConfigMap and hands each command to the
convergence engine. Handler failures are contained per object.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional

from common.logging_config import get_logger
from common.types import ObjectRef
from replicator.context import ReplicatorContext
from replicator.convergence import ConvergenceEngine, ConvergenceReport
from replicator.events import Added, Deleted, Updated, WatchEvent, describe
from replicator.exceptions import PolicyError, TransientStoreError

logger = get_logger(__name__)


@dataclass
class DispatcherStats:
    """Counters exposed through the status API."""
    events_received: int = 0
    events_handled: int = 0
    handler_failures: int = 0
    policy_errors: int = 0
    resync_count: int = 0
    watch_restarts: int = 0
    last_resync_at: Optional[float] = None
    last_reports: Dict[str, ConvergenceReport] = field(default_factory=dict)


class EventDispatcher:
    """
    Runs the watch loop and the resync loop.

    Events for the same (namespace, name) are queued and handled strictly
    in arrival order by a single worker task for that key; workers for
    different keys run concurrently.
    """

    def __init__(self, context: ReplicatorContext, engine: Optional[ConvergenceEngine] = None):
        self.context = context
        self.store = context.store
        self.engine = engine or ConvergenceEngine(context)
        self.interval = context.config.interval_seconds
        self.stats = DispatcherStats()
        self.running = False
        self.synced = asyncio.Event()
        self._pending: Dict[ObjectRef, Deque[WatchEvent]] = {}
        self._workers: Dict[ObjectRef, asyncio.Task] = {}
        self._watch_task: Optional[asyncio.Task] = None
        self._resync_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the watch and resync background tasks."""
        if self.running:
            logger.warning("Event dispatcher already running")
            return

        self.running = True
        self._watch_task = asyncio.create_task(self.run_watch_loop())
        self._resync_task = asyncio.create_task(self.run_resync_loop())
        logger.info(f"Event dispatcher started [resync_interval={self.interval}s]")

    async def stop(self):
        """Stop background tasks and wait for in-flight handlers to finish."""
        if not self.running:
            return

        self.running = False

        for task in (self._watch_task, self._resync_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await self.wait_idle()
        logger.info("Event dispatcher stopped")

    async def run_watch_loop(self):
        """
        Consume the ConfigMap watch across all namespaces.

        The stream is re-subscribed whenever it ends or fails.
        """
        while self.running:
            try:
                async for event in self.store.watch_configmaps():
                    self.dispatch(event)
                logger.info("ConfigMap watch closed; resubscribing")
            except asyncio.CancelledError:
                raise
            except TransientStoreError as e:
                logger.warning(f"ConfigMap watch failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in ConfigMap watch: {e}", exc_info=True)

            self.stats.watch_restarts += 1
            await asyncio.sleep(self.context.config.watch_retry_delay)

    async def run_resync_loop(self):
        """Run a full resync immediately and then every reconciliation interval."""
        while self.running:
            try:
                await self.resync_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in resync pass: {e}", exc_info=True)

            await asyncio.sleep(self.interval)

    async def resync_once(self) -> int:
        """
        List every ConfigMap and re-issue an Added command for each.

        Returns:
            Number of ConfigMaps scheduled
        """
        try:
            objects = await self.store.list_configmaps()
        except TransientStoreError as e:
            logger.warning(f"Resync skipped, unable to list ConfigMaps: {e}")
            return 0

        for obj in objects:
            self.dispatch(Added(obj, resync=True))

        self.stats.resync_count += 1
        self.stats.last_resync_at = time.time()
        self.synced.set()
        logger.info(f"Resync scheduled {len(objects)} ConfigMaps")
        return len(objects)

    def dispatch(self, event: WatchEvent):
        """Queue an event behind any earlier events for the same object."""
        key = event.ref
        self.stats.events_received += 1
        self._pending.setdefault(key, deque()).append(event)

        if key not in self._workers:
            self._workers[key] = asyncio.create_task(self._drain(key))

    async def _drain(self, key: ObjectRef):
        queue = self._pending[key]
        try:
            while queue:
                await self._handle(queue.popleft())
        finally:
            del self._pending[key]
            del self._workers[key]

    async def _handle(self, event: WatchEvent):
        """Run the handler for one event, containing any failure to this object."""
        try:
            match event:
                case Added():
                    report = await self.engine.apply(event.obj)
                case Updated():
                    report = await self.engine.update(event.before, event.after)
                case Deleted():
                    report = await self.engine.remove(event.obj)
                case _:
                    raise TypeError(f"Unknown watch event type: {type(event).__name__}")
        except PolicyError as e:
            self.stats.policy_errors += 1
            logger.error(str(e))
            return
        except Exception as e:
            self.stats.handler_failures += 1
            logger.error(f"Failed to handle {describe(event)}: {e}", exc_info=not isinstance(e, TransientStoreError))
            return

        self.stats.events_handled += 1
        if isinstance(event, Deleted):
            self.stats.last_reports.pop(str(event.ref), None)
        elif report.results:
            self.stats.last_reports[str(event.ref)] = report

    async def wait_idle(self):
        """Wait until every queued event has been handled."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)
