"""Tests for the event dispatcher watch and resync loops."""

import asyncio

import pytest

from conftest import make_configmap
from replicator.config import ReplicatorConfig
from replicator.context import ReplicatorContext
from replicator.dispatcher import EventDispatcher
from replicator.events import Added, Deleted, Updated, describe
from replicator.exceptions import TransientStoreError


async def eventually(predicate, timeout=2.0):
    """Poll until predicate() is true or fail after timeout seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class RecordingEngine:
    """Engine stand-in that records calls and can be told to fail."""

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    async def _record(self, kind, obj):
        await asyncio.sleep(0.001 * (len(self.calls) % 3))
        if obj.name in self.failing:
            raise RuntimeError(f"boom on {obj.name}")
        self.calls.append((kind, obj.name, obj.data.get("step")))
        return _EmptyReport()

    async def apply(self, source):
        return await self._record("apply", source)

    async def update(self, before, after):
        return await self._record("update", after)

    async def remove(self, source):
        return await self._record("remove", source)


class _EmptyReport:
    results = []


@pytest.fixture
def slow_resync_context(store):
    return ReplicatorContext(
        store=store,
        config=ReplicatorConfig(reconciliation_interval="1h", watch_retry_delay=0.01),
    )


class TestWatchLoop:
    """Test incremental watch handling."""

    @pytest.mark.asyncio
    async def test_added_event_creates_replicas(self, store, slow_resync_context):
        dispatcher = EventDispatcher(slow_resync_context)
        await dispatcher.start()
        try:
            await store.wait_for_watchers()
            store.seed(make_configmap())

            await eventually(lambda: store.lookup("team2", "app-config") is not None)
            assert store.lookup("kube-system", "app-config") is None
        finally:
            await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_updated_event_propagates_new_data(self, store, slow_resync_context):
        dispatcher = EventDispatcher(slow_resync_context)
        await dispatcher.start()
        try:
            await store.wait_for_watchers()
            source = store.seed(make_configmap(data={"key": "v1"}))
            await eventually(lambda: store.lookup("team2", "app-config") is not None)

            store.seed(source.with_changes(data={"key": "v2"}))

            await eventually(lambda: store.lookup("team2", "app-config").data == {"key": "v2"})
        finally:
            await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_deleted_event_removes_replicas(self, store, slow_resync_context):
        dispatcher = EventDispatcher(slow_resync_context)
        await dispatcher.start()
        try:
            await store.wait_for_watchers()
            store.seed(make_configmap())
            await eventually(lambda: store.lookup("team2", "app-config") is not None)

            store.remove("team1", "app-config")

            await eventually(lambda: store.lookup("team2", "app-config") is None)
        finally:
            await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_watch_is_resubscribed_after_close(self, store, slow_resync_context):
        dispatcher = EventDispatcher(slow_resync_context)
        await dispatcher.start()
        try:
            await store.wait_for_watchers()
            store.close_watches()
            await eventually(lambda: dispatcher.stats.watch_restarts >= 1)
            await store.wait_for_watchers()

            store.seed(make_configmap())

            await eventually(lambda: store.lookup("team2", "app-config") is not None)
        finally:
            await dispatcher.stop()


class TestResyncLoop:
    """Test periodic self-healing."""

    @pytest.mark.asyncio
    async def test_resync_repairs_missed_events(self, store, context):
        store.seed(make_configmap())
        dispatcher = EventDispatcher(context)
        await dispatcher.start()
        try:
            await eventually(lambda: store.lookup("team2", "app-config") is not None)

            store.remove("team2", "app-config")

            await eventually(lambda: store.lookup("team2", "app-config") is not None)
            assert dispatcher.stats.resync_count >= 2
            assert dispatcher.synced.is_set()
        finally:
            await dispatcher.stop()

    @pytest.mark.asyncio
    async def test_resync_once_schedules_every_configmap(self, store, context):
        engine = RecordingEngine()
        store.seed(make_configmap(name="a"))
        store.seed(make_configmap(name="b", namespace="team2"))
        dispatcher = EventDispatcher(context, engine=engine)

        count = await dispatcher.resync_once()
        await dispatcher.wait_idle()

        assert count == 2
        assert sorted(call[1] for call in engine.calls) == ["a", "b"]
        assert all(call[0] == "apply" for call in engine.calls)

    @pytest.mark.asyncio
    async def test_resync_survives_list_failure(self, store, context):
        store.fail("list_configmaps", "*", TransientStoreError("api down"))
        dispatcher = EventDispatcher(context)

        assert await dispatcher.resync_once() == 0
        assert not dispatcher.synced.is_set()


class TestDispatchOrdering:
    """Test per-object ordering and failure containment."""

    @pytest.mark.asyncio
    async def test_events_for_one_object_run_in_arrival_order(self, context):
        engine = RecordingEngine()
        dispatcher = EventDispatcher(context, engine=engine)
        snapshots = [make_configmap(data={"step": str(i)}) for i in range(6)]

        dispatcher.dispatch(Added(snapshots[0]))
        for before, after in zip(snapshots, snapshots[1:-1]):
            dispatcher.dispatch(Updated(before, after))
        dispatcher.dispatch(Deleted(snapshots[-1]))
        await dispatcher.wait_idle()

        assert engine.calls == [
            ("apply", "app-config", "0"),
            ("update", "app-config", "1"),
            ("update", "app-config", "2"),
            ("update", "app-config", "3"),
            ("update", "app-config", "4"),
            ("remove", "app-config", "5"),
        ]

    @pytest.mark.asyncio
    async def test_handler_failure_is_isolated_per_object(self, context):
        engine = RecordingEngine(failing={"broken"})
        dispatcher = EventDispatcher(context, engine=engine)

        dispatcher.dispatch(Added(make_configmap(name="broken")))
        dispatcher.dispatch(Added(make_configmap(name="healthy")))
        dispatcher.dispatch(Added(make_configmap(name="broken", data={"step": "2"})))
        await dispatcher.wait_idle()

        assert engine.calls == [("apply", "healthy", None)]
        assert dispatcher.stats.handler_failures == 2
        assert dispatcher.stats.events_handled == 1

    @pytest.mark.asyncio
    async def test_policy_error_skips_object(self, store, context):
        dispatcher = EventDispatcher(context)
        source = store.seed(make_configmap(allowed="team2", excluded="team2"))

        dispatcher.dispatch(Added(source))
        await dispatcher.wait_idle()

        assert dispatcher.stats.policy_errors == 1
        assert store.mutations == []


class TestStatusReports:
    """Test the per-source report bookkeeping."""

    @pytest.mark.asyncio
    async def test_report_is_dropped_when_source_is_deleted(self, store, context):
        dispatcher = EventDispatcher(context)
        source = store.seed(make_configmap())

        dispatcher.dispatch(Added(source))
        await dispatcher.wait_idle()
        assert "team1/app-config" in dispatcher.stats.last_reports

        dispatcher.dispatch(Deleted(store.remove("team1", "app-config")))
        await dispatcher.wait_idle()

        assert "team1/app-config" not in dispatcher.stats.last_reports
        assert store.lookup("team2", "app-config") is None


def test_updated_rejects_aliased_snapshots():
    snapshot = make_configmap()

    with pytest.raises(ValueError):
        Updated(snapshot, snapshot)


def test_describe_labels_events():
    snapshot = make_configmap()

    assert describe(Added(snapshot)) == "added team1/app-config"
    assert describe(Added(snapshot, resync=True)) == "resync team1/app-config"
    assert describe(Updated(snapshot, snapshot.with_changes())) == "updated team1/app-config"
    assert describe(Deleted(snapshot)) == "deleted team1/app-config"
