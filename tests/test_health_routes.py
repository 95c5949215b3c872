"""Tests for the status API endpoints."""

import pytest
from fastapi.testclient import TestClient

from common.types import ObjectRef
from replicator.convergence import ConvergenceReport, Outcome, TargetResult
from replicator.dispatcher import EventDispatcher
from replicator.main import create_app
from replicator.routes.health_routes import set_dispatcher


@pytest.fixture
def dispatcher(context):
    dispatcher = EventDispatcher(context)
    set_dispatcher(dispatcher)
    yield dispatcher
    set_dispatcher(None)


@pytest.fixture
def client(dispatcher):
    """Create FastAPI test client."""
    return TestClient(create_app())


def test_root_endpoint(client):
    response = client.get('/')
    assert response.status_code == 200
    assert response.json()['status'] == 'running'


def test_healthz_reports_stopped_dispatcher(client, dispatcher):
    assert client.get('/healthz').status_code == 503

    dispatcher.running = True
    response = client.get('/healthz')

    assert response.status_code == 200
    assert response.json() == {'status': 'ok'}


def test_readyz_waits_for_first_resync(client, dispatcher):
    assert client.get('/readyz').status_code == 503

    dispatcher.synced.set()

    assert client.get('/readyz').status_code == 200


def test_status_reports_counters(client, dispatcher):
    dispatcher.stats.events_received = 5
    dispatcher.stats.events_handled = 4
    dispatcher.stats.policy_errors = 1
    dispatcher.stats.last_reports['team1/app-config'] = ConvergenceReport(
        source=ObjectRef('team1', 'app-config'),
        action='apply',
        results=[
            TargetResult('team2', Outcome.CREATED),
            TargetResult('team3', Outcome.CONFLICT, 'not owned'),
            TargetResult('team4', Outcome.FAILED, 'timeout'),
        ],
    )

    response = client.get('/status')

    assert response.status_code == 200
    data = response.json()
    assert data['events_received'] == 5
    assert data['events_handled'] == 4
    assert data['policy_errors'] == 1
    assert data['reconciliation_interval_seconds'] == pytest.approx(0.05)
    assert data['reports'] == [{
        'source': 'team1/app-config',
        'action': 'apply',
        'outcomes': {'created': 1, 'conflict': 1, 'failed': 1},
        'failed_targets': ['team4'],
        'conflicting_targets': ['team3'],
    }]


def test_status_without_dispatcher_is_unavailable():
    set_dispatcher(None)

    assert TestClient(create_app()).get('/status').status_code == 503
