"""
Pytest configuration and fixtures for ClientPulse tests
"""

import os
import sys
from datetime import datetime, timedelta

import pytest

# Ensure the clientpulse package is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

# Set test environment before importing the app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['STORE_BACKEND'] = 'memory'
os.environ['CACHE_ENABLED'] = 'false'
os.environ['SCHEDULER_BACKEND'] = 'interval'

from clientpulse.health.memory_store import InMemoryStore
from clientpulse.health.service import HealthScoreService
from clientpulse.health.stores import (
    ClientRecord, TelemetryRecord, IncidentRecord, MetricType,
)

# Fixed "now" for window arithmetic
AS_OF = datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def store():
    """Empty in-memory store"""
    return InMemoryStore()


@pytest.fixture
def service(store):
    """Health score service over the in-memory store, no cache"""
    return HealthScoreService.from_store(store)


@pytest.fixture
def make_client(store):
    """Create a client with optional telemetry and incidents inside the window"""
    def _make(client_id, api_calls=0, logins=0, incidents=(), score=100, **fields):
        store.create_client(ClientRecord(
            id=client_id,
            name=fields.pop('name', f'Client {client_id}'),
            current_health_score=score,
            previous_health_score=score,
            **fields
        ))
        records = []
        if api_calls:
            records.append(TelemetryRecord(client_id, MetricType.API_CALLS.value,
                                           api_calls, AS_OF - timedelta(days=1)))
        if logins:
            records.append(TelemetryRecord(client_id, MetricType.LOGIN_COUNT.value,
                                           logins, AS_OF - timedelta(days=2)))
        store.add_telemetry(records)
        for severity in incidents:
            store.create_incident(IncidentRecord(
                client_id=client_id,
                title=f'{severity} incident',
                severity=severity,
                created_at=AS_OF - timedelta(days=3),
            ))
        return store.get_client(client_id)
    return _make


@pytest.fixture
def app(store):
    """Create application for testing"""
    from clientpulse.app import create_app

    flask_app = create_app('testing', store=store)
    flask_app.config.update({'TESTING': True})
    yield flask_app


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()
