"""
Tests for store records and the in-memory store
"""

from datetime import datetime, timedelta

import pytest

from clientpulse.health.errors import ClientNotFound, IncidentNotFound, ValidationError
from clientpulse.health.risk import RiskTier
from clientpulse.health.stores import (
    ClientRecord, TelemetryRecord, IncidentRecord, MetricType,
)


class TestClientRecord:

    def test_risk_derived_from_score(self):
        assert ClientRecord(id='c1', name='Acme', current_health_score=49).risk_status == RiskTier.CRITICAL

    @pytest.mark.parametrize('current,previous,trend', [
        (80, 74, 'improving'),
        (80, 75, 'stable'),
        (70, 75, 'stable'),
        (69, 75, 'declining'),
    ])
    def test_health_trend(self, current, previous, trend):
        client = ClientRecord(id='c1', name='Acme', current_health_score=current,
                              previous_health_score=previous)
        assert client.health_trend == trend

    def test_to_dict(self):
        data = ClientRecord(id='c1', name='Acme', current_health_score=55).to_dict()
        assert data['risk_status'] == 'At Risk'
        assert data['risk_color'] == 'amber'
        assert data['last_active'] is None


class TestIncidentRecord:

    def test_resolve_within_sla(self):
        created = datetime(2024, 6, 1, 9, 0)
        incident = IncidentRecord(client_id='c1', title='Slow dashboard',
                                  severity='High', created_at=created)

        incident.resolve(now=created + timedelta(minutes=200))

        assert incident.status == 'Resolved'
        assert incident.time_to_resolve == 200
        assert incident.sla_breached is False
        assert not incident.is_open

    def test_resolve_breaches_sla(self):
        created = datetime(2024, 6, 1, 9, 0)
        incident = IncidentRecord(client_id='c1', title='Outage',
                                  severity='Critical', created_at=created)

        incident.resolve(status='Closed', now=created + timedelta(hours=2))

        assert incident.status == 'Closed'
        assert incident.sla_breached is True

    def test_resolve_rejects_open_status(self):
        incident = IncidentRecord(client_id='c1', title='x')
        with pytest.raises(ValueError):
            incident.resolve(status='Pending')

    def test_set_status_resolved_records_sla(self):
        created = datetime(2024, 6, 1, 9, 0)
        incident = IncidentRecord(client_id='c1', title='Login errors',
                                  severity='Medium', created_at=created)

        incident.set_status('Resolved', now=created + timedelta(minutes=500))

        assert incident.status == 'Resolved'
        assert incident.time_to_resolve == 500
        # Medium SLA is 480 minutes
        assert incident.sla_breached is True

    def test_set_status_reopen_clears_resolution(self):
        created = datetime(2024, 6, 1, 9, 0)
        incident = IncidentRecord(client_id='c1', title='x', severity='Low', created_at=created)
        incident.set_status('Closed', now=created + timedelta(minutes=10))

        incident.set_status('In Progress')

        assert incident.is_open
        assert (incident.resolved_at, incident.time_to_resolve) == (None, None)

    def test_set_status_unknown(self):
        incident = IncidentRecord(client_id='c1', title='x')
        with pytest.raises(ValidationError):
            incident.set_status('Escalated')
        assert incident.status == 'Open'


class TestInMemoryStore:

    def test_get_client_returns_copy(self, store, make_client):
        make_client('c1', score=80)
        client = store.get_client('c1')
        client.current_health_score = 1
        assert store.get_client('c1').current_health_score == 80

    def test_get_missing(self, store):
        with pytest.raises(ClientNotFound):
            store.get_client('nope')

    def test_update_client_score(self, store, make_client):
        make_client('c1', score=80)

        previous = store.update_client_score('c1', 20, RiskTier.CHURNED)

        client = store.get_client('c1')
        assert previous == 80
        assert (client.previous_health_score, client.current_health_score) == (80, 20)
        assert client.risk_status == RiskTier.CHURNED

    def test_sum_metric_per_client_and_type(self, store, make_client, as_of):
        make_client('a', api_calls=100)
        make_client('b', api_calls=900)
        store.add_telemetry([
            TelemetryRecord('a', MetricType.LOGIN_COUNT.value, 5, as_of - timedelta(hours=1)),
        ])

        start = as_of - timedelta(days=30)
        assert store.sum_metric('a', 'api_calls', start, as_of) == 100
        assert store.sum_metric('a', 'login_count', start, as_of) == 5
        assert store.sum_metric('c', 'api_calls', start, as_of) == 0

    def test_usage_summary(self, store, make_client, as_of):
        make_client('a')
        store.add_telemetry([
            TelemetryRecord('a', 'api_calls', 100, as_of - timedelta(days=1)),
            TelemetryRecord('a', 'api_calls', 300, as_of - timedelta(days=2)),
        ])

        summary = store.usage_summary('a', as_of - timedelta(days=30), as_of)

        assert summary == {'api_calls': {'total': 400.0, 'count': 2, 'average': 200.0}}

    def test_create_incident_assigns_ids(self, store, make_client):
        make_client('a')
        first = store.create_incident(IncidentRecord(client_id='a', title='one'))
        second = store.create_incident(IncidentRecord(client_id='a', title='two'))
        assert (first.id, second.id) == (1, 2)

    def test_create_incident_unknown_client(self, store):
        with pytest.raises(ClientNotFound):
            store.create_incident(IncidentRecord(client_id='ghost', title='x'))

    def test_recent_incidents_newest_first(self, store, make_client, as_of):
        make_client('a')
        for day in range(7):
            store.create_incident(IncidentRecord(client_id='a', title=f'd{day}',
                                                 created_at=as_of - timedelta(days=day)))

        recent = store.recent_incidents('a', limit=5)

        assert [i.title for i in recent] == ['d0', 'd1', 'd2', 'd3', 'd4']

    def test_count_by_risk_status(self, store, make_client):
        make_client('a', score=100)
        make_client('b', score=60)
        make_client('c', score=60)
        assert store.count_by_risk_status() == {
            'Healthy': 1, 'At Risk': 2, 'Critical': 0, 'Churned': 0,
        }

    def test_update_client_score_unknown_id_leaves_no_lock(self, store):
        with pytest.raises(ClientNotFound):
            store.update_client_score('missing', 10, RiskTier.CHURNED)
        assert 'missing' not in store._client_locks

    def test_delete_client_drops_lock(self, store, make_client):
        make_client('c1', incidents=['Low'])
        store.update_client_score('c1', 50, RiskTier.AT_RISK)
        assert 'c1' in store._client_locks

        store.delete_client('c1')

        assert 'c1' not in store._client_locks
        assert store.list_incidents(client_id='c1') == ([], 0)
        with pytest.raises(ClientNotFound):
            store.get_client('c1')

    def test_update_client(self, store, make_client):
        make_client('c1', score=40)

        client = store.update_client('c1', {'plan_tier': 'Gold', 'contract_value': 1200.0})

        assert (client.plan_tier, client.contract_value) == ('Gold', 1200.0)
        assert store.get_client('c1').current_health_score == 40

    @pytest.mark.parametrize('changes', [
        {'current_health_score': 100},
        {'plan_tier': 'Platinum'},
    ])
    def test_update_client_rejects(self, store, make_client, changes):
        make_client('c1')
        with pytest.raises(ValidationError):
            store.update_client('c1', changes)

    def test_update_missing_client(self, store):
        with pytest.raises(ClientNotFound):
            store.update_client('ghost', {'name': 'x'})

    def test_list_incidents_filters(self, store, make_client, as_of):
        make_client('a', incidents=['Critical', 'Low'])
        make_client('b', incidents=['Critical'])

        critical, total = store.list_incidents(severity='Critical')
        only_a, _ = store.list_incidents(client_id='a')

        assert total == 2
        assert {i.client_id for i in critical} == {'a', 'b'}
        assert len(only_a) == 2

    def test_update_incident_status_closes_incident(self, store, make_client, as_of):
        make_client('a', incidents=['High'])
        incident_id = store.recent_incidents('a')[0].id

        updated = store.update_incident_status(incident_id, 'Resolved',
                                               now=as_of - timedelta(days=3, minutes=-30))

        assert updated.status == 'Resolved'
        assert updated.time_to_resolve == 30
        assert updated.sla_breached is False
        assert store.count_open_by_severity('a') == {}

    def test_incident_not_found(self, store):
        with pytest.raises(IncidentNotFound):
            store.update_incident_status(99, 'Closed')
        with pytest.raises(IncidentNotFound):
            store.delete_incident(99)

    def test_delete_incident(self, store, make_client):
        make_client('a', incidents=['Low'])
        incident_id = store.recent_incidents('a')[0].id

        store.delete_incident(incident_id)

        with pytest.raises(IncidentNotFound):
            store.get_incident(incident_id)

    def test_revenue_and_tier_summaries(self, store, make_client):
        make_client('a', score=90, plan_tier='Gold', contract_value=1000.0)
        make_client('b', score=55, plan_tier='Gold', contract_value=500.0)
        make_client('c', score=30, plan_tier='Bronze', contract_value=250.0)

        revenue = store.revenue_by_risk_status()
        tiers = store.plan_tier_summary()

        assert revenue['At Risk'] == {'count': 1, 'revenue': 500.0}
        assert revenue['Churned'] == {'count': 0, 'revenue': 0.0}
        assert tiers['Gold'] == {'count': 2, 'revenue': 1500.0}
        assert store.average_health_score() == pytest.approx(175 / 3)

    def test_average_health_score_empty(self, store):
        assert store.average_health_score() == 0.0
