"""
Tests for the REST API
"""

from unittest.mock import Mock, patch

import pytest

from clientpulse.app import create_app
from clientpulse.health.errors import TransientStoreError


class TestHealthCheck:

    def test_ok(self, client):
        response = client.get('/api/v1/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'ok'


class TestClientList:

    def test_sorted_by_score(self, client, make_client):
        make_client('a', score=90)
        make_client('b', score=30)
        make_client('c', score=60)

        data = client.get('/api/v1/clients').get_json()

        assert [c['id'] for c in data['clients']] == ['b', 'c', 'a']
        assert data['total'] == 3
        assert data['clients'][0]['risk_status'] == 'Critical'
        assert data['clients'][0]['risk_color'] == 'red'

    def test_risk_filter(self, client, make_client):
        make_client('a', score=90)
        make_client('b', score=55)

        data = client.get('/api/v1/clients', query_string={'riskStatus': 'At Risk'}).get_json()

        assert [c['id'] for c in data['clients']] == ['b']

    def test_pagination(self, client, make_client):
        for i in range(12):
            make_client(f'c{i:02d}', score=40 + i)

        data = client.get('/api/v1/clients?page=2&per_page=5').get_json()

        assert [c['id'] for c in data['clients']] == ['c05', 'c06', 'c07', 'c08', 'c09']
        assert data['total_pages'] == 3

    @pytest.mark.parametrize('query', ['riskStatus=Fine', 'page=0', 'per_page=abc'])
    def test_bad_query(self, client, query):
        response = client.get(f'/api/v1/clients?{query}')
        assert response.status_code == 400
        assert response.get_json()['success'] is False


class TestClientDetail:

    def test_detail(self, client, make_client):
        make_client('c1', score=48, incidents=['High'])

        data = client.get('/api/v1/clients/c1').get_json()

        assert data['client']['id'] == 'c1'
        assert data['client']['risk_status'] == 'Critical'
        assert len(data['recent_incidents']) == 1
        assert 'usage' in data

    def test_not_found(self, client):
        response = client.get('/api/v1/clients/ghost')
        assert response.status_code == 404
        assert response.get_json() == {
            'success': False, 'error': 'Client not found', 'client_id': 'ghost',
        }

    def test_health_score_breakdown(self, client, make_client):
        make_client('c1')
        data = client.get('/api/v1/clients/c1/health-score').get_json()
        assert set(data['health_score']['factors']) == {'usage', 'engagement', 'incidents'}


class TestRecompute:

    def test_single(self, client, store, make_client):
        make_client('c1', score=100)

        data = client.post('/api/v1/clients/c1/recompute').get_json()

        assert data['update']['previous_score'] == 100
        assert data['update']['new_score'] == 30
        assert store.get_client('c1').risk_status.value == 'Critical'

    def test_single_not_found(self, client):
        assert client.post('/api/v1/clients/ghost/recompute').status_code == 404

    def test_full_sweep(self, client, make_client):
        make_client('a')
        make_client('b')

        data = client.post('/api/v1/health-scores/recompute').get_json()

        assert (data['updated'], data['total']) == (2, 2)

    def test_full_sweep_queued(self, app):
        scheduler = Mock()
        scheduler.trigger_full_recompute.return_value = Mock(id='health-score:full-recompute:manual:1')
        app.extensions['clientpulse']['scheduler'] = scheduler

        response = app.test_client().post('/api/v1/health-scores/recompute')

        assert response.status_code == 202
        assert response.get_json()['job_id'] == 'health-score:full-recompute:manual:1'


class TestSimulation:

    def test_outage(self, client, store, make_client):
        make_client('c1', score=75)

        data = client.post('/api/v1/clients/c1/simulate/outage', json={'severity': 'Critical'}).get_json()

        assert data['update']['new_score'] == 45
        assert store.get_client('c1').previous_health_score == 75

    def test_outage_bad_severity(self, client, make_client):
        make_client('c1')
        response = client.post('/api/v1/clients/c1/simulate/outage', json={'severity': 'Meh'})
        assert response.status_code == 400

    def test_reset(self, client, store, make_client):
        make_client('c1', score=20, incidents=['Critical'])

        data = client.post('/api/v1/clients/c1/simulate/reset').get_json()

        assert data['resolved_incidents'] == 1
        assert store.get_client('c1').current_health_score == 100

    def test_usage_spike(self, client, make_client):
        make_client('c1')
        data = client.post('/api/v1/clients/c1/simulate/usage-spike', json={'multiplier': 2}).get_json()
        assert data['records_added'] == 24

    def test_usage_spike_bad_multiplier(self, client, make_client):
        make_client('c1')
        response = client.post('/api/v1/clients/c1/simulate/usage-spike', json={'multiplier': 'x'})
        assert response.status_code == 400

    def test_pulse(self, client, make_client):
        make_client('a')
        make_client('b')
        data = client.post('/api/v1/simulate/pulse').get_json()
        assert data['clients'] == 2


class TestClientManagement:

    def test_create(self, client, store):
        response = client.post('/api/v1/clients', json={
            'name': 'Globex', 'plan_tier': 'Silver', 'contract_value': 1800,
        })

        assert response.status_code == 201
        data = response.get_json()['client']
        assert data['current_health_score'] == 100
        assert data['risk_status'] == 'Healthy'
        assert store.get_client(data['id']).plan_tier == 'Silver'

    @pytest.mark.parametrize('body', [
        {},
        {'plan_tier': 'Gold'},
        {'name': '  '},
        {'name': 'Globex', 'plan_tier': 'Platinum'},
        {'name': 'Globex', 'contract_value': 'lots'},
    ])
    def test_create_invalid(self, client, body):
        response = client.post('/api/v1/clients', json=body)
        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_update(self, client, store, make_client):
        make_client('c1', score=45)

        data = client.put('/api/v1/clients/c1', json={'account_manager': 'Sam Ortiz'}).get_json()

        assert data['client']['account_manager'] == 'Sam Ortiz'
        assert store.get_client('c1').current_health_score == 45

    def test_update_score_is_rejected(self, client, store, make_client):
        make_client('c1', score=45)

        response = client.put('/api/v1/clients/c1', json={'current_health_score': 100})

        assert response.status_code == 400
        assert store.get_client('c1').current_health_score == 45

    def test_update_not_found(self, client):
        assert client.put('/api/v1/clients/ghost', json={'name': 'x'}).status_code == 404

    def test_delete(self, client, store, make_client):
        make_client('c1', incidents=['High'])

        assert client.delete('/api/v1/clients/c1').status_code == 200
        assert client.get('/api/v1/clients/c1').status_code == 404
        assert client.delete('/api/v1/clients/c1').status_code == 404

    def test_mutations_invalidate_client_and_fleet_views(self, store, make_client):
        make_client('c1')
        cache = Mock()
        cache.get.return_value = None
        app = create_app('testing', store=store, cache=cache)

        app.test_client().put('/api/v1/clients/c1', json={'name': 'Renamed'})

        patterns = [c.args[0] for c in cache.invalidate.call_args_list]
        assert patterns == ['client:c1', 'clients:*', 'analytics:*']


class TestIncidents:

    def test_create_and_list(self, client, make_client):
        make_client('c1')

        response = client.post('/api/v1/incidents', json={
            'client_id': 'c1', 'title': 'Webhook failures', 'severity': 'High',
        })
        assert response.status_code == 201

        data = client.get('/api/v1/incidents', query_string={'clientId': 'c1'}).get_json()
        assert data['total'] == 1
        assert data['incidents'][0]['status'] == 'Open'

    def test_create_for_missing_client(self, client):
        response = client.post('/api/v1/incidents', json={'client_id': 'ghost', 'title': 'x'})
        assert response.status_code == 404

    def test_create_bad_severity(self, client, make_client):
        make_client('c1')
        response = client.post('/api/v1/incidents', json={
            'client_id': 'c1', 'title': 'x', 'severity': 'Apocalyptic',
        })
        assert response.status_code == 400

    def test_resolving_removes_incident_penalty(self, client, store, make_client):
        # No telemetry in the live window: only the incident factor scores
        make_client('c1', incidents=['Critical'])
        incident_id = store.recent_incidents('c1')[0].id

        assert client.post('/api/v1/clients/c1/recompute').get_json()['update']['new_score'] == 23

        response = client.put(f'/api/v1/incidents/{incident_id}', json={'status': 'Resolved'})

        incident = response.get_json()['incident']
        assert incident['status'] == 'Resolved'
        assert incident['resolved_at'] is not None
        assert incident['time_to_resolve'] is not None
        assert client.post('/api/v1/clients/c1/recompute').get_json()['update']['new_score'] == 30

    def test_workflow_status_keeps_incident_open(self, client, store, make_client):
        make_client('c1', incidents=['Low'])
        incident_id = store.recent_incidents('c1')[0].id

        data = client.put(f'/api/v1/incidents/{incident_id}', json={'status': 'Pending'}).get_json()

        assert data['incident']['status'] == 'Pending'
        assert store.count_open_by_severity('c1') == {'Low': 1}

    @pytest.mark.parametrize('body', [{}, {'status': 'Escalated'}])
    def test_update_invalid_status(self, client, store, make_client, body):
        make_client('c1', incidents=['Low'])
        incident_id = store.recent_incidents('c1')[0].id

        response = client.put(f'/api/v1/incidents/{incident_id}', json=body)

        assert response.status_code == 400
        assert store.get_incident(incident_id).status == 'Open'

    def test_unknown_incident(self, client):
        response = client.put('/api/v1/incidents/404', json={'status': 'Closed'})
        assert response.status_code == 404
        assert response.get_json()['incident_id'] == 404
        assert client.get('/api/v1/incidents/404').status_code == 404

    def test_list_bad_status_filter(self, client):
        assert client.get('/api/v1/incidents?status=Lost').status_code == 400

    def test_delete(self, client, store, make_client):
        make_client('c1', incidents=['Low'])
        incident_id = store.recent_incidents('c1')[0].id

        assert client.delete(f'/api/v1/incidents/{incident_id}').status_code == 200
        assert store.count_open_by_severity('c1') == {}


class TestAnalytics:

    def test_risk_distribution(self, client, make_client):
        make_client('a', score=95)
        make_client('b', score=72)
        make_client('c', score=10)

        data = client.get('/api/v1/analytics/risk-distribution').get_json()

        counts = {row['risk_status']: row['count'] for row in data['distribution']}
        assert counts == {'Healthy': 2, 'At Risk': 0, 'Critical': 0, 'Churned': 1}
        assert data['total'] == 3

    def test_overview(self, client, make_client):
        make_client('a', score=95, plan_tier='Gold', contract_value=1000.0)
        make_client('b', score=55, plan_tier='Gold', contract_value=500.0)
        make_client('c', score=30, plan_tier='Bronze', contract_value=250.0)
        make_client('d', score=10)

        data = client.get('/api/v1/analytics/overview').get_json()

        assert data['total_clients'] == 4
        assert data['average_health_score'] == 47.5
        assert data['risk_distribution']['Churned'] == 1
        assert data['tier_distribution']['Gold'] == {'count': 2, 'revenue': 1500.0}
        assert [c['id'] for c in data['at_risk_clients']] == ['c', 'b']

    def test_revenue_at_risk(self, client, make_client):
        make_client('a', score=95, contract_value=600.0)
        make_client('b', score=55, contract_value=300.0)
        make_client('c', score=30, contract_value=100.0)

        data = client.get('/api/v1/analytics/revenue-risk').get_json()

        assert data['at_risk_revenue'] == 400.0
        assert data['total_revenue'] == 1000.0
        assert data['risk_percentage'] == 40.0

    def test_revenue_at_risk_without_revenue(self, client, make_client):
        make_client('a')
        assert client.get('/api/v1/analytics/revenue-risk').get_json()['risk_percentage'] == 0.0


class TestCaching:

    def test_cached_list_is_served(self, store, make_client):
        cache = Mock()
        cache.get.return_value = {'success': True, 'clients': [], 'total': 0}
        app = create_app('testing', store=store, cache=cache)

        data = app.test_client().get('/api/v1/clients').get_json()

        assert data['total'] == 0
        cache.set.assert_not_called()

    def test_miss_populates_cache(self, store, make_client):
        make_client('c1')
        cache = Mock()
        cache.get.return_value = None
        app = create_app('testing', store=store, cache=cache)

        app.test_client().get('/api/v1/clients/c1')

        key, payload = cache.set.call_args.args
        assert key == 'client:c1'
        assert cache.set.call_args.kwargs['ttl'] == 120
        assert payload['client']['id'] == 'c1'


class TestErrors:

    def test_store_unavailable(self, app, store):
        with patch.object(store, 'list_clients', side_effect=TransientStoreError('db down')):
            response = app.test_client().get('/api/v1/clients')
        assert response.status_code == 503
        assert response.get_json()['success'] is False

    def test_unknown_route(self, client):
        assert client.get('/api/v1/nope').status_code == 404

    def test_internal_value_error_is_not_a_client_error(self, app, store):
        # A bad stored value is a server fault, not a 400
        with patch.object(store, 'list_clients', side_effect=ValueError("'Bogus' is not a valid RiskTier")):
            with pytest.raises(ValueError):
                app.test_client().get('/api/v1/clients')
