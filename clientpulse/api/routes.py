"""
ClientPulse API Routes

JSON endpoints for the customer success dashboard: client management,
score recomputation, the incident workflow, simulation actions and fleet
analytics.
"""

import logging
import uuid
from datetime import timedelta

from flask import current_app, jsonify, request

from . import api_bp
from .. import __version__
from ..cache import CLIENT_KEY, invalidate_client_views
from ..health.engine import SCORE_WINDOW_DAYS
from ..health.errors import ValidationError
from ..health.risk import RiskTier
from ..health.stores import (
    ClientRecord, IncidentRecord, IncidentStatus, Severity,
    PLAN_TIERS, REVENUE_AT_RISK_TIERS, utcnow,
)
from ..health.service import SweepResult

logger = logging.getLogger(__name__)

CLIENT_LIST_TTL = 60
CLIENT_DETAIL_TTL = 120
ANALYTICS_TTL = 300
OVERVIEW_TTL = 120
MAX_PER_PAGE = 100
RECENT_INCIDENT_LIMIT = 5
AT_RISK_CLIENT_LIMIT = 5

CLIENT_STRING_FIELDS = ('name', 'email', 'company', 'account_manager')


# =============================================================================
# Helper Functions
# =============================================================================

def _ext(name):
    """Component registered on the app by create_app()"""
    return current_app.extensions['clientpulse'][name]


def _int_arg(name, default, minimum=1, maximum=None):
    raw = request.args.get(name, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}")
    if maximum is not None:
        value = min(value, maximum)
    return value


def _json_body():
    return request.get_json(silent=True) or {}


def _risk_status_arg():
    raw = request.args.get('riskStatus') or None
    if raw is None:
        return None
    try:
        return RiskTier.from_value(raw).value
    except ValueError:
        valid = ', '.join(tier.value for tier in RiskTier)
        raise ValidationError(f"Invalid riskStatus. Must be one of: {valid}")


def _choice(value, choices, label):
    if value is not None and value not in choices:
        raise ValidationError(f"Invalid {label}. Must be one of: {', '.join(choices)}")
    return value


def _client_changes(data):
    """Editable client fields from a request body, type-checked"""
    changes = {}
    for name in CLIENT_STRING_FIELDS:
        if name in data:
            if not isinstance(data[name], str):
                raise ValidationError(f"{name} must be a string")
            changes[name] = data[name].strip()

    if 'name' in changes and not changes['name']:
        raise ValidationError('name must not be empty')

    if 'plan_tier' in data:
        changes['plan_tier'] = _choice(data['plan_tier'], PLAN_TIERS, 'plan tier')

    if 'contract_value' in data:
        try:
            contract_value = float(data['contract_value'])
        except (TypeError, ValueError):
            raise ValidationError('contract_value must be a number')
        if contract_value < 0:
            raise ValidationError('contract_value must not be negative')
        changes['contract_value'] = contract_value

    return changes


# =============================================================================
# Service Routes
# =============================================================================

@api_bp.route('/health')
def health():
    """Liveness check"""
    return jsonify({'success': True, 'status': 'ok', 'version': __version__})


# =============================================================================
# Client Routes
# =============================================================================

@api_bp.route('/clients')
def list_clients():
    """Paginated client list, lowest health score first"""
    risk_status = _risk_status_arg()
    page = _int_arg('page', 1)
    per_page = _int_arg('per_page', 10, maximum=MAX_PER_PAGE)

    cache = _ext('cache')
    cache_key = f"clients:{risk_status or 'all'}:{page}:{per_page}"
    cached = cache.get(cache_key)
    if cached is not None:
        return jsonify(cached)

    clients, total = _ext('store').list_clients(
        risk_status=risk_status, page=page, per_page=per_page
    )
    payload = {
        'success': True,
        'clients': [c.to_dict() for c in clients],
        'total': total,
        'page': page,
        'per_page': per_page,
        'total_pages': (total + per_page - 1) // per_page,
    }
    cache.set(cache_key, payload, ttl=CLIENT_LIST_TTL)
    return jsonify(payload)


@api_bp.route('/clients', methods=['POST'])
def create_client():
    """Create a client. New clients start at 100 (Healthy)."""
    data = _json_body()
    if not data:
        raise ValidationError('Request body required')
    if 'name' not in data:
        raise ValidationError('Missing required field: name')

    changes = _client_changes(data)
    client = _ext('store').create_client(ClientRecord(id=str(uuid.uuid4()), **changes))
    invalidate_client_views(_ext('cache'), client.id)

    logger.info(f"Created client {client.id} ({client.name})")
    return jsonify({'success': True, 'client': client.to_dict()}), 201


@api_bp.route('/clients/<client_id>')
def get_client(client_id):
    """Client detail with 30-day usage summary and recent incidents"""
    cache = _ext('cache')
    cache_key = CLIENT_KEY.format(client_id=client_id)
    cached = cache.get(cache_key)
    if cached is not None:
        return jsonify(cached)

    store = _ext('store')
    client = store.get_client(client_id)

    window_end = utcnow()
    window_start = window_end - timedelta(days=SCORE_WINDOW_DAYS)
    payload = {
        'success': True,
        'client': client.to_dict(),
        'usage': store.usage_summary(client_id, window_start, window_end),
        'recent_incidents': [
            i.to_dict() for i in store.recent_incidents(client_id, limit=RECENT_INCIDENT_LIMIT)
        ],
    }
    cache.set(cache_key, payload, ttl=CLIENT_DETAIL_TTL)
    return jsonify(payload)


@api_bp.route('/clients/<client_id>', methods=['PUT'])
def update_client(client_id):
    """Update account fields; health scores can only change through the pipeline"""
    data = _json_body()
    scored = {'current_health_score', 'previous_health_score', 'risk_status'} & set(data)
    if scored:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(scored))}")

    client = _ext('store').update_client(client_id, _client_changes(data))
    invalidate_client_views(_ext('cache'), client_id)
    return jsonify({'success': True, 'client': client.to_dict()})


@api_bp.route('/clients/<client_id>', methods=['DELETE'])
def delete_client(client_id):
    _ext('store').delete_client(client_id)
    invalidate_client_views(_ext('cache'), client_id)

    logger.info(f"Deleted client {client_id}")
    return jsonify({'success': True})


@api_bp.route('/clients/<client_id>/health-score')
def get_health_score(client_id):
    """Score breakdown by factor, computed now, nothing persisted"""
    result = _ext('service').engine.calculate(client_id)
    return jsonify({'success': True, 'health_score': result.to_dict()})


@api_bp.route('/clients/<client_id>/recompute', methods=['POST'])
def recompute_client(client_id):
    """Recompute and persist one client's score"""
    update = _ext('service').recompute(client_id)
    return jsonify({'success': True, 'update': update.to_dict()})


@api_bp.route('/health-scores/recompute', methods=['POST'])
def recompute_all():
    """Run (or queue) a full-fleet sweep"""
    outcome = _ext('scheduler').trigger_full_recompute()
    if isinstance(outcome, SweepResult):
        return jsonify({'success': True, **outcome.to_dict()})

    logger.info(f"Queued full health score recompute (job {outcome.id})")
    return jsonify({'success': True, 'status': 'queued', 'job_id': outcome.id}), 202


# =============================================================================
# Incident Routes
# =============================================================================

@api_bp.route('/incidents')
def list_incidents():
    """Paginated incidents, newest first"""
    status = _choice(request.args.get('status') or None,
                     [s.value for s in IncidentStatus], 'status')
    severity = request.args.get('severity') or None
    incidents, total = _ext('store').list_incidents(
        status=status,
        severity=severity,
        client_id=request.args.get('clientId') or None,
        page=_int_arg('page', 1),
        per_page=_int_arg('per_page', 20, maximum=MAX_PER_PAGE),
    )
    return jsonify({
        'success': True,
        'incidents': [i.to_dict() for i in incidents],
        'total': total,
    })


@api_bp.route('/incidents', methods=['POST'])
def create_incident():
    data = _json_body()
    for field in ('client_id', 'title'):
        if not data.get(field):
            raise ValidationError(f"Missing required field: {field}")

    severity = _choice(data.get('severity', Severity.MEDIUM.value),
                       [s.value for s in Severity], 'severity')
    tags = data.get('tags') or []
    if not isinstance(tags, list):
        raise ValidationError('tags must be a list')

    # Raises ClientNotFound -> 404
    incident = _ext('store').create_incident(IncidentRecord(
        client_id=data['client_id'],
        title=str(data['title']),
        description=str(data.get('description', '')),
        severity=severity,
        tags=[str(tag) for tag in tags],
    ))
    invalidate_client_views(_ext('cache'), incident.client_id)

    logger.info(f"Opened {severity} incident {incident.id} for client {incident.client_id}")
    return jsonify({'success': True, 'incident': incident.to_dict()}), 201


@api_bp.route('/incidents/<int:incident_id>')
def get_incident(incident_id):
    incident = _ext('store').get_incident(incident_id)
    return jsonify({'success': True, 'incident': incident.to_dict()})


@api_bp.route('/incidents/<int:incident_id>', methods=['PUT'])
def update_incident(incident_id):
    """Move an incident through its workflow. Resolved/Closed record SLA results."""
    status = _json_body().get('status')
    if not status:
        raise ValidationError('Missing required field: status')

    incident = _ext('store').update_incident_status(incident_id, status)
    invalidate_client_views(_ext('cache'), incident.client_id)

    logger.info(f"Incident {incident_id} is now {incident.status}")
    return jsonify({'success': True, 'incident': incident.to_dict()})


@api_bp.route('/incidents/<int:incident_id>', methods=['DELETE'])
def delete_incident(incident_id):
    incident = _ext('store').delete_incident(incident_id)
    invalidate_client_views(_ext('cache'), incident.client_id)
    return jsonify({'success': True})


# =============================================================================
# Simulation Routes
# =============================================================================

@api_bp.route('/clients/<client_id>/simulate/outage', methods=['POST'])
def simulate_outage(client_id):
    severity = _json_body().get('severity', Severity.HIGH.value)
    result = _ext('simulation').outage(client_id, severity=severity)
    return jsonify({'success': True, **result})


@api_bp.route('/clients/<client_id>/simulate/reset', methods=['POST'])
def simulate_reset(client_id):
    result = _ext('simulation').reset_health(client_id)
    return jsonify({'success': True, **result})


@api_bp.route('/clients/<client_id>/simulate/usage-spike', methods=['POST'])
def simulate_usage_spike(client_id):
    try:
        multiplier = int(_json_body().get('multiplier', 3))
    except (TypeError, ValueError):
        raise ValidationError("multiplier must be an integer")
    result = _ext('simulation').usage_spike(client_id, multiplier=multiplier)
    return jsonify({'success': True, **result})


@api_bp.route('/simulate/pulse', methods=['POST'])
def simulate_pulse():
    result = _ext('simulation').pulse()
    return jsonify({'success': True, **result.to_dict()})


# =============================================================================
# Analytics Routes
# =============================================================================

@api_bp.route('/analytics/risk-distribution')
def risk_distribution():
    """Client counts per risk tier"""
    cache = _ext('cache')
    cache_key = 'analytics:risk-distribution'
    cached = cache.get(cache_key)
    if cached is not None:
        return jsonify(cached)

    counts = _ext('store').count_by_risk_status()
    payload = {
        'success': True,
        'distribution': [
            {'risk_status': tier.value, 'color': tier.color, 'count': counts.get(tier.value, 0)}
            for tier in RiskTier
        ],
        'total': sum(counts.values()),
    }
    cache.set(cache_key, payload, ttl=ANALYTICS_TTL)
    return jsonify(payload)


@api_bp.route('/analytics/overview')
def overview():
    """Dashboard headline numbers"""
    cache = _ext('cache')
    cache_key = 'analytics:overview'
    cached = cache.get(cache_key)
    if cached is not None:
        return jsonify(cached)

    store = _ext('store')
    counts = store.count_by_risk_status()

    # Lowest scores across At Risk and Critical
    at_risk = []
    for tier in REVENUE_AT_RISK_TIERS:
        clients, _ = store.list_clients(risk_status=tier, per_page=AT_RISK_CLIENT_LIMIT)
        at_risk.extend(clients)
    at_risk.sort(key=lambda c: (c.current_health_score, c.name))

    payload = {
        'success': True,
        'total_clients': sum(counts.values()),
        'average_health_score': round(store.average_health_score(), 1),
        'risk_distribution': counts,
        'tier_distribution': store.plan_tier_summary(),
        'at_risk_clients': [c.to_dict() for c in at_risk[:AT_RISK_CLIENT_LIMIT]],
    }
    cache.set(cache_key, payload, ttl=OVERVIEW_TTL)
    return jsonify(payload)


@api_bp.route('/analytics/revenue-risk')
def revenue_at_risk():
    """Contract value held by At Risk and Critical clients"""
    cache = _ext('cache')
    cache_key = 'analytics:revenue-risk'
    cached = cache.get(cache_key)
    if cached is not None:
        return jsonify(cached)

    by_risk = _ext('store').revenue_by_risk_status()
    at_risk_revenue = sum(by_risk[tier]['revenue'] for tier in REVENUE_AT_RISK_TIERS)
    total_revenue = sum(entry['revenue'] for entry in by_risk.values())

    payload = {
        'success': True,
        'revenue_by_risk': by_risk,
        'at_risk_revenue': at_risk_revenue,
        'total_revenue': total_revenue,
        'risk_percentage': round(100 * at_risk_revenue / total_revenue, 1) if total_revenue else 0.0,
    }
    cache.set(cache_key, payload, ttl=ANALYTICS_TTL)
    return jsonify(payload)
