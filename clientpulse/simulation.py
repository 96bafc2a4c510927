"""
ClientPulse - Simulation Actions

Demo/testing actions that perturb client data. Every score change goes
through ScoreUpdateTransaction, so previous_health_score and risk_status
stay consistent with the periodic recompute.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Dict, Any, List

from .cache import invalidate_client_views
from .health.errors import ValidationError
from .health.stores import (
    IncidentRecord, TelemetryRecord, MetricType, Severity, utcnow,
)
from .health.transaction import ScoreUpdateTransaction

logger = logging.getLogger(__name__)

# Score drop applied by a simulated outage
OUTAGE_SCORE_DROPS = {
    Severity.CRITICAL.value: 30,
    Severity.HIGH.value: 20,
}
DEFAULT_OUTAGE_SCORE_DROP = 10

OUTAGE_PRIORITIES = {
    Severity.CRITICAL.value: 1,
    Severity.HIGH.value: 2,
    Severity.MEDIUM.value: 3,
    Severity.LOW.value: 4,
}

SPIKE_HOURS = 24
SPIKE_BASE_CALLS = 200
SPIKE_CALLS_PER_MULTIPLIER = 500

PULSE_LOGIN_PROBABILITY = 0.7
PULSE_INCIDENT_PROBABILITY = 0.05
PULSE_INCIDENT_SEVERITIES = (
    Severity.LOW.value,
    Severity.MEDIUM.value,
    Severity.HIGH.value,
)


@dataclass
class PulseResult:
    clients: int = 0
    telemetry_records: int = 0
    incidents_created: int = 0
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'clients': self.clients,
            'telemetry_records': self.telemetry_records,
            'incidents_created': self.incidents_created,
        }


class SimulationService:

    def __init__(self, store, cache=None, rng: Optional[random.Random] = None):
        self.store = store
        self.cache = cache
        self.transaction = ScoreUpdateTransaction(store, cache)
        self.rng = rng or random.Random()

    def outage(self, client_id: str, severity: str = Severity.HIGH.value) -> Dict[str, Any]:
        """Open an outage incident and drop the client's score."""
        if severity not in OUTAGE_PRIORITIES:
            raise ValidationError(f"Unknown severity: {severity}")

        incident = self.store.create_incident(IncidentRecord(
            client_id=client_id,
            title=f'Simulated {severity} outage',
            description='Service disruption detected by monitoring',
            severity=severity,
            priority=OUTAGE_PRIORITIES[severity],
            tags=['outage', 'simulated'],
        ))

        drop = OUTAGE_SCORE_DROPS.get(severity, DEFAULT_OUTAGE_SCORE_DROP)
        update = self.transaction.adjust_score(client_id, -drop)

        logger.info(f"Simulated {severity} outage for client {client_id}: "
                    f"{update.previous_score} -> {update.new_score}")
        return {
            'incident': incident.to_dict(),
            'update': update.to_dict(),
        }

    def reset_health(self, client_id: str) -> Dict[str, Any]:
        """Resolve every open incident and put the client back at 100."""
        resolved = self.store.resolve_open_incidents(client_id)
        update = self.transaction.apply_score(client_id, 100)

        logger.info(f"Reset health for client {client_id} ({resolved} incidents resolved)")
        return {
            'resolved_incidents': resolved,
            'update': update.to_dict(),
        }

    def usage_spike(self, client_id: str, multiplier: int = 3) -> Dict[str, Any]:
        """Add one api_calls record per hour for the last 24 hours."""
        if multiplier < 1:
            raise ValidationError(f"multiplier must be at least 1, got {multiplier}")

        # Raises ClientNotFound before anything is written
        self.store.get_client(client_id)

        now = utcnow()
        records = [
            TelemetryRecord(
                client_id=client_id,
                metric_type=MetricType.API_CALLS.value,
                value=self.rng.randint(0, SPIKE_CALLS_PER_MULTIPLIER * multiplier) + SPIKE_BASE_CALLS,
                timestamp=now - timedelta(hours=hour),
            )
            for hour in range(SPIKE_HOURS)
        ]
        added = self.store.add_telemetry(records)
        self.store.touch_last_active(client_id, now)
        invalidate_client_views(self.cache, client_id)

        logger.info(f"Simulated {multiplier}x usage spike for client {client_id}")
        return {
            'records_added': added,
            'api_calls_added': sum(r.value for r in records),
        }

    def pulse(self) -> PulseResult:
        """One tick of background activity for every client."""
        result = PulseResult()
        for client_id in self.store.list_client_ids():
            try:
                created = self._pulse_client(client_id)
            except Exception as e:
                logger.error(f"Pulse failed for client {client_id}: {e}")
                result.failures[client_id] = str(e)
                continue
            result.clients += 1
            result.telemetry_records += created['telemetry']
            result.incidents_created += created['incidents']
            invalidate_client_views(self.cache, client_id)

        logger.info(f"Pulse: {result.telemetry_records} telemetry records, "
                    f"{result.incidents_created} incidents across {result.clients} clients")
        return result

    def _pulse_client(self, client_id: str) -> Dict[str, int]:
        now = utcnow()
        records: List[TelemetryRecord] = [
            TelemetryRecord(client_id, MetricType.API_CALLS.value,
                            self.rng.randint(50, 249), now),
        ]
        if self.rng.random() < PULSE_LOGIN_PROBABILITY:
            records.append(TelemetryRecord(client_id, MetricType.LOGIN_COUNT.value,
                                           self.rng.randint(1, 10), now))
            self.store.touch_last_active(client_id, now)
        self.store.add_telemetry(records)

        incidents = 0
        if self.rng.random() < PULSE_INCIDENT_PROBABILITY:
            severity = self.rng.choice(PULSE_INCIDENT_SEVERITIES)
            self.store.create_incident(IncidentRecord(
                client_id=client_id,
                title='Automated alert: elevated error rate',
                description='Raised by background monitoring',
                severity=severity,
                priority=OUTAGE_PRIORITIES[severity],
                tags=['automated'],
            ))
            incidents = 1

        return {'telemetry': len(records), 'incidents': incidents}
