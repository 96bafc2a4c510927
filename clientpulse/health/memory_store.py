"""
In-memory implementation of the client, telemetry and incident stores.

Used by the test suite and for running without MySQL (STORE_BACKEND=memory).
Score updates are serialized per client id; different clients never block
each other.
"""

import copy
import threading
from collections import defaultdict
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple

from .errors import ClientNotFound, IncidentNotFound
from .risk import RiskTier, classify
from .stores import (
    ClientStore, TelemetryStore, IncidentStore,
    ClientRecord, TelemetryRecord, IncidentRecord,
    PLAN_TIERS, check_client_changes, utcnow,
)


class InMemoryStore(ClientStore, TelemetryStore, IncidentStore):

    def __init__(self):
        self._clients: Dict[str, ClientRecord] = {}
        self._telemetry: Dict[str, List[TelemetryRecord]] = defaultdict(list)
        self._incidents: Dict[str, List[IncidentRecord]] = defaultdict(list)
        self._next_incident_id = 1
        self._lock = threading.Lock()
        # Only existing clients get a lock; delete_client drops it
        self._client_locks: Dict[str, threading.Lock] = {}

    def client_lock(self, client_id: str) -> threading.Lock:
        with self._lock:
            if client_id not in self._clients:
                raise ClientNotFound(client_id)
            lock = self._client_locks.get(client_id)
            if lock is None:
                lock = self._client_locks[client_id] = threading.Lock()
            return lock

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    def get_client(self, client_id: str) -> ClientRecord:
        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                raise ClientNotFound(client_id)
            return copy.copy(client)

    def list_client_ids(self) -> List[str]:
        with self._lock:
            return list(self._clients)

    def list_clients(self, risk_status: Optional[str] = None, page: int = 1,
                     per_page: int = 10) -> Tuple[List[ClientRecord], int]:
        with self._lock:
            clients = [copy.copy(c) for c in self._clients.values()]

        if risk_status:
            clients = [c for c in clients if c.risk_status.value == risk_status]
        clients.sort(key=lambda c: (c.current_health_score, c.name))

        start = (page - 1) * per_page
        return clients[start:start + per_page], len(clients)

    def create_client(self, client: ClientRecord) -> ClientRecord:
        with self._lock:
            self._clients[client.id] = copy.copy(client)
        return client

    def update_client(self, client_id: str, changes: Dict[str, Any]) -> ClientRecord:
        check_client_changes(changes)

        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                raise ClientNotFound(client_id)
            for name, value in changes.items():
                setattr(client, name, value)
            return copy.copy(client)

    def delete_client(self, client_id: str) -> None:
        with self._lock:
            if self._clients.pop(client_id, None) is None:
                raise ClientNotFound(client_id)
            self._telemetry.pop(client_id, None)
            self._incidents.pop(client_id, None)
            self._client_locks.pop(client_id, None)

    def update_client_score(self, client_id: str, new_score: int,
                            risk_status: RiskTier) -> int:
        with self.client_lock(client_id):
            with self._lock:
                client = self._clients.get(client_id)
                if client is None:
                    raise ClientNotFound(client_id)
                previous = client.current_health_score
                client.previous_health_score = previous
                client.current_health_score = new_score
                client.risk_status = risk_status
            return previous

    def touch_last_active(self, client_id: str, when: Optional[datetime] = None) -> None:
        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                raise ClientNotFound(client_id)
            client.last_active = when or utcnow()

    def count_by_risk_status(self) -> Dict[str, int]:
        counts = {tier.value: 0 for tier in RiskTier}
        with self._lock:
            for client in self._clients.values():
                counts[classify(client.current_health_score).value] += 1
        return counts

    def plan_tier_summary(self) -> Dict[str, Dict[str, float]]:
        summary = {tier: {'count': 0, 'revenue': 0.0} for tier in PLAN_TIERS}
        with self._lock:
            for client in self._clients.values():
                entry = summary.setdefault(client.plan_tier, {'count': 0, 'revenue': 0.0})
                entry['count'] += 1
                entry['revenue'] += client.contract_value
        return summary

    def revenue_by_risk_status(self) -> Dict[str, Dict[str, float]]:
        summary = {tier.value: {'count': 0, 'revenue': 0.0} for tier in RiskTier}
        with self._lock:
            for client in self._clients.values():
                entry = summary[classify(client.current_health_score).value]
                entry['count'] += 1
                entry['revenue'] += client.contract_value
        return summary

    def average_health_score(self) -> float:
        with self._lock:
            scores = [c.current_health_score for c in self._clients.values()]
        return sum(scores) / len(scores) if scores else 0.0

    # -------------------------------------------------------------------------
    # Telemetry
    # -------------------------------------------------------------------------

    def sum_metric(self, client_id: str, metric_type: str,
                   window_start: datetime, window_end: datetime) -> float:
        with self._lock:
            records = list(self._telemetry.get(client_id, ()))
        return float(sum(
            r.value for r in records
            if r.metric_type == metric_type and window_start <= r.timestamp < window_end
        ))

    def add_telemetry(self, records: List[TelemetryRecord]) -> int:
        with self._lock:
            for record in records:
                self._telemetry[record.client_id].append(record)
        return len(records)

    def usage_summary(self, client_id: str, window_start: datetime,
                      window_end: datetime) -> Dict[str, Dict[str, float]]:
        with self._lock:
            records = list(self._telemetry.get(client_id, ()))

        summary: Dict[str, Dict[str, float]] = {}
        for r in records:
            if not window_start <= r.timestamp < window_end:
                continue
            entry = summary.setdefault(r.metric_type, {'total': 0.0, 'count': 0})
            entry['total'] += r.value
            entry['count'] += 1
        for entry in summary.values():
            entry['average'] = entry['total'] / entry['count']
        return summary

    # -------------------------------------------------------------------------
    # Incidents
    # -------------------------------------------------------------------------

    def count_open_by_severity(self, client_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        with self._lock:
            for incident in self._incidents.get(client_id, ()):
                if incident.is_open:
                    counts[incident.severity] += 1
        return dict(counts)

    def create_incident(self, incident: IncidentRecord) -> IncidentRecord:
        with self._lock:
            if incident.client_id not in self._clients:
                raise ClientNotFound(incident.client_id)
            incident.id = self._next_incident_id
            self._next_incident_id += 1
            self._incidents[incident.client_id].append(incident)
        return incident

    def resolve_open_incidents(self, client_id: str,
                               now: Optional[datetime] = None) -> int:
        resolved = 0
        with self._lock:
            for incident in self._incidents.get(client_id, ()):
                if incident.is_open:
                    incident.resolve(now=now)
                    resolved += 1
        return resolved

    def recent_incidents(self, client_id: str, limit: int = 5) -> List[IncidentRecord]:
        with self._lock:
            incidents = list(self._incidents.get(client_id, ()))
        incidents.sort(key=lambda i: i.created_at, reverse=True)
        return incidents[:limit]

    def get_incident(self, incident_id: int) -> IncidentRecord:
        with self._lock:
            return copy.copy(self._find_incident(incident_id))

    def list_incidents(self, status: Optional[str] = None, severity: Optional[str] = None,
                       client_id: Optional[str] = None, page: int = 1,
                       per_page: int = 20) -> Tuple[List[IncidentRecord], int]:
        with self._lock:
            if client_id is not None:
                incidents = list(self._incidents.get(client_id, ()))
            else:
                incidents = [i for group in self._incidents.values() for i in group]

        if status:
            incidents = [i for i in incidents if i.status == status]
        if severity:
            incidents = [i for i in incidents if i.severity == severity]
        incidents.sort(key=lambda i: (i.created_at, i.id), reverse=True)

        start = (page - 1) * per_page
        return [copy.copy(i) for i in incidents[start:start + per_page]], len(incidents)

    def update_incident_status(self, incident_id: int, status: str,
                               now: Optional[datetime] = None) -> IncidentRecord:
        with self._lock:
            incident = self._find_incident(incident_id)
            incident.set_status(status, now=now)
            return copy.copy(incident)

    def delete_incident(self, incident_id: int) -> IncidentRecord:
        with self._lock:
            incident = self._find_incident(incident_id)
            self._incidents[incident.client_id].remove(incident)
            return incident

    def _find_incident(self, incident_id: int) -> IncidentRecord:
        # Caller holds self._lock
        for incidents in self._incidents.values():
            for incident in incidents:
                if incident.id == incident_id:
                    return incident
        raise IncidentNotFound(incident_id)
