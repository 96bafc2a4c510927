"""
ClientPulse - Store Interfaces and Records

The health score pipeline reads from three collaborators:
- TelemetryStore: append-only usage metrics per client
- IncidentStore: support tickets per client
- ClientStore: client accounts and their health score fields

Two implementations exist: MySQLStore (clientpulse.models) and
InMemoryStore (clientpulse.health.memory_store).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from .errors import ValidationError
from .risk import RiskTier, classify


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in DATETIME columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Enums and Constants
# =============================================================================

class MetricType(Enum):
    """Telemetry metric types"""
    API_CALLS = 'api_calls'
    STORAGE_USED = 'storage_used'
    LOGIN_COUNT = 'login_count'
    FEATURE_USAGE = 'feature_usage'
    PAGE_VIEWS = 'page_views'
    EXPORT_COUNT = 'export_count'


class Severity(Enum):
    """Incident severity levels"""
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'
    CRITICAL = 'Critical'


class IncidentStatus(Enum):
    """Incident workflow statuses"""
    OPEN = 'Open'
    IN_PROGRESS = 'In Progress'
    PENDING = 'Pending'
    RESOLVED = 'Resolved'
    CLOSED = 'Closed'


OPEN_STATUSES = (
    IncidentStatus.OPEN.value,
    IncidentStatus.IN_PROGRESS.value,
    IncidentStatus.PENDING.value,
)

# Minutes allowed before an incident counts as an SLA breach
SLA_LIMITS_MINUTES = {
    Severity.CRITICAL.value: 60,
    Severity.HIGH.value: 240,
    Severity.MEDIUM.value: 480,
    Severity.LOW.value: 1440,
}

PLAN_TIERS = ('Bronze', 'Silver', 'Gold', 'Enterprise')

# Client fields an operator may change; scores are owned by the pipeline
EDITABLE_CLIENT_FIELDS = ('name', 'email', 'company', 'plan_tier', 'account_manager', 'contract_value')

# Tiers whose contract value counts as revenue at risk
REVENUE_AT_RISK_TIERS = (RiskTier.AT_RISK.value, RiskTier.CRITICAL.value)

# Score change needed before a trend is reported as improving/declining
TREND_THRESHOLD = 5


def check_client_changes(changes: Dict[str, Any]) -> None:
    """Reject fields outside EDITABLE_CLIENT_FIELDS and unknown plan tiers."""
    unknown = set(changes) - set(EDITABLE_CLIENT_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if 'plan_tier' in changes and changes['plan_tier'] not in PLAN_TIERS:
        raise ValidationError(f"Invalid plan tier. Must be one of: {', '.join(PLAN_TIERS)}")


# =============================================================================
# Records
# =============================================================================

@dataclass
class ClientRecord:
    """A client account"""
    id: str
    name: str
    email: str = ''
    company: str = ''
    plan_tier: str = 'Bronze'
    account_manager: str = 'Unassigned'
    current_health_score: int = 100
    previous_health_score: int = 100
    contract_value: float = 0.0
    last_active: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    risk_status: RiskTier = field(init=False, default=RiskTier.HEALTHY)

    def __post_init__(self):
        # risk_status is always derived from the score, never passed in
        self.risk_status = classify(self.current_health_score)

    @property
    def health_trend(self) -> str:
        diff = self.current_health_score - self.previous_health_score
        if diff > TREND_THRESHOLD:
            return 'improving'
        if diff < -TREND_THRESHOLD:
            return 'declining'
        return 'stable'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'company': self.company,
            'plan_tier': self.plan_tier,
            'account_manager': self.account_manager,
            'current_health_score': self.current_health_score,
            'previous_health_score': self.previous_health_score,
            'risk_status': self.risk_status.value,
            'risk_color': self.risk_status.color,
            'health_trend': self.health_trend,
            'contract_value': self.contract_value,
            'last_active': self.last_active.isoformat() if self.last_active else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class TelemetryRecord:
    """A single time-stamped metric measurement"""
    client_id: str
    metric_type: str
    value: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class IncidentRecord:
    """A support incident"""
    client_id: str
    title: str
    severity: str = Severity.MEDIUM.value
    status: str = IncidentStatus.OPEN.value
    description: str = ''
    priority: int = 3
    tags: List[str] = field(default_factory=list)
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    time_to_resolve: Optional[int] = None  # minutes
    sla_breached: bool = False

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def resolve(self, status: str = IncidentStatus.RESOLVED.value,
                now: Optional[datetime] = None) -> None:
        """
        Move the incident to Resolved/Closed and record resolution time.

        SLA breach is judged against SLA_LIMITS_MINUTES for the severity.
        """
        if status not in (IncidentStatus.RESOLVED.value, IncidentStatus.CLOSED.value):
            raise ValidationError(f"Not a resolution status: {status}")

        self.status = status
        if self.resolved_at is not None:
            return

        self.resolved_at = now or utcnow()
        self.time_to_resolve = int(round(
            (self.resolved_at - self.created_at).total_seconds() / 60
        ))
        limit = SLA_LIMITS_MINUTES.get(self.severity)
        if limit is not None and self.time_to_resolve > limit:
            self.sla_breached = True

    def set_status(self, status: str, now: Optional[datetime] = None) -> None:
        """Apply a workflow status; Resolved/Closed go through resolve()."""
        if status in (IncidentStatus.RESOLVED.value, IncidentStatus.CLOSED.value):
            self.resolve(status, now=now)
            return
        if status not in OPEN_STATUSES:
            valid = ', '.join(s.value for s in IncidentStatus)
            raise ValidationError(f"Invalid status. Must be one of: {valid}")

        # Reopening discards the earlier resolution
        self.status = status
        self.resolved_at = None
        self.time_to_resolve = None
        self.sla_breached = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'client_id': self.client_id,
            'title': self.title,
            'description': self.description,
            'severity': self.severity,
            'status': self.status,
            'priority': self.priority,
            'tags': list(self.tags),
            'created_at': self.created_at.isoformat(),
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'time_to_resolve': self.time_to_resolve,
            'sla_breached': self.sla_breached,
        }


# =============================================================================
# Store Interfaces
# =============================================================================

class TelemetryStore(ABC):

    @abstractmethod
    def sum_metric(self, client_id: str, metric_type: str,
                   window_start: datetime, window_end: datetime) -> float:
        """Sum of metric values with window_start <= timestamp < window_end."""

    @abstractmethod
    def add_telemetry(self, records: List[TelemetryRecord]) -> int:
        """Append records; returns the number stored."""

    @abstractmethod
    def usage_summary(self, client_id: str, window_start: datetime,
                      window_end: datetime) -> Dict[str, Dict[str, float]]:
        """Per metric type: total, average and count over the window."""


class IncidentStore(ABC):

    @abstractmethod
    def count_open_by_severity(self, client_id: str) -> Dict[str, int]:
        """Open incident counts keyed by severity."""

    @abstractmethod
    def create_incident(self, incident: IncidentRecord) -> IncidentRecord:
        pass

    @abstractmethod
    def resolve_open_incidents(self, client_id: str,
                               now: Optional[datetime] = None) -> int:
        """Resolve every open incident of a client; returns how many."""

    @abstractmethod
    def recent_incidents(self, client_id: str, limit: int = 5) -> List[IncidentRecord]:
        pass

    @abstractmethod
    def get_incident(self, incident_id: int) -> IncidentRecord:
        """Raises IncidentNotFound if the incident does not exist."""

    @abstractmethod
    def list_incidents(self, status: Optional[str] = None, severity: Optional[str] = None,
                       client_id: Optional[str] = None, page: int = 1,
                       per_page: int = 20) -> Tuple[List[IncidentRecord], int]:
        """One page of incidents, newest first, plus the total."""

    @abstractmethod
    def update_incident_status(self, incident_id: int, status: str,
                               now: Optional[datetime] = None) -> IncidentRecord:
        """Apply IncidentRecord.set_status and persist it. Raises IncidentNotFound."""

    @abstractmethod
    def delete_incident(self, incident_id: int) -> IncidentRecord:
        """Remove an incident and return it. Raises IncidentNotFound."""


class ClientStore(ABC):

    @abstractmethod
    def get_client(self, client_id: str) -> ClientRecord:
        """Raises ClientNotFound if the client does not exist."""

    @abstractmethod
    def list_client_ids(self) -> List[str]:
        pass

    @abstractmethod
    def list_clients(self, risk_status: Optional[str] = None, page: int = 1,
                     per_page: int = 10) -> Tuple[List[ClientRecord], int]:
        """One page of clients ordered by ascending health score, plus the total."""

    @abstractmethod
    def create_client(self, client: ClientRecord) -> ClientRecord:
        pass

    @abstractmethod
    def update_client_score(self, client_id: str, new_score: int,
                            risk_status: RiskTier) -> int:
        """
        Atomically move current_health_score into previous_health_score and
        store new_score and risk_status. Returns the previous score as read
        inside the same transaction. Raises ClientNotFound.
        """

    @abstractmethod
    def touch_last_active(self, client_id: str, when: Optional[datetime] = None) -> None:
        pass

    @abstractmethod
    def count_by_risk_status(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def update_client(self, client_id: str, changes: Dict[str, Any]) -> ClientRecord:
        """Apply EDITABLE_CLIENT_FIELDS changes and return the updated client."""

    @abstractmethod
    def delete_client(self, client_id: str) -> None:
        """Remove a client with its telemetry and incidents. Raises ClientNotFound."""

    @abstractmethod
    def plan_tier_summary(self) -> Dict[str, Dict[str, float]]:
        """Per plan tier: client count and summed contract value."""

    @abstractmethod
    def revenue_by_risk_status(self) -> Dict[str, Dict[str, float]]:
        """Per risk tier: client count and summed contract value."""

    @abstractmethod
    def average_health_score(self) -> float:
        """Mean current_health_score over all clients; 0 with no clients."""
