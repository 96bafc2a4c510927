"""
ClientPulse Health Module
Health score calculation, risk classification, score persistence and scheduling.
"""

from .errors import (
    HealthScoreError, ClientNotFound, IncidentNotFound, TransientStoreError, ValidationError,
)
from .risk import RiskTier, RISK_THRESHOLDS, classify, clamp_score
from .stores import (
    ClientStore,
    TelemetryStore,
    IncidentStore,
    ClientRecord,
    TelemetryRecord,
    IncidentRecord,
    MetricType,
    Severity,
    IncidentStatus,
)
from .memory_store import InMemoryStore
from .engine import HealthScoreEngine, HealthScoreResult, FactorScore, round_half_up
from .transaction import ScoreUpdateTransaction, HealthScoreUpdate
from .service import HealthScoreService, SweepResult, build_health_service
from .scheduler import (
    SchedulingPort,
    IntervalScheduler,
    RQScheduler,
    get_scheduler,
    FULL_RECOMPUTE_JOB,
    SINGLE_RECOMPUTE_JOB,
)

__all__ = [
    'HealthScoreError', 'ClientNotFound', 'IncidentNotFound', 'TransientStoreError',
    'ValidationError',
    'RiskTier', 'RISK_THRESHOLDS', 'classify', 'clamp_score',
    'ClientStore', 'TelemetryStore', 'IncidentStore',
    'ClientRecord', 'TelemetryRecord', 'IncidentRecord',
    'MetricType', 'Severity', 'IncidentStatus',
    'InMemoryStore',
    'HealthScoreEngine', 'HealthScoreResult', 'FactorScore', 'round_half_up',
    'ScoreUpdateTransaction', 'HealthScoreUpdate',
    'HealthScoreService', 'SweepResult', 'build_health_service',
    'SchedulingPort', 'IntervalScheduler', 'RQScheduler', 'get_scheduler',
    'FULL_RECOMPUTE_JOB', 'SINGLE_RECOMPUTE_JOB',
]
