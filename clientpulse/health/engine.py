"""
ClientPulse - Health Score Engine

Calculates a weighted health score (0-100) for a client from the last 30 days:
- Usage (40%): api_calls total vs. a 5000 calls/month baseline
- Engagement (30%): login_count total vs. a 30 logins/month baseline
- Incidents (30%): 100 minus a severity-weighted penalty for open incidents

Final score = round_half_up(0.4 * usage + 0.3 * engagement + 0.3 * incidents),
clamped to [0, 100]. Telemetry and incidents are read through two independent
store queries and combined here.

Factor scores and the weighted sum are exact rationals; only the final sum
is rounded.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from fractions import Fraction
from typing import Optional, Dict, Any, Union

from .risk import RiskTier, classify, clamp_score
from .stores import (
    ClientStore, TelemetryStore, IncidentStore, MetricType, Severity, utcnow,
)


# =============================================================================
# Scoring Configuration
# =============================================================================

SCORE_WINDOW_DAYS = 30

# Monthly totals that earn a full factor score
USAGE_BASELINE_API_CALLS = 5000
ENGAGEMENT_BASELINE_LOGINS = 30

# Penalty points per open incident
SEVERITY_PENALTIES = {
    Severity.CRITICAL.value: 25,
    Severity.HIGH.value: 15,
    Severity.MEDIUM.value: 8,
    Severity.LOW.value: 3,
}
DEFAULT_SEVERITY_PENALTY = 5

FACTOR_WEIGHTS = {
    'usage': Fraction(4, 10),
    'engagement': Fraction(3, 10),
    'incidents': Fraction(3, 10),
}

FULL_SCORE = Fraction(100)


def as_fraction(value: Union[int, float, str, Fraction, None]) -> Fraction:
    """Exact rational for a store value; floats are read by their decimal repr."""
    if value is None:
        return Fraction(0)
    if isinstance(value, (int, Fraction)):
        return Fraction(value)
    # str() keeps 0.1 as 1/10 instead of its binary approximation
    return Fraction(str(value))


def round_half_up(value: Union[int, float, str, Fraction]) -> int:
    """Round to the nearest integer, .5 always rounding away from zero (22.5 -> 23)."""
    exact = as_fraction(value)
    whole, remainder = divmod(abs(exact.numerator), exact.denominator)
    if 2 * remainder >= exact.denominator:
        whole += 1
    return whole if exact >= 0 else -whole


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class FactorScore:
    """Score for a single health factor"""
    name: str
    score: Fraction  # 0-100
    weight: Fraction
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def weighted(self) -> Fraction:
        return self.weight * self.score


@dataclass
class HealthScoreResult:
    """Complete health score result with breakdown"""
    client_id: str
    score: int  # 0-100
    risk_status: RiskTier
    factors: Dict[str, FactorScore]
    window_start: datetime
    window_end: datetime
    calculated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'client_id': self.client_id,
            'score': self.score,
            'risk_status': self.risk_status.value,
            'risk_color': self.risk_status.color,
            'window_start': self.window_start.isoformat(),
            'window_end': self.window_end.isoformat(),
            'calculated_at': self.calculated_at.isoformat(),
            'factors': {
                name: {
                    'score': round(float(factor.score), 2),
                    'weight': float(factor.weight),
                    'weight_percent': int(factor.weight * 100),
                    'details': factor.details,
                }
                for name, factor in self.factors.items()
            },
        }


# =============================================================================
# Health Score Engine
# =============================================================================

class HealthScoreEngine:
    """
    Computes client health scores. Pure read + compute, no side effects.

    Uses data from:
    - ClientStore (existence check)
    - TelemetryStore (api_calls and login_count sums over the window)
    - IncidentStore (open incident counts by severity)
    """

    def __init__(self, client_store: ClientStore, telemetry_store: TelemetryStore,
                 incident_store: IncidentStore):
        self.client_store = client_store
        self.telemetry_store = telemetry_store
        self.incident_store = incident_store

    def compute_score(self, client_id: str, as_of: Optional[datetime] = None) -> int:
        """Health score for a client; raises ClientNotFound for unknown ids."""
        return self.calculate(client_id, as_of).score

    def calculate(self, client_id: str, as_of: Optional[datetime] = None) -> HealthScoreResult:
        """
        Calculate the health score with its factor breakdown.

        Args:
            client_id: The client to score
            as_of: End of the scoring window (exclusive). Defaults to now.
        """
        # Raises ClientNotFound
        self.client_store.get_client(client_id)

        window_end = as_of or utcnow()
        window_start = window_end - timedelta(days=SCORE_WINDOW_DAYS)

        api_calls = self.telemetry_store.sum_metric(
            client_id, MetricType.API_CALLS.value, window_start, window_end
        )
        logins = self.telemetry_store.sum_metric(
            client_id, MetricType.LOGIN_COUNT.value, window_start, window_end
        )
        open_incidents = self.incident_store.count_open_by_severity(client_id)

        factors = {
            'usage': self._calculate_usage_score(api_calls),
            'engagement': self._calculate_engagement_score(logins),
            'incidents': self._calculate_incident_score(open_incidents),
        }
        score = self._calculate_overall_score(factors)

        return HealthScoreResult(
            client_id=client_id,
            score=score,
            risk_status=classify(score),
            factors=factors,
            window_start=window_start,
            window_end=window_end,
        )

    def _calculate_usage_score(self, api_calls) -> FactorScore:
        total = max(Fraction(0), as_fraction(api_calls))
        return FactorScore(
            name='Usage',
            score=min(FULL_SCORE, FULL_SCORE * total / USAGE_BASELINE_API_CALLS),
            weight=FACTOR_WEIGHTS['usage'],
            details={'api_calls': float(total), 'baseline': USAGE_BASELINE_API_CALLS},
        )

    def _calculate_engagement_score(self, logins) -> FactorScore:
        total = max(Fraction(0), as_fraction(logins))
        return FactorScore(
            name='Engagement',
            score=min(FULL_SCORE, FULL_SCORE * total / ENGAGEMENT_BASELINE_LOGINS),
            weight=FACTOR_WEIGHTS['engagement'],
            details={'logins': float(total), 'baseline': ENGAGEMENT_BASELINE_LOGINS},
        )

    def _calculate_incident_score(self, open_incidents: Dict[str, int]) -> FactorScore:
        """
        Each open incident costs its severity penalty once, regardless of age.
        Severities introduced later by the support tooling cost the default.
        """
        penalty = 0
        for severity, count in open_incidents.items():
            penalty += SEVERITY_PENALTIES.get(severity, DEFAULT_SEVERITY_PENALTY) * max(0, count)

        return FactorScore(
            name='Incidents',
            score=Fraction(max(0, 100 - penalty)),
            weight=FACTOR_WEIGHTS['incidents'],
            details={
                'open_incidents': sum(open_incidents.values()),
                'by_severity': dict(open_incidents),
                'penalty': penalty,
            },
        )

    @staticmethod
    def _calculate_overall_score(factors: Dict[str, FactorScore]) -> int:
        weighted = sum((factor.weighted for factor in factors.values()), Fraction(0))
        return clamp_score(round_half_up(weighted))
