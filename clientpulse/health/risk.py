"""
ClientPulse - Risk Classification

Maps a 0-100 health score to a risk tier. The thresholds are the same ones
the dashboard uses for coloring (emerald/amber/red/gray):

| Score    | Tier     | Color   |
|----------|----------|---------|
| >= 70    | Healthy  | emerald |
| 50 - 69  | At Risk  | amber   |
| 25 - 49  | Critical | red     |
| < 25     | Churned  | gray    |
"""

from enum import Enum

MIN_SCORE = 0
MAX_SCORE = 100


class RiskTier(Enum):
    """Risk tiers, valued by their display name"""
    HEALTHY = 'Healthy'
    AT_RISK = 'At Risk'
    CRITICAL = 'Critical'
    CHURNED = 'Churned'

    @property
    def color(self) -> str:
        return RISK_COLORS[self]

    @classmethod
    def from_value(cls, value) -> 'RiskTier':
        if isinstance(value, cls):
            return value
        return cls(value)


# Evaluated in order, first match wins
RISK_THRESHOLDS = [
    (70, RiskTier.HEALTHY),
    (50, RiskTier.AT_RISK),
    (25, RiskTier.CRITICAL),
]

RISK_COLORS = {
    RiskTier.HEALTHY: 'emerald',
    RiskTier.AT_RISK: 'amber',
    RiskTier.CRITICAL: 'red',
    RiskTier.CHURNED: 'gray',
}


def clamp_score(score) -> int:
    """Clamp any numeric score into the integer range [0, 100]."""
    return max(MIN_SCORE, min(MAX_SCORE, int(score)))


def classify(score: int) -> RiskTier:
    """
    Classify a health score into a risk tier.

    Total over all integers: values outside [0, 100] are clamped first.
    """
    score = clamp_score(score)
    for minimum, tier in RISK_THRESHOLDS:
        if score >= minimum:
            return tier
    return RiskTier.CHURNED
