"""
ClientPulse - Score Update Transaction

The only way a client's health score changes. Every write stores, as one
atomic unit per client:
- previous_health_score <- the score live immediately before this update
- current_health_score  <- new score
- risk_status           <- classify(new score)

and then drops cached views of the client and of the fleet.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any

from .risk import RiskTier, classify, clamp_score
from .stores import ClientStore
from ..cache import invalidate_client_views

logger = logging.getLogger(__name__)


@dataclass
class HealthScoreUpdate:
    """The diff applied to a client by one score update"""
    client_id: str
    previous_score: int
    new_score: int
    risk_status: RiskTier

    def to_dict(self) -> Dict[str, Any]:
        return {
            'client_id': self.client_id,
            'previous_score': self.previous_score,
            'new_score': self.new_score,
            'risk_status': self.risk_status.value,
        }


class ScoreUpdateTransaction:

    def __init__(self, client_store: ClientStore, cache=None):
        self.client_store = client_store
        self.cache = cache

    def apply_score(self, client_id: str, new_score: int) -> HealthScoreUpdate:
        """
        Persist a new health score for a client.

        Raises:
            ClientNotFound: the client was deleted before the write
        """
        score = clamp_score(new_score)
        risk_status = classify(score)

        previous = self.client_store.update_client_score(client_id, score, risk_status)
        invalidate_client_views(self.cache, client_id)

        logger.debug(f"Client {client_id}: {previous} -> {score} ({risk_status.value})")
        return HealthScoreUpdate(
            client_id=client_id,
            previous_score=previous,
            new_score=score,
            risk_status=risk_status,
        )

    def adjust_score(self, client_id: str, delta: int) -> HealthScoreUpdate:
        """
        Shift a client's score by delta (e.g. -20 for a simulated outage).

        Last writer wins if a recompute lands between the read and the write;
        previous_score is still the value the store held at write time.
        """
        current = self.client_store.get_client(client_id).current_health_score
        return self.apply_score(client_id, current + delta)
